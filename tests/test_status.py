import pytest

from fulfillment_core.app import schemas
from fulfillment_core.app.models import AccordionStatus, Stage, STAGE_ORDER
from fulfillment_core.app.services.errors import ConflictError, NotReadyError, ValidationError
from fulfillment_core.app.services.status import derive_status

from conftest import make_order, make_dispatch, deliver, pre_commission, commission, certify

NOT_STARTED = AccordionStatus.NOT_STARTED
IN_PROGRESS = AccordionStatus.IN_PROGRESS
DONE = AccordionStatus.DONE


@pytest.mark.parametrize("eligible,total,completed,upstream_done,expected", [
    (0, 0, 0, True, NOT_STARTED),
    (5, 0, 0, True, NOT_STARTED),
    (0, 3, 3, True, DONE),
    (1, 3, 3, True, IN_PROGRESS),
    (0, 3, 2, True, IN_PROGRESS),
    (0, 3, 3, False, IN_PROGRESS),
])
def test_derive_status(eligible, total, completed, upstream_done, expected):
    assert derive_status(eligible, total, completed, upstream_done=upstream_done) == expected


def _statuses(engine):
    return {s.stage: s.status for s in engine.get_order_status("PO-1").stages}


class StatusHistory:
    """Records stage statuses and checks that a Done stage never regresses"""

    def __init__(self, engine):
        self.engine = engine
        self.previous = _statuses(engine)

    def step(self):
        current = _statuses(self.engine)
        for stage, status in self.previous.items():
            if status == DONE:
                assert current[stage] == DONE, f"{stage} regressed from Done"
        self.previous = current
        return current


def test_full_lifecycle_statuses(engine, admin):
    make_order(engine, admin.id, lines=[{"product_id": 1, "product_name": "Inverter", "quantity": 2}])
    history = StatusHistory(engine)
    assert set(history.previous.values()) == {NOT_STARTED}

    d1 = make_dispatch(engine, admin.id, "PO-1", {1: 1})
    s = history.step()
    assert s[Stage.DISPATCH] == IN_PROGRESS
    assert s[Stage.DOCUMENT] == NOT_STARTED

    d2 = make_dispatch(engine, admin.id, "PO-1", {1: 1})
    assert history.step()[Stage.DISPATCH] == DONE

    deliver(engine, admin.id, d1, {1: "SN-1"})
    s = history.step()
    assert s[Stage.DOCUMENT] == IN_PROGRESS
    assert s[Stage.DELIVERY] == IN_PROGRESS

    deliver(engine, admin.id, d2, {1: "SN-2"})
    s = history.step()
    assert s[Stage.DOCUMENT] == DONE
    assert s[Stage.DELIVERY] == DONE
    assert s[Stage.PRE_COMMISSIONING] == NOT_STARTED

    pre1 = pre_commission(engine, admin.id, d1.id, ["SN-1"])[0]
    assert history.step()[Stage.PRE_COMMISSIONING] == IN_PROGRESS
    pre2 = pre_commission(engine, admin.id, d2.id, ["SN-2"], status="Pending")[0]
    assert history.step()[Stage.PRE_COMMISSIONING] == IN_PROGRESS
    engine.orchestrator.update_pre_commissioning(
        pre2.id, schemas.PreCommissioningUpdate(pre_commissioning_status="Done"), admin.id
    )
    assert history.step()[Stage.PRE_COMMISSIONING] == DONE

    c1, c2 = commission(engine, admin.id, [pre1.id, pre2.id])
    assert history.step()[Stage.COMMISSIONING] == DONE

    certify(engine, admin.id, [c1.id])
    assert history.step()[Stage.WARRANTY] == IN_PROGRESS
    assert not engine.is_ready_to_close("PO-1")
    with pytest.raises(NotReadyError) as exc:
        engine.close_order("PO-1", admin.id)
    assert "warranty" in str(exc.value)

    certify(engine, admin.id, [c2.id], certificate_no="WC-002")
    s = history.step()
    assert set(s.values()) == {DONE}
    assert engine.is_ready_to_close("PO-1")

    warranty = engine.get_stage_status("PO-1", Stage.WARRANTY)
    assert (warranty.total_eligible, warranty.completed, warranty.pending) == (2, 2, 0)


def test_stage_gated_by_upstream(engine, admin):
    make_order(engine, admin.id, lines=[{"product_id": 1, "product_name": "Inverter", "quantity": 2}])
    d1 = make_dispatch(engine, admin.id, "PO-1", {1: 1})
    deliver(engine, admin.id, d1, {1: "SN-1"})
    pre_commission(engine, admin.id, d1.id, ["SN-1"])

    s = _statuses(engine)
    assert s[Stage.DISPATCH] == IN_PROGRESS
    # Every recorded unit is complete, but more units can still arrive
    assert s[Stage.DOCUMENT] == IN_PROGRESS
    assert s[Stage.DELIVERY] == IN_PROGRESS
    assert s[Stage.PRE_COMMISSIONING] == IN_PROGRESS

    dispatch_status = engine.get_stage_status("PO-1", Stage.DISPATCH)
    assert (dispatch_status.total_eligible, dispatch_status.completed, dispatch_status.pending) == (2, 1, 0)


def test_order_status_lists_stages_in_order(engine, admin):
    make_order(engine, admin.id)
    status = engine.get_order_status("PO-1")
    assert [s.stage for s in status.stages] == STAGE_ORDER
    assert status.ready_to_close is False
    assert status.po_status == "open"


@pytest.fixture
def completed_order(engine, admin):
    make_order(engine, admin.id, lines=[{"product_id": 1, "product_name": "Inverter", "quantity": 1}])
    d = make_dispatch(engine, admin.id, "PO-1", {1: 1})
    deliver(engine, admin.id, d, {1: "SN-1"})
    pre = pre_commission(engine, admin.id, d.id, ["SN-1"])[0]
    record = commission(engine, admin.id, [pre.id])[0]
    certify(engine, admin.id, [record.id])
    return pre


def test_close_order_is_idempotent(engine, admin, completed_order):
    po, already_closed = engine.close_order("PO-1", admin.id)
    assert already_closed is False
    assert po.po_status == "closed"
    assert po.closed_by_id == admin.id
    closed_at = po.closed_at

    po, already_closed = engine.close_order("PO-1", admin.id)
    assert already_closed is True
    assert po.closed_at == closed_at
    assert engine.get_order_status("PO-1").po_status == "closed"


def test_closed_order_rejects_writes(engine, admin, completed_order):
    engine.close_order("PO-1", admin.id)

    with pytest.raises(ConflictError) as exc:
        engine.orchestrator.update_pre_commissioning(
            completed_order.id, schemas.PreCommissioningUpdate(remarks="late note"), admin.id
        )
    assert str(exc.value) == "purchase order PO-1 is closed"

    with pytest.raises(ConflictError):
        engine.orchestrator.update_order("PO-1", schemas.OrderUpdate(remarks="reopen?"), admin.id)

    with pytest.raises(ConflictError):
        make_dispatch(engine, admin.id, "PO-1", {1: 1})


def test_unknown_stage_is_a_validation_error(engine, admin):
    make_order(engine, admin.id)
    with pytest.raises(ValidationError) as exc:
        engine.get_stage_status("PO-1", "bogus")
    assert str(exc.value) == "unknown stage bogus"

    assert engine.get_stage_status("PO-1", "dispatch").stage == Stage.DISPATCH
