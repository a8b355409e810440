import pytest

from fulfillment_core.app import schemas
from fulfillment_core.app.services.errors import BatchError, ConflictError, NotFoundError

from conftest import make_order, make_dispatch, deliver, pre_commission, commission, certify


@pytest.fixture
def delivered(engine, admin):
    """Order with one delivered dispatch (A) and one documented but undelivered dispatch (B)"""
    make_order(engine, admin.id, lines=[
        {"product_id": 1, "product_name": "Inverter", "quantity": 3},
        {"product_id": 2, "product_name": "Panel", "quantity": 2},
    ])
    a = make_dispatch(engine, admin.id, "PO-1", {1: 2, 2: 1})
    b = make_dispatch(engine, admin.id, "PO-1", {1: 1, 2: 1})
    deliver(engine, admin.id, a, {1: "A1,A2", 2: "B1"})
    engine.orchestrator.update_dispatch_documents(
        b.id, schemas.DispatchDocumentsUpdate(serial_numbers={1: "A3", 2: "B2"}, document_status="done"), admin.id
    )
    return a, b


def _pairs(candidates):
    return {(c.dispatch_id, c.serial_number) for c in candidates}


def test_only_delivered_serials_are_eligible(engine, delivered):
    a, b = delivered
    candidates = engine.list_eligible_pre_commissioning("PO-1")
    assert _pairs(candidates) == {(a.id, "A1"), (a.id, "A2"), (a.id, "B1")}
    names = {c.serial_number: c.product_name for c in candidates}
    assert names == {"A1": "Inverter", "A2": "Inverter", "B1": "Panel"}


def test_candidates_consumed_by_create(engine, admin, delivered):
    a, _ = delivered
    created = pre_commission(engine, admin.id, a.id, ["A1"])
    pre_commission(engine, admin.id, a.id, ["A2"], status="Pending")

    assert created[0].product_name == "Inverter"
    assert created[0].po_id == "PO-1"
    assert _pairs(engine.list_eligible_pre_commissioning("PO-1")) == {(a.id, "B1")}

    # Only the Done record can move on
    commissioning_candidates = engine.list_eligible_commissioning("PO-1")
    assert [c.pre_commissioning_id for c in commissioning_candidates] == [created[0].id]
    assert engine.list_eligible_warranty("PO-1") == []


def test_warranty_candidates_follow_commissioning_status(engine, admin, delivered):
    a, _ = delivered
    pre = pre_commission(engine, admin.id, a.id, ["A1"])[0]
    record = commission(engine, admin.id, [pre.id], status="Pending")[0]

    assert engine.list_eligible_commissioning("PO-1") == []
    assert engine.list_eligible_warranty("PO-1") == []

    engine.orchestrator.update_commissioning(
        record.id, schemas.CommissioningUpdate(commissioning_status="Done"), admin.id
    )
    warranty_candidates = engine.list_eligible_warranty("PO-1")
    assert [c.commissioning_id for c in warranty_candidates] == [record.id]
    assert warranty_candidates[0].serial_number == "A1"

    certify(engine, admin.id, [record.id])
    assert engine.list_eligible_warranty("PO-1") == []


def test_undelivered_serial_rejected(engine, admin, delivered):
    _, b = delivered
    with pytest.raises(BatchError) as exc:
        pre_commission(engine, admin.id, b.id, ["A3"])
    assert isinstance(exc.value.cause, ConflictError)


def test_unknown_serial_not_found(engine, admin, delivered):
    a, _ = delivered
    with pytest.raises(NotFoundError):
        pre_commission(engine, admin.id, a.id, ["ZZZ"])


def test_pending_pre_commissioning_not_commissionable(engine, admin, delivered):
    a, _ = delivered
    pre = pre_commission(engine, admin.id, a.id, ["A2"], status="Pending")[0]
    with pytest.raises(BatchError) as exc:
        commission(engine, admin.id, [pre.id])
    assert str(exc.value) == f'pre-commissioning {pre.id} is not in "Done" status'


def test_eligibility_for_unknown_order(engine):
    with pytest.raises(NotFoundError):
        engine.list_eligible_pre_commissioning("PO-404")
