from datetime import date

import pytest

from fulfillment_core.app import models, schemas
from fulfillment_core.app.services.errors import (
    BatchError, ConflictError, NotFoundError, ValidationError,
)

from conftest import make_order, make_dispatch, deliver, pre_commission, commission, certify


@pytest.fixture
def dispatch(engine, admin):
    make_order(engine, admin.id, lines=[{"product_id": 1, "product_name": "Inverter", "quantity": 3}])
    d = make_dispatch(engine, admin.id, "PO-1", {1: 3})
    return deliver(engine, admin.id, d, {1: "S1,S2,S3"})


def _pre_count(db):
    return db.query(models.PreCommissioning).count()


def test_batch_stamps_shared_fields(engine, admin, dispatch):
    records = engine.create_pre_commissioning_batch(
        [schemas.PreCommissioningItem(dispatch_id=dispatch.id, serial_number=s) for s in ("S1", "S2")],
        schemas.PreCommissioningFields(service_engineer_assigned="R. Iyer", pre_commissioning_status="Pending"),
        admin.id,
    )
    assert [r.serial_number for r in records] == ["S1", "S2"]
    assert {r.service_engineer_assigned for r in records} == {"R. Iyer"}
    assert {r.created_by_id for r in records} == {admin.id}
    assert {r.updated_by_id for r in records} == {admin.id}


def test_batch_is_all_or_nothing(engine, admin, db, dispatch):
    pre_commission(engine, admin.id, dispatch.id, ["S1"])

    with pytest.raises(BatchError) as exc:
        pre_commission(engine, admin.id, dispatch.id, ["S2", "S1"])
    assert isinstance(exc.value.cause, ConflictError)
    assert exc.value.cause_type == "ConflictError"
    assert "S1" in str(exc.value)

    # S2 was not persisted
    assert _pre_count(db) == 1
    remaining = {c.serial_number for c in engine.list_eligible_pre_commissioning("PO-1")}
    assert remaining == {"S2", "S3"}


def test_empty_batch_rejected(engine, admin, dispatch):
    with pytest.raises(BatchError) as exc:
        engine.create_commissioning_batch([], schemas.CommissioningFields(), admin.id)
    assert isinstance(exc.value.cause, ValidationError)


def test_duplicate_ids_in_batch_rejected(engine, admin, db, dispatch):
    pre = pre_commission(engine, admin.id, dispatch.id, ["S1"])[0]
    with pytest.raises(BatchError) as exc:
        commission(engine, admin.id, [pre.id, pre.id])
    assert isinstance(exc.value.cause, ValidationError)
    assert db.query(models.Commissioning).count() == 0


def test_second_commissioning_for_same_upstream_conflicts(engine, admin, dispatch):
    pre = pre_commission(engine, admin.id, dispatch.id, ["S1"])[0]
    commission(engine, admin.id, [pre.id])
    with pytest.raises(BatchError) as exc:
        commission(engine, admin.id, [pre.id])
    assert str(exc.value) == f"commissioning already exists for pre-commissioning {pre.id}"
    assert exc.value.item_id == pre.id


def test_product_name_must_match_serial(engine, admin, dispatch):
    with pytest.raises(BatchError) as exc:
        engine.create_pre_commissioning_batch(
            [schemas.PreCommissioningItem(dispatch_id=dispatch.id, serial_number="S1", product_name="Panel")],
            schemas.PreCommissioningFields(),
            admin.id,
        )
    assert isinstance(exc.value.cause, ValidationError)


def test_unknown_upstream_is_not_found(engine, admin, dispatch):
    with pytest.raises(NotFoundError):
        commission(engine, admin.id, [999])


def test_warranty_dates_validated(engine, admin, dispatch):
    pre = pre_commission(engine, admin.id, dispatch.id, ["S1"])[0]
    record = commission(engine, admin.id, [pre.id])[0]

    with pytest.raises(BatchError) as exc:
        engine.create_warranty_batch(
            [schemas.WarrantyItem(commissioning_id=record.id)],
            schemas.WarrantyFields(
                certificate_no="WC-9",
                warranty_start_date=date(2025, 6, 1),
                warranty_end_date=date(2024, 6, 1),
            ),
            admin.id,
        )
    assert isinstance(exc.value.cause, ValidationError)

    certificate = certify(engine, admin.id, [record.id], status="Pending")[0]
    assert certificate.serial_number == "S1"
    assert certificate.po_id == "PO-1"

    with pytest.raises(ValidationError):
        engine.orchestrator.update_warranty(
            certificate.id,
            schemas.WarrantyUpdate(warranty_start_date=date(2026, 1, 1), warranty_end_date=date(2025, 1, 1)),
            admin.id,
        )


def test_done_status_is_terminal(engine, admin, dispatch):
    pre = pre_commission(engine, admin.id, dispatch.id, ["S1"])[0]
    with pytest.raises(ConflictError):
        engine.orchestrator.update_pre_commissioning(
            pre.id, schemas.PreCommissioningUpdate(pre_commissioning_status="Hold"), admin.id
        )

    updated = engine.orchestrator.update_pre_commissioning(
        pre.id, schemas.PreCommissioningUpdate(oem_comments="checked"), admin.id
    )
    assert updated.oem_comments == "checked"
    assert updated.pre_commissioning_status == "Done"


def test_dispatch_section_done_is_terminal(engine, admin, dispatch):
    with pytest.raises(ConflictError):
        engine.orchestrator.update_delivery_confirmation(
            dispatch.id, schemas.DeliveryConfirmationUpdate(delivery_status="pending"), admin.id
        )


def test_delete_rules(engine, admin, db, dispatch):
    done = pre_commission(engine, admin.id, dispatch.id, ["S1"])[0]
    pending = pre_commission(engine, admin.id, dispatch.id, ["S2"], status="Pending")[0]
    record = commission(engine, admin.id, [done.id], status="Pending")[0]

    with pytest.raises(ConflictError):
        engine.orchestrator.delete_pre_commissioning(done.id, admin.id)

    engine.orchestrator.delete_pre_commissioning(pending.id, admin.id)
    assert "S2" in {c.serial_number for c in engine.list_eligible_pre_commissioning("PO-1")}

    engine.orchestrator.delete_commissioning(record.id, admin.id)
    assert [c.pre_commissioning_id for c in engine.list_eligible_commissioning("PO-1")] == [done.id]
    assert db.query(models.Commissioning).count() == 0


def test_delivered_dispatch_cannot_be_deleted(engine, admin, dispatch):
    with pytest.raises(ConflictError):
        engine.orchestrator.delete_dispatch(dispatch.id, admin.id)


def test_open_dispatch_can_be_deleted(engine, admin):
    make_order(engine, admin.id)
    d = make_dispatch(engine, admin.id, "PO-1", {1: 4})
    assert engine.get_available_quantity("PO-1", 1) == 6
    engine.orchestrator.delete_dispatch(d.id, admin.id)
    assert engine.get_available_quantity("PO-1", 1) == 10


def test_duplicate_order_conflicts(engine, admin):
    make_order(engine, admin.id)
    with pytest.raises(ConflictError):
        make_order(engine, admin.id)
