"""
Race tests for the 1:1 lifecycle links.

Two sessions create the same downstream record at the same time; exactly
one may win. Each link is also checked with its pre-check disabled, so the
UNIQUE constraint alone has to reject the loser.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from fulfillment_core.app import models, schemas
from fulfillment_core.app.services.engine import LifecycleEngine
from fulfillment_core.app.services.errors import BatchError, ConflictError
from fulfillment_core.app.services.repositories import (
    CommissioningRepository, PreCommissioningRepository, WarrantyCertificateRepository,
)

from conftest import make_order, make_dispatch, deliver, commission

PRE_COMMISSIONING_ID = 42


@pytest.fixture
def delivered_dispatch(engine, admin):
    make_order(engine, admin.id, lines=[{"product_id": 1, "product_name": "Inverter", "quantity": 1}])
    dispatch = make_dispatch(engine, admin.id, "PO-1", {1: 1})
    return deliver(engine, admin.id, dispatch, {1: "SN-42"})


@pytest.fixture
def done_pre_commissioning(admin, db, delivered_dispatch):
    serial = delivered_dispatch.items[0].serials[0]
    db.add(models.PreCommissioning(
        id=PRE_COMMISSIONING_ID,
        dispatch_serial_id=serial.id,
        dispatch_id=delivered_dispatch.id,
        serial_number="SN-42",
        product_name="Inverter",
        pre_commissioning_status="Done",
        created_by_id=admin.id,
        updated_by_id=admin.id,
    ))
    db.commit()
    return PRE_COMMISSIONING_ID


@pytest.fixture
def done_commissioning(engine, admin, done_pre_commissioning):
    return commission(engine, admin.id, [done_pre_commissioning])[0].id


def create_pre_commissioning(dispatch_id):
    def create(engine, actor_id):
        return engine.create_pre_commissioning_batch(
            [schemas.PreCommissioningItem(dispatch_id=dispatch_id, serial_number="SN-42")],
            schemas.PreCommissioningFields(pre_commissioning_status="Pending"),
            actor_id,
        )
    return create


def create_commissioning(engine, actor_id):
    return engine.create_commissioning_batch(
        [schemas.CommissioningItem(pre_commissioning_id=PRE_COMMISSIONING_ID)],
        schemas.CommissioningFields(commissioning_status="Pending"),
        actor_id,
    )


def create_warranty(commissioning_id):
    def create(engine, actor_id):
        return engine.create_warranty_batch(
            [schemas.WarrantyItem(commissioning_id=commissioning_id)],
            schemas.WarrantyFields(certificate_no="WC-42", warranty_status="Pending"),
            actor_id,
        )
    return create


def _attempt(session_factory, create, actor_id, barrier=None):
    session = session_factory()
    try:
        if barrier is not None:
            barrier.wait()
        try:
            created = create(LifecycleEngine(session), actor_id)
            return "created", created[0].id
        except BatchError as exc:
            return "rejected", exc
    finally:
        session.close()


def _race(session_factory, create, actor_id):
    barrier = Barrier(2)
    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(_attempt, session_factory, create, actor_id, barrier) for _ in range(2)]
        results = [f.result(timeout=60) for f in futures]

    assert sorted(kind for kind, _ in results) == ["created", "rejected"]
    error = next(value for kind, value in results if kind == "rejected")
    assert isinstance(error.cause, ConflictError)
    return error


# =============================================================================
# PARALLEL CREATES
# =============================================================================

def test_parallel_pre_commissioning_single_winner(session_factory, admin, db, delivered_dispatch):
    error = _race(session_factory, create_pre_commissioning(delivered_dispatch.id), admin.id)

    assert str(error) == f"pre-commissioning already exists for serial SN-42 on dispatch {delivered_dispatch.id}"
    assert db.query(models.PreCommissioning).filter(
        models.PreCommissioning.dispatch_id == delivered_dispatch.id
    ).count() == 1


def test_parallel_commissioning_single_winner(session_factory, admin, db, done_pre_commissioning):
    error = _race(session_factory, create_commissioning, admin.id)

    assert str(error) == "commissioning already exists for pre-commissioning 42"
    assert db.query(models.Commissioning).filter(
        models.Commissioning.pre_commissioning_id == PRE_COMMISSIONING_ID
    ).count() == 1


def test_parallel_warranty_single_winner(session_factory, admin, db, done_commissioning):
    error = _race(session_factory, create_warranty(done_commissioning), admin.id)

    assert str(error) == f"warranty certificate already exists for commissioning {done_commissioning}"
    assert db.query(models.WarrantyCertificate).filter(
        models.WarrantyCertificate.commissioning_id == done_commissioning
    ).count() == 1


# =============================================================================
# UNIQUE CONSTRAINTS WITHOUT THE PRE-CHECK
# =============================================================================

def test_pre_commissioning_unique_constraint_when_precheck_misses(
    session_factory, admin, db, delivered_dispatch, monkeypatch
):
    create = create_pre_commissioning(delivered_dispatch.id)
    kind, _ = _attempt(session_factory, create, admin.id)
    assert kind == "created"

    # A concurrent writer that passed the pre-check before the winner committed
    monkeypatch.setattr(PreCommissioningRepository, "for_serial", lambda self, serial_id: None)
    kind, error = _attempt(session_factory, create, admin.id)

    assert kind == "rejected"
    assert isinstance(error.cause, ConflictError)
    assert str(error) == f"pre-commissioning already exists for serial SN-42 on dispatch {delivered_dispatch.id}"
    assert db.query(models.PreCommissioning).count() == 1


def test_commissioning_unique_constraint_when_precheck_misses(
    session_factory, admin, db, done_pre_commissioning, monkeypatch
):
    kind, _ = _attempt(session_factory, create_commissioning, admin.id)
    assert kind == "created"

    monkeypatch.setattr(CommissioningRepository, "for_pre_commissioning", lambda self, pre_id: None)
    kind, error = _attempt(session_factory, create_commissioning, admin.id)

    assert kind == "rejected"
    assert isinstance(error.cause, ConflictError)
    assert str(error) == "commissioning already exists for pre-commissioning 42"
    assert db.query(models.Commissioning).count() == 1


def test_warranty_unique_constraint_when_precheck_misses(
    session_factory, admin, db, done_commissioning, monkeypatch
):
    create = create_warranty(done_commissioning)
    kind, _ = _attempt(session_factory, create, admin.id)
    assert kind == "created"

    monkeypatch.setattr(WarrantyCertificateRepository, "for_commissioning", lambda self, commissioning_id: None)
    kind, error = _attempt(session_factory, create, admin.id)

    assert kind == "rejected"
    assert isinstance(error.cause, ConflictError)
    assert str(error) == f"warranty certificate already exists for commissioning {done_commissioning}"
    assert db.query(models.WarrantyCertificate).count() == 1
