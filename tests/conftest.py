import os
import tempfile

# Configure before the app modules read the environment
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(tempfile.mkdtemp(), 'fulfillment_test.db')}")
os.environ.setdefault("FULFILLMENT_SECRET_KEY", "test-only-secret-key-0123456789abcdef0123456789")

import pytest
from fastapi.testclient import TestClient

from fulfillment_core.app import models, schemas
from fulfillment_core.app.db import build_engine, build_session_factory, create_db_and_tables
from fulfillment_core.app.main import create_app
from fulfillment_core.app.security import get_db, get_current_user, get_password_hash
from fulfillment_core.app.services.engine import LifecycleEngine


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{(tmp_path / 'lifecycle.db').as_posix()}")
    create_db_and_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def admin(db):
    user = models.User(
        full_name="Admin",
        email="admin@example.com",
        username="admin",
        password_hash=get_password_hash("Secret123"),
        role="Admin",
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def engine(db, admin):
    return LifecycleEngine(db)


@pytest.fixture
def client(session_factory, admin):
    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: admin
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# =============================================================================
# FLOW HELPERS
# =============================================================================

def make_order(engine, actor_id, po_id="PO-1", lines=None):
    lines = lines or [{"product_id": 1, "product_name": "Inverter", "quantity": 10}]
    data = schemas.OrderCreate(po_id=po_id, client_name="Acme Solar", lines=lines)
    return engine.orchestrator.create_order(data, actor_id)


def make_dispatch(engine, actor_id, po_id, items):
    data = schemas.DispatchCreate(
        po_id=po_id,
        items=[{"product_id": p, "quantity": q} for p, q in items.items()],
    )
    return engine.orchestrator.create_dispatch(data, actor_id)


def deliver(engine, actor_id, dispatch, serials):
    """Record serials, mark documents done and confirm delivery"""
    engine.orchestrator.update_dispatch_documents(
        dispatch.id,
        schemas.DispatchDocumentsUpdate(serial_numbers=serials, document_status="done"),
        actor_id,
    )
    return engine.orchestrator.update_delivery_confirmation(
        dispatch.id,
        schemas.DeliveryConfirmationUpdate(delivery_status="done"),
        actor_id,
    )


def pre_commission(engine, actor_id, dispatch_id, serials, status="Done"):
    return engine.create_pre_commissioning_batch(
        [schemas.PreCommissioningItem(dispatch_id=dispatch_id, serial_number=s) for s in serials],
        schemas.PreCommissioningFields(pre_commissioning_status=status),
        actor_id,
    )


def commission(engine, actor_id, pre_ids, status="Done"):
    return engine.create_commissioning_batch(
        [schemas.CommissioningItem(pre_commissioning_id=i) for i in pre_ids],
        schemas.CommissioningFields(commissioning_status=status),
        actor_id,
    )


def certify(engine, actor_id, commissioning_ids, status="Done", certificate_no="WC-001"):
    return engine.create_warranty_batch(
        [schemas.WarrantyItem(commissioning_id=i) for i in commissioning_ids],
        schemas.WarrantyFields(certificate_no=certificate_no, warranty_status=status),
        actor_id,
    )
