from typing import List

from fastapi import APIRouter, Depends, Query, Response, status

from .. import schemas
from ..deps import get_engine, require_permission, Permission
from ..services.engine import LifecycleEngine

router = APIRouter(prefix="/api/commissioning", tags=["Commissioning"])


@router.post("/", response_model=List[schemas.CommissioningOut], status_code=status.HTTP_201_CREATED)
def create_commissioning(
    data: schemas.CommissioningCreate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_CREATE))
):
    """Bulk create from Done pre-commissioning records."""
    return engine.create_commissioning_batch(data.items, data, current_user.id)


@router.get("/", response_model=List[schemas.CommissioningOut])
def list_commissioning(
    po_id: str = Query(...),
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_VIEW))
):
    return engine.list_commissioning(po_id)


@router.get("/{record_id}", response_model=schemas.CommissioningOut)
def get_commissioning(
    record_id: int,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_VIEW))
):
    return engine.get_commissioning(record_id)


@router.patch("/{record_id}", response_model=schemas.CommissioningOut)
def update_commissioning(
    record_id: int,
    data: schemas.CommissioningUpdate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_UPDATE))
):
    return engine.orchestrator.update_commissioning(record_id, data, current_user.id)


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_commissioning(
    record_id: int,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_DELETE))
):
    engine.orchestrator.delete_commissioning(record_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
