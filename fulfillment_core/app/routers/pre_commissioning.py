from typing import List

from fastapi import APIRouter, Depends, Query, Response, status

from .. import schemas
from ..deps import get_engine, require_permission, Permission
from ..services.engine import LifecycleEngine

router = APIRouter(prefix="/api/pre-commissioning", tags=["Pre-Commissioning"])


@router.post("/", response_model=List[schemas.PreCommissioningOut], status_code=status.HTTP_201_CREATED)
def create_pre_commissioning(
    data: schemas.PreCommissioningCreate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_CREATE))
):
    """
    Bulk create, one record per (dispatch, serial number).
    All records are created or none is.
    """
    return engine.create_pre_commissioning_batch(data.items, data, current_user.id)


@router.get("/", response_model=List[schemas.PreCommissioningOut])
def list_pre_commissioning(
    po_id: str = Query(...),
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_VIEW))
):
    return engine.list_pre_commissioning(po_id)


@router.get("/dispatch/{dispatch_id}", response_model=List[schemas.PreCommissioningOut])
def list_pre_commissioning_for_dispatch(
    dispatch_id: int,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_VIEW))
):
    return engine.list_pre_commissioning_for_dispatch(dispatch_id)


@router.get("/{record_id}", response_model=schemas.PreCommissioningOut)
def get_pre_commissioning(
    record_id: int,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_VIEW))
):
    return engine.get_pre_commissioning(record_id)


@router.patch("/{record_id}", response_model=schemas.PreCommissioningOut)
def update_pre_commissioning(
    record_id: int,
    data: schemas.PreCommissioningUpdate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_UPDATE))
):
    return engine.orchestrator.update_pre_commissioning(record_id, data, current_user.id)


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_pre_commissioning(
    record_id: int,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_DELETE))
):
    engine.orchestrator.delete_pre_commissioning(record_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
