from typing import List

from fastapi import APIRouter, Depends, Query, Response, status

from .. import schemas
from ..deps import get_engine, require_permission, Permission
from ..services.engine import LifecycleEngine

router = APIRouter(prefix="/api/warranty-certificates", tags=["Warranty Certificates"])


@router.post("/", response_model=List[schemas.WarrantyOut], status_code=status.HTTP_201_CREATED)
def create_warranty_certificates(
    data: schemas.WarrantyCreate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_CREATE))
):
    """
    Bulk create from Done commissioning records. The certificate number and
    the warranty dates are shared by every record of the batch.
    """
    return engine.create_warranty_batch(data.items, data, current_user.id)


@router.get("/", response_model=List[schemas.WarrantyOut])
def list_warranty_certificates(
    po_id: str = Query(...),
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_VIEW))
):
    return engine.list_warranty(po_id)


@router.get("/{record_id}", response_model=schemas.WarrantyOut)
def get_warranty_certificate(
    record_id: int,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_VIEW))
):
    return engine.get_warranty(record_id)


@router.patch("/{record_id}", response_model=schemas.WarrantyOut)
def update_warranty_certificate(
    record_id: int,
    data: schemas.WarrantyUpdate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_UPDATE))
):
    return engine.orchestrator.update_warranty(record_id, data, current_user.id)


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_warranty_certificate(
    record_id: int,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_DELETE))
):
    engine.orchestrator.delete_warranty(record_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
