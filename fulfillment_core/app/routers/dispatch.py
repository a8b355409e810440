"""
Dispatch API Router
===================
Dispatch workflow against a purchase order:
- Dispatch creation (quantities checked against the order)
- Core details and dispatched items
- Shipping documents and serial numbers
- Delivery confirmation
"""

from fastapi import APIRouter, Depends, Response, status

from .. import schemas
from ..deps import get_engine, require_permission, Permission
from ..services.engine import LifecycleEngine

router = APIRouter(prefix="/api/dispatches", tags=["Dispatch"])


@router.post("/", response_model=schemas.DispatchOut, status_code=status.HTTP_201_CREATED)
def create_dispatch(
    data: schemas.DispatchCreate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.DISPATCH_CREATE))
):
    """
    Create a dispatch.

    Each item's quantity must not exceed the quantity still available for
    that product on the order.
    """
    return engine.orchestrator.create_dispatch(data, current_user.id)


@router.get("/{dispatch_id}", response_model=schemas.DispatchOut)
def get_dispatch(
    dispatch_id: int,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.DISPATCH_VIEW))
):
    return engine.get_dispatch(dispatch_id)


@router.patch("/{dispatch_id}/details", response_model=schemas.DispatchOut)
def update_dispatch_details(
    dispatch_id: int,
    data: schemas.DispatchDetailsUpdate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.DISPATCH_UPDATE))
):
    """Items, when given, replace the dispatch's items."""
    return engine.orchestrator.update_dispatch_details(dispatch_id, data, current_user.id)


@router.patch("/{dispatch_id}/documents", response_model=schemas.DispatchOut)
def update_dispatch_documents(
    dispatch_id: int,
    data: schemas.DispatchDocumentsUpdate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.DISPATCH_UPDATE))
):
    """
    Shipping documents. `serial_numbers` maps product id to a comma-joined
    list whose length must equal the dispatched quantity.
    """
    return engine.orchestrator.update_dispatch_documents(dispatch_id, data, current_user.id)


@router.patch("/{dispatch_id}/delivery", response_model=schemas.DispatchOut)
def update_delivery_confirmation(
    dispatch_id: int,
    data: schemas.DeliveryConfirmationUpdate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.DISPATCH_UPDATE))
):
    return engine.orchestrator.update_delivery_confirmation(dispatch_id, data, current_user.id)


@router.delete("/{dispatch_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_dispatch(
    dispatch_id: int,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.DISPATCH_DELETE))
):
    engine.orchestrator.delete_dispatch(dispatch_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
