"""
Purchase Order API Router
=========================
Order intake and listing, accordion status, available quantity, eligibility
lists, closing and deletion.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from .. import schemas
from ..deps import get_engine, require_permission, Permission
from ..models import Stage
from ..services.engine import LifecycleEngine

router = APIRouter(prefix="/api/orders", tags=["Purchase Orders"])


def _order_out(engine: LifecycleEngine, po) -> schemas.OrderOut:
    out = schemas.OrderOut.model_validate(po)
    out.accordion_status = engine.get_order_status(po.po_id)
    return out


@router.post("/", response_model=schemas.OrderOut, status_code=status.HTTP_201_CREATED)
def create_order(
    data: schemas.OrderCreate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.ORDER_CREATE))
):
    po = engine.orchestrator.create_order(data, current_user.id)
    return _order_out(engine, po)


@router.get("/", response_model=schemas.OrderPageOut)
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = "desc",
    search: Optional[str] = None,
    client_name: Optional[str] = None,
    po_status: Optional[str] = None,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.ORDER_VIEW))
):
    """
    Paginated order list.
    `search` matches PO id, client name, client PO number and site location.
    """
    rows, total = engine.list_orders(
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        search=search,
        client_name=client_name,
        po_status=po_status,
    )
    return schemas.OrderPageOut(
        items=[schemas.OrderSummaryOut.model_validate(po) for po in rows],
        total=total,
        page=page,
        limit=limit,
        pages=(total + limit - 1) // limit,
    )


@router.get("/{po_id}", response_model=schemas.OrderOut)
def get_order(
    po_id: str,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.ORDER_VIEW))
):
    """Order header, lines and the status of every stage."""
    return _order_out(engine, engine.get_order(po_id))


@router.patch("/{po_id}", response_model=schemas.OrderOut)
def update_order(
    po_id: str,
    data: schemas.OrderUpdate,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.ORDER_UPDATE))
):
    po = engine.orchestrator.update_order(po_id, data, current_user.id)
    return _order_out(engine, po)


@router.delete("/{po_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(
    po_id: str,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.ORDER_DELETE))
):
    engine.orchestrator.delete_order(po_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{po_id}/available-quantity", response_model=schemas.AvailableQuantityOut)
def get_available_quantity(
    po_id: str,
    product_id: int = Query(...),
    excluding_dispatch_id: Optional[int] = None,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.DISPATCH_VIEW))
):
    available = engine.get_available_quantity(po_id, product_id, excluding_dispatch_id)
    return schemas.AvailableQuantityOut(
        po_id=po_id,
        product_id=product_id,
        excluding_dispatch_id=excluding_dispatch_id,
        available=available,
    )


@router.get("/{po_id}/status", response_model=schemas.OrderStatusOut)
def get_order_status(
    po_id: str,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.ORDER_VIEW))
):
    return engine.get_order_status(po_id)


@router.get("/{po_id}/status/{stage}", response_model=schemas.StageStatusOut)
def get_stage_status(
    po_id: str,
    stage: Stage,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.ORDER_VIEW))
):
    return engine.get_stage_status(po_id, stage)


@router.get("/{po_id}/ready-to-close")
def is_ready_to_close(
    po_id: str,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.ORDER_VIEW))
):
    return {"po_id": po_id, "ready_to_close": engine.is_ready_to_close(po_id)}


@router.post("/{po_id}/close", response_model=schemas.OrderCloseOut)
def close_order(
    po_id: str,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.ORDER_CLOSE))
):
    """
    Close the order once all six stages are Done.
    Closing an already closed order returns it with already_closed=true.
    """
    po, already_closed = engine.close_order(po_id, current_user.id)
    return schemas.OrderCloseOut(
        po_id=po.po_id,
        po_status=po.po_status,
        closed_at=po.closed_at,
        closed_by_id=po.closed_by_id,
        already_closed=already_closed,
    )


@router.get("/{po_id}/dispatches", response_model=List[schemas.DispatchOut])
def list_dispatches(
    po_id: str,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.DISPATCH_VIEW))
):
    return engine.list_dispatches(po_id)


# =============================================================================
# ELIGIBILITY
# =============================================================================

@router.get("/{po_id}/eligible/pre-commissioning", response_model=List[schemas.EligibleSerialOut])
def list_eligible_pre_commissioning(
    po_id: str,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_VIEW))
):
    """Delivered serial numbers without a pre-commissioning record."""
    return engine.list_eligible_pre_commissioning(po_id)


@router.get("/{po_id}/eligible/commissioning", response_model=List[schemas.EligiblePreCommissioningOut])
def list_eligible_commissioning(
    po_id: str,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_VIEW))
):
    return engine.list_eligible_commissioning(po_id)


@router.get("/{po_id}/eligible/warranty", response_model=List[schemas.EligibleCommissioningOut])
def list_eligible_warranty(
    po_id: str,
    engine: LifecycleEngine = Depends(get_engine),
    current_user=Depends(require_permission(Permission.SERVICE_VIEW))
):
    return engine.list_eligible_warranty(po_id)
