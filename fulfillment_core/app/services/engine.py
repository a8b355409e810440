"""
LifecycleEngine - one object per request, bound to one Session.

Routers depend on this class instead of reaching into the individual
services, so every status view and every write share the same session.
"""

from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..models import (
    PurchaseOrder, Dispatch, PreCommissioning, Commissioning, WarrantyCertificate, Stage,
)
from ..schemas import (
    EligibleSerialOut, EligiblePreCommissioningOut, EligibleCommissioningOut,
    PreCommissioningItem, PreCommissioningFields,
    CommissioningItem, CommissioningFields,
    WarrantyItem, WarrantyFields,
    StageStatusOut, OrderStatusOut,
)
from .eligibility import EligibilityResolver
from .ledger import QuantityLedger, validate_serial_count
from .orchestrator import LifecycleOrchestrator
from .status import StageStatusAggregator


class LifecycleEngine:
    def __init__(self, db: Session):
        self.db = db
        self.orchestrator = LifecycleOrchestrator(db)
        self.ledger = QuantityLedger(self.orchestrator.orders)
        self.resolver = EligibilityResolver(db)
        self.status = StageStatusAggregator(db, resolver=self.resolver)

    # Lookups

    def get_order(self, po_id: str) -> PurchaseOrder:
        return self.orchestrator.orders.require(po_id)

    def list_orders(
        self,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        search: Optional[str] = None,
        client_name: Optional[str] = None,
        po_status: Optional[str] = None
    ) -> Tuple[List[PurchaseOrder], int]:
        return self.orchestrator.orders.list_page(
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
            search=search,
            client_name=client_name,
            po_status=po_status,
        )

    def get_dispatch(self, dispatch_id: int) -> Dispatch:
        return self.orchestrator.dispatches.require(dispatch_id)

    def get_pre_commissioning(self, record_id: int) -> PreCommissioning:
        return self.orchestrator.pre_commissioning.require(record_id)

    def get_commissioning(self, record_id: int) -> Commissioning:
        return self.orchestrator.commissioning.require(record_id)

    def get_warranty(self, record_id: int) -> WarrantyCertificate:
        return self.orchestrator.warranty.require(record_id)

    def list_pre_commissioning_for_dispatch(self, dispatch_id: int) -> List[PreCommissioning]:
        self.orchestrator.dispatches.require(dispatch_id)
        return self.orchestrator.pre_commissioning.list_by_dispatch(dispatch_id)

    def list_dispatches(self, po_id: str) -> List[Dispatch]:
        self.orchestrator.orders.require(po_id)
        return self.orchestrator.dispatches.list_by_po(po_id)

    def list_pre_commissioning(self, po_id: str) -> List[PreCommissioning]:
        self.orchestrator.orders.require(po_id)
        return self.orchestrator.pre_commissioning.list_by_po(po_id)

    def list_commissioning(self, po_id: str) -> List[Commissioning]:
        self.orchestrator.orders.require(po_id)
        return self.orchestrator.commissioning.list_by_po(po_id)

    def list_warranty(self, po_id: str) -> List[WarrantyCertificate]:
        self.orchestrator.orders.require(po_id)
        return self.orchestrator.warranty.list_by_po(po_id)

    # Quantity ledger / serial reconciler

    def get_available_quantity(self, po_id: str, product_id: int, excluding_dispatch_id: Optional[int] = None) -> int:
        self.orchestrator.orders.require(po_id)
        return self.ledger.available(po_id, product_id, excluding_dispatch_id)

    def validate_serial_count(self, quantity: int, serial_numbers: Optional[str]) -> List[str]:
        return validate_serial_count(quantity, serial_numbers)

    # Eligibility

    def list_eligible_pre_commissioning(self, po_id: str) -> List[EligibleSerialOut]:
        return self.resolver.eligible_for_pre_commissioning(po_id)

    def list_eligible_commissioning(self, po_id: str) -> List[EligiblePreCommissioningOut]:
        return self.resolver.eligible_for_commissioning(po_id)

    def list_eligible_warranty(self, po_id: str) -> List[EligibleCommissioningOut]:
        return self.resolver.eligible_for_warranty(po_id)

    # Batch creates

    def create_pre_commissioning_batch(self, items: List[PreCommissioningItem], fields: PreCommissioningFields, actor_id: Optional[int]):
        return self.orchestrator.create_pre_commissioning_batch(items, fields, actor_id)

    def create_commissioning_batch(self, items: List[CommissioningItem], fields: CommissioningFields, actor_id: Optional[int]):
        return self.orchestrator.create_commissioning_batch(items, fields, actor_id)

    def create_warranty_batch(self, items: List[WarrantyItem], fields: WarrantyFields, actor_id: Optional[int]):
        return self.orchestrator.create_warranty_batch(items, fields, actor_id)

    # Status and closing

    def get_stage_status(self, po_id: str, stage: Stage) -> StageStatusOut:
        return self.status.get_stage_status(po_id, stage)

    def get_order_status(self, po_id: str) -> OrderStatusOut:
        return self.status.get_order_status(po_id)

    def is_ready_to_close(self, po_id: str) -> bool:
        return self.status.is_ready_to_close(po_id)

    def close_order(self, po_id: str, actor_id: Optional[int]) -> Tuple[PurchaseOrder, bool]:
        return self.orchestrator.close_order(po_id, actor_id, self.status.stages_not_done)
