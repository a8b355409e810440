"""
Repositories - one per aggregate.

Each repository wraps a Session and exposes typed finders. Relation
"includes" are explicit joins here, so callers never depend on lazy loads
to answer eligibility questions.
"""

from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, exists, func, or_
from sqlalchemy.orm import Session, selectinload

from ..models import (
    PurchaseOrder, OrderLine, Dispatch, DispatchedItem, DispatchSerial,
    PreCommissioning, Commissioning, WarrantyCertificate,
    SectionStatus, ServiceStatus,
)
from .errors import NotFoundError, ValidationError

ORDER_SORT_COLUMNS = {
    "created_at": PurchaseOrder.created_at,
    "po_id": PurchaseOrder.po_id,
    "client_name": PurchaseOrder.client_name,
    "po_received_date": PurchaseOrder.po_received_date,
}


class PurchaseOrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, po_id: str, for_update: bool = False) -> Optional[PurchaseOrder]:
        query = self.db.query(PurchaseOrder).filter(PurchaseOrder.po_id == po_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def require(self, po_id: str, for_update: bool = False) -> PurchaseOrder:
        po = self.get(po_id, for_update=for_update)
        if po is None:
            raise NotFoundError(f"purchase order {po_id} not found", entity_id=po_id)
        return po

    def add(self, po: PurchaseOrder) -> PurchaseOrder:
        self.db.add(po)
        return po

    def list_page(
        self,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        search: Optional[str] = None,
        client_name: Optional[str] = None,
        po_status: Optional[str] = None
    ) -> Tuple[List[PurchaseOrder], int]:
        """One page of orders plus the total number of matching orders"""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        column = ORDER_SORT_COLUMNS.get(sort_by)
        if column is None:
            raise ValidationError(
                f"cannot sort purchase orders by {sort_by}; use one of {', '.join(ORDER_SORT_COLUMNS)}"
            )
        if sort_order.lower() not in ("asc", "desc"):
            raise ValidationError(f"sort order must be asc or desc, not {sort_order}")

        query = self.db.query(PurchaseOrder)
        if client_name:
            query = query.filter(PurchaseOrder.client_name.ilike(f"%{client_name}%"))
        if po_status:
            query = query.filter(PurchaseOrder.po_status == po_status)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                PurchaseOrder.po_id.ilike(pattern),
                PurchaseOrder.client_name.ilike(pattern),
                PurchaseOrder.client_po_no.ilike(pattern),
                PurchaseOrder.site_location.ilike(pattern),
            ))

        total = query.count()
        ordering = column.asc() if sort_order.lower() == "asc" else column.desc()
        rows = query.options(selectinload(PurchaseOrder.lines)).order_by(
            ordering, PurchaseOrder.po_id
        ).offset((page - 1) * limit).limit(limit).all()
        return rows, total

    def has_dispatches(self, po_id: str) -> bool:
        return self.db.query(
            exists().where(Dispatch.po_id == po_id)
        ).scalar()

    def line_for_product(self, po_id: str, product_id: int) -> Optional[OrderLine]:
        return self.db.query(OrderLine).filter(
            OrderLine.po_id == po_id,
            OrderLine.product_id == product_id
        ).first()

    def dispatched_quantities(
        self,
        po_id: str,
        product_id: int,
        excluding_dispatch_id: Optional[int] = None
    ) -> List[int]:
        """Quantities already allocated to a product across the order's dispatches"""
        query = self.db.query(DispatchedItem.quantity).join(
            Dispatch, DispatchedItem.dispatch_id == Dispatch.id
        ).filter(
            Dispatch.po_id == po_id,
            DispatchedItem.product_id == product_id
        )
        if excluding_dispatch_id is not None:
            query = query.filter(Dispatch.id != excluding_dispatch_id)
        return [row[0] for row in query.all()]

    def dispatched_by_product(self, po_id: str) -> Dict[int, int]:
        rows = self.db.query(
            DispatchedItem.product_id,
            func.coalesce(func.sum(DispatchedItem.quantity), 0)
        ).join(
            Dispatch, DispatchedItem.dispatch_id == Dispatch.id
        ).filter(
            Dispatch.po_id == po_id
        ).group_by(DispatchedItem.product_id).all()
        return {product_id: int(total) for product_id, total in rows}


class DispatchRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, dispatch_id: int, for_update: bool = False) -> Optional[Dispatch]:
        query = self.db.query(Dispatch).filter(Dispatch.id == dispatch_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def require(self, dispatch_id: int, for_update: bool = False) -> Dispatch:
        dispatch = self.get(dispatch_id, for_update=for_update)
        if dispatch is None:
            raise NotFoundError(f"dispatch {dispatch_id} not found", entity_id=dispatch_id)
        return dispatch

    def add(self, dispatch: Dispatch) -> Dispatch:
        self.db.add(dispatch)
        return dispatch

    def list_by_po(self, po_id: str) -> List[Dispatch]:
        return self.db.query(Dispatch).options(
            selectinload(Dispatch.items).selectinload(DispatchedItem.serials)
        ).filter(Dispatch.po_id == po_id).order_by(Dispatch.id).all()

    def find_serial(self, dispatch_id: int, serial_number: str) -> Optional[DispatchSerial]:
        return self.db.query(DispatchSerial).filter(
            DispatchSerial.dispatch_id == dispatch_id,
            DispatchSerial.serial_number == serial_number
        ).first()

    def has_pre_commissioning(self, dispatch_id: int) -> bool:
        return self.db.query(
            exists().where(PreCommissioning.dispatch_id == dispatch_id)
        ).scalar()

    def section_counts(self, po_id: str) -> Dict[str, int]:
        """Counts behind the document and delivery stage statuses"""
        done = SectionStatus.DONE.value
        dispatches = self.db.query(
            Dispatch.document_status, Dispatch.delivery_status
        ).filter(Dispatch.po_id == po_id).all()
        return {
            "dispatches": len(dispatches),
            "with_document": sum(1 for doc, _ in dispatches if doc),
            "document_done": sum(1 for doc, _ in dispatches if doc == done),
            "awaiting_delivery": sum(1 for doc, dlv in dispatches if doc == done and not dlv),
            "with_delivery": sum(1 for _, dlv in dispatches if dlv),
            "delivery_done": sum(1 for _, dlv in dispatches if dlv == done),
        }


class PreCommissioningRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, record_id: int) -> Optional[PreCommissioning]:
        return self.db.query(PreCommissioning).filter(PreCommissioning.id == record_id).first()

    def require(self, record_id: int) -> PreCommissioning:
        record = self.get(record_id)
        if record is None:
            raise NotFoundError(f"pre-commissioning {record_id} not found", entity_id=record_id)
        return record

    def for_serial(self, dispatch_serial_id: int) -> Optional[PreCommissioning]:
        return self.db.query(PreCommissioning).filter(
            PreCommissioning.dispatch_serial_id == dispatch_serial_id
        ).first()

    def list_by_po(self, po_id: str) -> List[PreCommissioning]:
        return self.db.query(PreCommissioning).join(
            Dispatch, PreCommissioning.dispatch_id == Dispatch.id
        ).filter(Dispatch.po_id == po_id).order_by(PreCommissioning.id).all()

    def list_by_dispatch(self, dispatch_id: int) -> List[PreCommissioning]:
        return self.db.query(PreCommissioning).filter(
            PreCommissioning.dispatch_id == dispatch_id
        ).order_by(PreCommissioning.id).all()

    def count_by_po(self, po_id: str, status: Optional[str] = None) -> int:
        query = self.db.query(func.count(PreCommissioning.id)).join(
            Dispatch, PreCommissioning.dispatch_id == Dispatch.id
        ).filter(Dispatch.po_id == po_id)
        if status is not None:
            query = query.filter(PreCommissioning.pre_commissioning_status == status)
        return query.scalar() or 0

    def eligible_serials(self, po_id: str):
        """Serials of delivered dispatches that have no pre-commissioning yet"""
        return self.db.query(
            DispatchSerial.id.label("dispatch_serial_id"),
            Dispatch.id.label("dispatch_id"),
            DispatchSerial.serial_number,
            OrderLine.product_name,
            Dispatch.dispatch_date,
        ).join(
            DispatchedItem, DispatchSerial.dispatched_item_id == DispatchedItem.id
        ).join(
            Dispatch, DispatchedItem.dispatch_id == Dispatch.id
        ).join(
            OrderLine, and_(
                OrderLine.po_id == Dispatch.po_id,
                OrderLine.product_id == DispatchedItem.product_id
            )
        ).filter(
            Dispatch.po_id == po_id,
            Dispatch.delivery_status == SectionStatus.DONE.value,
            ~exists().where(PreCommissioning.dispatch_serial_id == DispatchSerial.id)
        ).order_by(Dispatch.id, DispatchedItem.id, DispatchSerial.position).all()


class CommissioningRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, record_id: int) -> Optional[Commissioning]:
        return self.db.query(Commissioning).filter(Commissioning.id == record_id).first()

    def require(self, record_id: int) -> Commissioning:
        record = self.get(record_id)
        if record is None:
            raise NotFoundError(f"commissioning {record_id} not found", entity_id=record_id)
        return record

    def for_pre_commissioning(self, pre_commissioning_id: int) -> Optional[Commissioning]:
        return self.db.query(Commissioning).filter(
            Commissioning.pre_commissioning_id == pre_commissioning_id
        ).first()

    def _by_po(self, po_id: str):
        return self.db.query(Commissioning).join(
            PreCommissioning, Commissioning.pre_commissioning_id == PreCommissioning.id
        ).join(
            Dispatch, PreCommissioning.dispatch_id == Dispatch.id
        ).filter(Dispatch.po_id == po_id)

    def list_by_po(self, po_id: str) -> List[Commissioning]:
        return self._by_po(po_id).order_by(Commissioning.id).all()

    def count_by_po(self, po_id: str, status: Optional[str] = None) -> int:
        query = self._by_po(po_id)
        if status is not None:
            query = query.filter(Commissioning.commissioning_status == status)
        return query.with_entities(func.count(Commissioning.id)).scalar() or 0

    def eligible_pre_commissionings(self, po_id: str):
        """Done pre-commissioning records without a commissioning record"""
        return self.db.query(
            PreCommissioning.id.label("pre_commissioning_id"),
            PreCommissioning.serial_number,
            PreCommissioning.product_name,
            PreCommissioning.dispatch_id,
        ).join(
            Dispatch, PreCommissioning.dispatch_id == Dispatch.id
        ).filter(
            Dispatch.po_id == po_id,
            PreCommissioning.pre_commissioning_status == ServiceStatus.DONE.value,
            ~exists().where(Commissioning.pre_commissioning_id == PreCommissioning.id)
        ).order_by(PreCommissioning.id).all()


class WarrantyCertificateRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, record_id: int) -> Optional[WarrantyCertificate]:
        return self.db.query(WarrantyCertificate).filter(WarrantyCertificate.id == record_id).first()

    def require(self, record_id: int) -> WarrantyCertificate:
        record = self.get(record_id)
        if record is None:
            raise NotFoundError(f"warranty certificate {record_id} not found", entity_id=record_id)
        return record

    def for_commissioning(self, commissioning_id: int) -> Optional[WarrantyCertificate]:
        return self.db.query(WarrantyCertificate).filter(
            WarrantyCertificate.commissioning_id == commissioning_id
        ).first()

    def _by_po(self, po_id: str):
        return self.db.query(WarrantyCertificate).join(
            Commissioning, WarrantyCertificate.commissioning_id == Commissioning.id
        ).join(
            PreCommissioning, Commissioning.pre_commissioning_id == PreCommissioning.id
        ).join(
            Dispatch, PreCommissioning.dispatch_id == Dispatch.id
        ).filter(Dispatch.po_id == po_id)

    def list_by_po(self, po_id: str) -> List[WarrantyCertificate]:
        return self._by_po(po_id).order_by(WarrantyCertificate.id).all()

    def count_by_po(self, po_id: str, status: Optional[str] = None) -> int:
        query = self._by_po(po_id)
        if status is not None:
            query = query.filter(WarrantyCertificate.warranty_status == status)
        return query.with_entities(func.count(WarrantyCertificate.id)).scalar() or 0

    def eligible_commissionings(self, po_id: str):
        """Done commissioning records without a warranty certificate"""
        return self.db.query(
            Commissioning.id.label("commissioning_id"),
            Commissioning.pre_commissioning_id,
            PreCommissioning.serial_number,
            PreCommissioning.product_name,
            Commissioning.commissioning_date,
        ).join(
            PreCommissioning, Commissioning.pre_commissioning_id == PreCommissioning.id
        ).join(
            Dispatch, PreCommissioning.dispatch_id == Dispatch.id
        ).filter(
            Dispatch.po_id == po_id,
            Commissioning.commissioning_status == ServiceStatus.DONE.value,
            ~exists().where(WarrantyCertificate.commissioning_id == Commissioning.id)
        ).order_by(Commissioning.id).all()
