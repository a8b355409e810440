"""
Lifecycle Orchestrator
======================
The only mutation surface of the lifecycle:
- order intake and header edits (lines replaced wholesale)
- dispatch creation and section updates, guarded by the quantity ledger
  and the serial reconciler
- bulk creation of pre-commissioning / commissioning / warranty records
- single-record edits and deletes
- closing an order

Every operation runs as one transaction: commit at the end, rollback on
any error. For the 1:1 links the UNIQUE constraints decide concurrent
races; the pre-checks here only fail fast with a readable message.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import (
    PurchaseOrder, OrderLine, Dispatch, DispatchedItem, DispatchSerial,
    PreCommissioning, Commissioning, WarrantyCertificate,
    OrderStatus, SectionStatus, ServiceStatus,
)
from ..schemas import (
    OrderCreate, OrderUpdate, OrderLineIn,
    DispatchCreate, DispatchDetailsUpdate, DispatchDocumentsUpdate,
    DeliveryConfirmationUpdate, DispatchedItemIn,
    PreCommissioningItem, PreCommissioningFields, PreCommissioningUpdate,
    CommissioningItem, CommissioningFields, CommissioningUpdate,
    WarrantyItem, WarrantyFields, WarrantyUpdate,
)
from .errors import BatchError, ConflictError, NotFoundError, NotReadyError, ValidationError
from .ledger import QuantityLedger, split_serials, validate_serial_count
from .repositories import (
    PurchaseOrderRepository, DispatchRepository, PreCommissioningRepository,
    CommissioningRepository, WarrantyCertificateRepository,
)

logger = logging.getLogger(__name__)

DONE = ServiceStatus.DONE.value
SECTION_DONE = SectionStatus.DONE.value


class LifecycleOrchestrator:
    """Validated writes for one session"""

    def __init__(self, db: Session):
        self.db = db
        self.orders = PurchaseOrderRepository(db)
        self.dispatches = DispatchRepository(db)
        self.pre_commissioning = PreCommissioningRepository(db)
        self.commissioning = CommissioningRepository(db)
        self.warranty = WarrantyCertificateRepository(db)
        self.ledger = QuantityLedger(self.orders)

    # =========================================================================
    # TRANSACTION HELPERS
    # =========================================================================

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(f"write rejected by a storage constraint: {exc.orig}") from exc
        except Exception:
            self.db.rollback()
            raise

    @contextmanager
    def _batch(self, kind: str):
        """All-or-nothing bulk create; item failures surface as BatchError"""
        try:
            yield
            self.db.commit()
        except (ConflictError, ValidationError) as exc:
            self.db.rollback()
            logger.warning("%s batch rejected: %s", kind, exc)
            raise BatchError(exc, item_id=exc.entity_id) from exc
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning("%s batch rejected by storage constraint: %s", kind, exc.orig)
            raise BatchError(ConflictError(f"{kind} batch conflicts with an existing record")) from exc
        except Exception:
            self.db.rollback()
            raise

    def _flush_child(self, message: str, entity_id) -> None:
        """Flush one new child row; a UNIQUE violation means a concurrent writer won"""
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise ConflictError(message, entity_id=entity_id) from exc

    @staticmethod
    def _ensure_open(po: PurchaseOrder) -> None:
        if po.is_closed:
            raise ConflictError(f"purchase order {po.po_id} is closed", entity_id=po.po_id)

    @staticmethod
    def _check_status_change(current: Optional[str], fields: dict, key: str, done: str, label: str, entity_id) -> None:
        """A status that reached Done stays Done"""
        if key not in fields:
            return
        new = fields[key]
        if current == done and new != done:
            raise ConflictError(f"{label} {entity_id} is already {done} and its status cannot be changed", entity_id=entity_id)

    @staticmethod
    def _require_status(fields: dict, key: str, label: str, entity_id) -> None:
        if key in fields and fields[key] is None:
            raise ValidationError(f"{label} {entity_id} status cannot be empty", entity_id=entity_id)

    def _allocation_complete(self, po: PurchaseOrder) -> bool:
        total = po.total_quantity
        allocated = sum(self.orders.dispatched_by_product(po.po_id).values())
        return total > 0 and allocated >= total

    # =========================================================================
    # ORDER INTAKE
    # =========================================================================

    @staticmethod
    def _build_lines(lines: List[OrderLineIn], actor_id: Optional[int]) -> List[OrderLine]:
        built = []
        seen = set()
        for line in lines:
            if line.product_id in seen:
                raise ValidationError(f"product {line.product_id} appears more than once on the order", entity_id=line.product_id)
            seen.add(line.product_id)
            if line.quantity < 0 or line.spare_quantity < 0:
                raise ValidationError(f"quantities for product {line.product_id} must not be negative", entity_id=line.product_id)
            total = line.quantity + line.spare_quantity
            if line.total_quantity is not None and line.total_quantity != total:
                raise ValidationError(
                    f"total quantity for product {line.product_id} must equal quantity + spare quantity ({total})",
                    entity_id=line.product_id
                )
            if total <= 0:
                raise ValidationError(f"total quantity for product {line.product_id} must be positive", entity_id=line.product_id)
            built.append(OrderLine(
                category=line.category,
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                spare_quantity=line.spare_quantity,
                total_quantity=total,
                created_by_id=actor_id,
                updated_by_id=actor_id,
            ))
        return built

    def create_order(self, data: OrderCreate, actor_id: Optional[int]) -> PurchaseOrder:
        with self._transaction():
            if self.orders.get(data.po_id) is not None:
                raise ConflictError(f"purchase order {data.po_id} already exists", entity_id=data.po_id)
            po = PurchaseOrder(
                **data.model_dump(exclude={"lines"}),
                po_status=OrderStatus.OPEN.value,
                created_by_id=actor_id,
                updated_by_id=actor_id,
            )
            po.lines = self._build_lines(data.lines, actor_id)
            self.orders.add(po)
            self.db.flush()
        logger.info("purchase order %s created with %d lines", po.po_id, len(po.lines))
        return po

    def update_order(self, po_id: str, data: OrderUpdate, actor_id: Optional[int]) -> PurchaseOrder:
        """Header fields are patched; lines, when given, replace all existing lines"""
        with self._transaction():
            po = self.orders.require(po_id, for_update=True)
            self._ensure_open(po)
            for key, value in data.model_dump(exclude_unset=True, exclude={"lines"}).items():
                if key == "client_name" and not value:
                    raise ValidationError("client name cannot be empty", entity_id=po_id)
                setattr(po, key, value)

            if data.lines is not None:
                if not data.lines:
                    raise ValidationError("an order needs at least one line", entity_id=po_id)
                new_lines = self._build_lines(data.lines, actor_id)
                if self._allocation_complete(po):
                    raise ConflictError(
                        f"lines of purchase order {po_id} are frozen once dispatch is complete",
                        entity_id=po_id
                    )
                new_totals = {line.product_id: line.total_quantity for line in new_lines}
                for product_id, dispatched in self.orders.dispatched_by_product(po_id).items():
                    if new_totals.get(product_id, 0) < dispatched:
                        raise ValidationError(
                            f"total quantity for product {product_id} cannot drop below "
                            f"the dispatched quantity ({dispatched})",
                            entity_id=product_id
                        )
                po.lines.clear()
                self.db.flush()
                po.lines.extend(new_lines)

            po.updated_by_id = actor_id
            self.db.flush()
        logger.info("purchase order %s updated", po_id)
        return po

    def delete_order(self, po_id: str, actor_id: Optional[int]) -> None:
        """Only an order nothing has been dispatched against can be deleted"""
        with self._transaction():
            po = self.orders.require(po_id, for_update=True)
            self._ensure_open(po)
            if self.orders.has_dispatches(po_id):
                raise ConflictError(f"purchase order {po_id} has dispatches and cannot be deleted", entity_id=po_id)
            self.db.delete(po)
        logger.info("purchase order %s deleted by user %s", po_id, actor_id)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    @staticmethod
    def _requested_quantities(items: List[DispatchedItemIn]) -> Dict[int, int]:
        requested = {}
        for item in items:
            if item.product_id in requested:
                raise ValidationError(f"product {item.product_id} appears more than once in the dispatch", entity_id=item.product_id)
            requested[item.product_id] = item.quantity
        return requested

    @staticmethod
    def _build_items(requested: Dict[int, int], actor_id: Optional[int]) -> List[DispatchedItem]:
        return [
            DispatchedItem(product_id=product_id, quantity=quantity, created_by_id=actor_id, updated_by_id=actor_id)
            for product_id, quantity in requested.items()
        ]

    def create_dispatch(self, data: DispatchCreate, actor_id: Optional[int]) -> Dispatch:
        with self._transaction():
            # The order row lock serializes ledger checks for the same order
            po = self.orders.require(data.po_id, for_update=True)
            self._ensure_open(po)
            requested = self._requested_quantities(data.items)
            self.ledger.check_allocation(po.po_id, requested)

            fields = data.model_dump(exclude={"po_id", "items"}, exclude_none=True)
            fields.setdefault("details_status", SectionStatus.PENDING.value)
            dispatch = Dispatch(
                po_id=po.po_id,
                **fields,
                details_updated_at=datetime.utcnow(),
                created_by_id=actor_id,
                updated_by_id=actor_id,
            )
            dispatch.items = self._build_items(requested, actor_id)
            self.dispatches.add(dispatch)
            self.db.flush()
        logger.info("dispatch %s created for %s: %s", dispatch.id, po.po_id, requested)
        return dispatch

    def _load_dispatch(self, dispatch_id: int) -> Tuple[Dispatch, PurchaseOrder]:
        dispatch = self.dispatches.require(dispatch_id)
        po = self.orders.require(dispatch.po_id, for_update=True)
        self._ensure_open(po)
        return dispatch, po

    def update_dispatch_details(self, dispatch_id: int, data: DispatchDetailsUpdate, actor_id: Optional[int]) -> Dispatch:
        with self._transaction():
            dispatch, po = self._load_dispatch(dispatch_id)
            fields = data.model_dump(exclude_unset=True, exclude={"items"})
            self._require_status(fields, "details_status", "dispatch", dispatch_id)
            self._check_status_change(dispatch.details_status, fields, "details_status", SECTION_DONE, "dispatch", dispatch_id)
            for key, value in fields.items():
                setattr(dispatch, key, value)

            if data.items is not None:
                if dispatch.document_done:
                    raise ConflictError(
                        f"dispatched items of dispatch {dispatch_id} are frozen once its documents are done",
                        entity_id=dispatch_id
                    )
                if self._allocation_complete(po):
                    raise ConflictError(
                        f"dispatched items of purchase order {po.po_id} are frozen once dispatch is complete",
                        entity_id=dispatch_id
                    )
                requested = self._requested_quantities(data.items)
                self.ledger.check_allocation(po.po_id, requested, excluding_dispatch_id=dispatch.id)
                dispatch.items.clear()
                self.db.flush()
                dispatch.items.extend(self._build_items(requested, actor_id))

            dispatch.details_updated_at = datetime.utcnow()
            dispatch.updated_by_id = actor_id
            self.db.flush()
        logger.info("dispatch %s details updated", dispatch_id)
        return dispatch

    def _record_serials(self, dispatch: Dispatch, serials: Dict[int, str], actor_id: Optional[int]) -> None:
        items_by_product = {item.product_id: item for item in dispatch.items}
        parsed = {}
        for product_id, text in serials.items():
            item = items_by_product.get(product_id)
            if item is None:
                raise NotFoundError(f"product {product_id} is not on dispatch {dispatch.id}", entity_id=product_id)
            if split_serials(text):
                parsed[product_id] = validate_serial_count(item.quantity, text, entity_id=item.id)
            else:
                parsed[product_id] = []

        # Serial numbers are unique across all lines of one dispatch
        seen = set()
        for item in dispatch.items:
            tokens = parsed.get(item.product_id)
            if tokens is None:
                tokens = [s.serial_number for s in item.serials]
            for token in tokens:
                if token in seen:
                    raise ValidationError(f"serial number {token} is used twice on dispatch {dispatch.id}", entity_id=dispatch.id)
                seen.add(token)

        for product_id in parsed:
            items_by_product[product_id].serials.clear()
        self.db.flush()
        for product_id, tokens in parsed.items():
            item = items_by_product[product_id]
            item.serials.extend(
                DispatchSerial(dispatch_id=dispatch.id, position=position, serial_number=token)
                for position, token in enumerate(tokens, start=1)
            )
            item.updated_by_id = actor_id

    def update_dispatch_documents(self, dispatch_id: int, data: DispatchDocumentsUpdate, actor_id: Optional[int]) -> Dispatch:
        """
        Shipping documents and serial numbers.

        Marking the documents done requires every dispatched line to carry
        exactly as many serial numbers as its quantity.
        """
        with self._transaction():
            dispatch, po = self._load_dispatch(dispatch_id)
            fields = data.model_dump(exclude_unset=True, exclude={"serial_numbers"})
            was_done = dispatch.document_done
            self._check_status_change(dispatch.document_status, fields, "document_status", SECTION_DONE, "dispatch documents", dispatch_id)

            if data.serial_numbers:
                if was_done:
                    raise ConflictError(
                        f"serial numbers of dispatch {dispatch_id} are frozen once its documents are done",
                        entity_id=dispatch_id
                    )
                self._record_serials(dispatch, data.serial_numbers, actor_id)
                self.db.flush()

            for key, value in fields.items():
                setattr(dispatch, key, value)

            if dispatch.document_done and not was_done:
                for item in dispatch.items:
                    validate_serial_count(item.quantity, item.serial_numbers, entity_id=item.id)

            dispatch.document_updated_at = datetime.utcnow()
            dispatch.updated_by_id = actor_id
            self.db.flush()
        logger.info("dispatch %s documents updated (status=%s)", dispatch_id, dispatch.document_status)
        return dispatch

    def update_delivery_confirmation(self, dispatch_id: int, data: DeliveryConfirmationUpdate, actor_id: Optional[int]) -> Dispatch:
        with self._transaction():
            dispatch, po = self._load_dispatch(dispatch_id)
            if not dispatch.document_done:
                raise ConflictError(
                    f"delivery of dispatch {dispatch_id} cannot be confirmed before its documents are done",
                    entity_id=dispatch_id
                )
            fields = data.model_dump(exclude_unset=True)
            self._check_status_change(dispatch.delivery_status, fields, "delivery_status", SECTION_DONE, "dispatch delivery", dispatch_id)
            for key, value in fields.items():
                setattr(dispatch, key, value)
            dispatch.delivery_updated_at = datetime.utcnow()
            dispatch.updated_by_id = actor_id
            self.db.flush()
        logger.info("dispatch %s delivery updated (status=%s)", dispatch_id, dispatch.delivery_status)
        return dispatch

    def delete_dispatch(self, dispatch_id: int, actor_id: Optional[int]) -> None:
        with self._transaction():
            dispatch, po = self._load_dispatch(dispatch_id)
            if SECTION_DONE in (dispatch.details_status, dispatch.document_status, dispatch.delivery_status):
                raise ConflictError(f"dispatch {dispatch_id} has a completed section and cannot be deleted", entity_id=dispatch_id)
            if self._allocation_complete(po):
                raise ConflictError(
                    f"dispatches of purchase order {po.po_id} are frozen once dispatch is complete",
                    entity_id=dispatch_id
                )
            self.db.delete(dispatch)
        logger.info("dispatch %s deleted by user %s", dispatch_id, actor_id)

    # =========================================================================
    # BULK CREATES
    # =========================================================================

    @staticmethod
    def _check_batch(keys: list, label: str) -> None:
        if not keys:
            raise ValidationError(f"{label} batch has no items")
        seen = set()
        for key in keys:
            if key in seen:
                raise ValidationError(f"{label} {key} appears more than once in the batch", entity_id=key)
            seen.add(key)

    @staticmethod
    def _shared(fields) -> dict:
        return fields.model_dump(exclude={"items"})

    def create_pre_commissioning_batch(
        self,
        items: List[PreCommissioningItem],
        fields: PreCommissioningFields,
        actor_id: Optional[int]
    ) -> List[PreCommissioning]:
        """One pre-commissioning record per delivered serial number"""
        shared = self._shared(fields)
        created = []
        with self._batch("pre-commissioning"):
            keys = [(item.dispatch_id, item.serial_number.strip()) for item in items]
            self._check_batch(keys, "serial number")
            for item, (dispatch_id, serial_number) in zip(items, keys):
                dispatch = self.dispatches.require(dispatch_id)
                self._ensure_open(self.orders.require(dispatch.po_id))
                serial = self.dispatches.find_serial(dispatch_id, serial_number)
                if serial is None:
                    raise NotFoundError(
                        f"serial number {serial_number} not found on dispatch {dispatch_id}",
                        entity_id=dispatch_id
                    )
                if not dispatch.delivery_done:
                    raise ConflictError(f"delivery of dispatch {dispatch_id} is not done", entity_id=dispatch_id)
                conflict = f"pre-commissioning already exists for serial {serial_number} on dispatch {dispatch_id}"
                if self.pre_commissioning.for_serial(serial.id) is not None:
                    raise ConflictError(conflict, entity_id=dispatch_id)
                product_name = serial.item.product_name
                if item.product_name and item.product_name != product_name:
                    raise ValidationError(
                        f"serial {serial_number} on dispatch {dispatch_id} belongs to {product_name}, not {item.product_name}",
                        entity_id=dispatch_id
                    )
                record = PreCommissioning(
                    dispatch_serial_id=serial.id,
                    dispatch_id=dispatch_id,
                    serial_number=serial_number,
                    product_name=product_name,
                    **shared,
                    created_by_id=actor_id,
                    updated_by_id=actor_id,
                )
                self.db.add(record)
                self._flush_child(conflict, entity_id=dispatch_id)
                created.append(record)
        logger.info("created %d pre-commissioning records by user %s", len(created), actor_id)
        return created

    def create_commissioning_batch(
        self,
        items: List[CommissioningItem],
        fields: CommissioningFields,
        actor_id: Optional[int]
    ) -> List[Commissioning]:
        shared = self._shared(fields)
        created = []
        with self._batch("commissioning"):
            keys = [item.pre_commissioning_id for item in items]
            self._check_batch(keys, "pre-commissioning")
            for pre_commissioning_id in keys:
                upstream = self.pre_commissioning.require(pre_commissioning_id)
                self._ensure_open(self.orders.require(upstream.po_id))
                if upstream.pre_commissioning_status != DONE:
                    raise ConflictError(
                        f'pre-commissioning {pre_commissioning_id} is not in "{DONE}" status',
                        entity_id=pre_commissioning_id
                    )
                conflict = f"commissioning already exists for pre-commissioning {pre_commissioning_id}"
                if self.commissioning.for_pre_commissioning(pre_commissioning_id) is not None:
                    raise ConflictError(conflict, entity_id=pre_commissioning_id)
                record = Commissioning(
                    pre_commissioning_id=pre_commissioning_id,
                    **shared,
                    created_by_id=actor_id,
                    updated_by_id=actor_id,
                )
                self.db.add(record)
                self._flush_child(conflict, entity_id=pre_commissioning_id)
                self.db.expire(upstream, ["commissioning"])
                created.append(record)
        logger.info("created %d commissioning records by user %s", len(created), actor_id)
        return created

    @staticmethod
    def _check_warranty_dates(start, end, entity_id=None) -> None:
        if start is not None and end is not None and start > end:
            raise ValidationError("warranty start date must not be after the end date", entity_id=entity_id)

    def create_warranty_batch(
        self,
        items: List[WarrantyItem],
        fields: WarrantyFields,
        actor_id: Optional[int]
    ) -> List[WarrantyCertificate]:
        """One certificate number and date range stamped on every record of the batch"""
        shared = self._shared(fields)
        created = []
        with self._batch("warranty certificate"):
            keys = [item.commissioning_id for item in items]
            self._check_batch(keys, "commissioning")
            self._check_warranty_dates(shared.get("warranty_start_date"), shared.get("warranty_end_date"))
            for commissioning_id in keys:
                upstream = self.commissioning.require(commissioning_id)
                self._ensure_open(self.orders.require(upstream.po_id))
                if upstream.commissioning_status != DONE:
                    raise ConflictError(
                        f'commissioning {commissioning_id} is not in "{DONE}" status',
                        entity_id=commissioning_id
                    )
                conflict = f"warranty certificate already exists for commissioning {commissioning_id}"
                if self.warranty.for_commissioning(commissioning_id) is not None:
                    raise ConflictError(conflict, entity_id=commissioning_id)
                record = WarrantyCertificate(
                    commissioning_id=commissioning_id,
                    **shared,
                    created_by_id=actor_id,
                    updated_by_id=actor_id,
                )
                self.db.add(record)
                self._flush_child(conflict, entity_id=commissioning_id)
                self.db.expire(upstream, ["warranty_certificate"])
                created.append(record)
        logger.info("created %d warranty certificates by user %s", len(created), actor_id)
        return created

    # =========================================================================
    # SINGLE-RECORD EDITS
    # =========================================================================

    def update_pre_commissioning(self, record_id: int, data: PreCommissioningUpdate, actor_id: Optional[int]) -> PreCommissioning:
        with self._transaction():
            record = self.pre_commissioning.require(record_id)
            self._ensure_open(self.orders.require(record.po_id))
            fields = data.model_dump(exclude_unset=True)
            self._require_status(fields, "pre_commissioning_status", "pre-commissioning", record_id)
            self._check_status_change(record.pre_commissioning_status, fields, "pre_commissioning_status", DONE, "pre-commissioning", record_id)
            for key, value in fields.items():
                setattr(record, key, value)
            record.updated_by_id = actor_id
            self.db.flush()
        logger.info("pre-commissioning %s updated", record_id)
        return record

    def update_commissioning(self, record_id: int, data: CommissioningUpdate, actor_id: Optional[int]) -> Commissioning:
        with self._transaction():
            record = self.commissioning.require(record_id)
            self._ensure_open(self.orders.require(record.po_id))
            fields = data.model_dump(exclude_unset=True)
            self._require_status(fields, "commissioning_status", "commissioning", record_id)
            self._check_status_change(record.commissioning_status, fields, "commissioning_status", DONE, "commissioning", record_id)
            for key, value in fields.items():
                setattr(record, key, value)
            record.updated_by_id = actor_id
            self.db.flush()
        logger.info("commissioning %s updated", record_id)
        return record

    def update_warranty(self, record_id: int, data: WarrantyUpdate, actor_id: Optional[int]) -> WarrantyCertificate:
        with self._transaction():
            record = self.warranty.require(record_id)
            self._ensure_open(self.orders.require(record.po_id))
            fields = data.model_dump(exclude_unset=True)
            self._require_status(fields, "warranty_status", "warranty certificate", record_id)
            if "certificate_no" in fields and not fields["certificate_no"]:
                raise ValidationError(f"warranty certificate {record_id} needs a certificate number", entity_id=record_id)
            self._check_status_change(record.warranty_status, fields, "warranty_status", DONE, "warranty certificate", record_id)
            self._check_warranty_dates(
                fields.get("warranty_start_date", record.warranty_start_date),
                fields.get("warranty_end_date", record.warranty_end_date),
                entity_id=record_id
            )
            for key, value in fields.items():
                setattr(record, key, value)
            record.updated_by_id = actor_id
            self.db.flush()
        logger.info("warranty certificate %s updated", record_id)
        return record

    def delete_pre_commissioning(self, record_id: int, actor_id: Optional[int]) -> None:
        with self._transaction():
            record = self.pre_commissioning.require(record_id)
            self._ensure_open(self.orders.require(record.po_id))
            if self.commissioning.for_pre_commissioning(record_id) is not None:
                raise ConflictError(f"pre-commissioning {record_id} has a commissioning record", entity_id=record_id)
            if record.pre_commissioning_status == DONE:
                raise ConflictError(f"pre-commissioning {record_id} is {DONE} and cannot be deleted", entity_id=record_id)
            self.db.delete(record)
        logger.info("pre-commissioning %s deleted by user %s", record_id, actor_id)

    def delete_commissioning(self, record_id: int, actor_id: Optional[int]) -> None:
        with self._transaction():
            record = self.commissioning.require(record_id)
            self._ensure_open(self.orders.require(record.po_id))
            if self.warranty.for_commissioning(record_id) is not None:
                raise ConflictError(f"commissioning {record_id} has a warranty certificate", entity_id=record_id)
            if record.commissioning_status == DONE:
                raise ConflictError(f"commissioning {record_id} is {DONE} and cannot be deleted", entity_id=record_id)
            upstream = record.pre_commissioning
            self.db.delete(record)
            self.db.flush()
            self.db.expire(upstream, ["commissioning"])
        logger.info("commissioning %s deleted by user %s", record_id, actor_id)

    def delete_warranty(self, record_id: int, actor_id: Optional[int]) -> None:
        with self._transaction():
            record = self.warranty.require(record_id)
            self._ensure_open(self.orders.require(record.po_id))
            if record.warranty_status == DONE:
                raise ConflictError(f"warranty certificate {record_id} is {DONE} and cannot be deleted", entity_id=record_id)
            upstream = record.commissioning
            self.db.delete(record)
            self.db.flush()
            self.db.expire(upstream, ["warranty_certificate"])
        logger.info("warranty certificate %s deleted by user %s", record_id, actor_id)

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close_order(
        self,
        po_id: str,
        actor_id: Optional[int],
        stages_not_done: Callable[[str], List[str]]
    ) -> Tuple[PurchaseOrder, bool]:
        """
        Close an order whose six stages are Done.

        Returns (order, already_closed). Closing is one-way; a second call
        returns the closed order unchanged.
        """
        with self._transaction():
            po = self.orders.require(po_id, for_update=True)
            if po.is_closed:
                return po, True
            missing = stages_not_done(po_id)
            if missing:
                raise NotReadyError(
                    f"purchase order {po_id} is not ready to close: {', '.join(missing)} not Done",
                    entity_id=po_id
                )
            now = datetime.utcnow()
            po.po_status = OrderStatus.CLOSED.value
            po.closed_at = now
            po.closed_by_id = actor_id
            po.updated_by_id = actor_id
        logger.info("purchase order %s closed by user %s", po_id, actor_id)
        return po, False
