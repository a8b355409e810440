"""
Purchase-Order Lifecycle - Data Models
======================================
Order intake, dispatch and the service lifecycle chain:

    PurchaseOrder ─< OrderLine
          │
          └─< Dispatch ─< DispatchedItem ─< DispatchSerial
                                                  │ 1:1
                                          PreCommissioning
                                                  │ 1:1
                                            Commissioning
                                                  │ 1:1
                                         WarrantyCertificate

Every 1:1 link is a UNIQUE foreign key on the child table, so the storage
layer rejects a second child for the same parent even when two requests
pass the application pre-check at the same time.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text, Boolean,
    CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship, validates
from .db import Base


# =============================================================================
# ENUMS
# =============================================================================

class OrderStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class SectionStatus(str, Enum):
    """Status of a dispatch section (details / documents / delivery)"""
    DONE = "done"
    PENDING = "pending"
    HOLD = "hold"
    CANCELLED = "cancelled"


class ServiceStatus(str, Enum):
    """Status of pre-commissioning, commissioning and warranty records"""
    DONE = "Done"
    PENDING = "Pending"
    HOLD = "Hold"
    CANCELLED = "Cancelled"


class NoDuesClearance(str, Enum):
    PENDING = "pending"
    CLEARED = "cleared"
    NOT_REQUIRED = "not_required"


class AccordionStatus(str, Enum):
    """Aggregate status of one stage for a purchase order"""
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In-Progress"
    DONE = "Done"


class Stage(str, Enum):
    DISPATCH = "dispatch"
    DOCUMENT = "document"
    DELIVERY = "delivery"
    PRE_COMMISSIONING = "pre_commissioning"
    COMMISSIONING = "commissioning"
    WARRANTY = "warranty"


STAGE_ORDER = [
    Stage.DISPATCH,
    Stage.DOCUMENT,
    Stage.DELIVERY,
    Stage.PRE_COMMISSIONING,
    Stage.COMMISSIONING,
    Stage.WARRANTY,
]


# =============================================================================
# USERS
# =============================================================================

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class AuditMixin:
    """createdById / updatedById / createdAt / updatedAt on every entity"""
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

class PurchaseOrder(AuditMixin, Base):
    __tablename__ = "purchase_orders"

    po_id = Column(String(50), primary_key=True)
    client_name = Column(String(200), nullable=False)
    client_po_no = Column(String(100), nullable=True)
    client_po_date = Column(Date, nullable=True)
    po_received_date = Column(Date, nullable=True)
    site_location = Column(String(200), nullable=True)
    remarks = Column(Text, nullable=True)

    po_status = Column(String(20), nullable=False, default=OrderStatus.OPEN.value)
    closed_at = Column(DateTime, nullable=True)
    closed_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    lines = relationship(
        "OrderLine", back_populates="purchase_order",
        cascade="all, delete-orphan", order_by="OrderLine.id"
    )
    dispatches = relationship("Dispatch", back_populates="purchase_order", order_by="Dispatch.id")

    @property
    def is_closed(self) -> bool:
        return self.po_status == OrderStatus.CLOSED.value

    @property
    def total_quantity(self) -> int:
        return sum(line.total_quantity for line in self.lines)


class OrderLine(AuditMixin, Base):
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True, index=True)
    po_id = Column(String(50), ForeignKey("purchase_orders.po_id"), nullable=False)
    category = Column(String(100), nullable=True)
    product_id = Column(Integer, nullable=False)
    product_name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    spare_quantity = Column(Integer, nullable=False, default=0)
    total_quantity = Column(Integer, nullable=False)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    purchase_order = relationship("PurchaseOrder", back_populates="lines")

    __table_args__ = (
        UniqueConstraint("po_id", "product_id", name="uq_order_line_product"),
        CheckConstraint("quantity >= 0", name="ck_order_line_quantity"),
        CheckConstraint("spare_quantity >= 0", name="ck_order_line_spare"),
        CheckConstraint("quantity + spare_quantity = total_quantity", name="ck_order_line_total"),
    )


# =============================================================================
# DISPATCH
# =============================================================================

class Dispatch(AuditMixin, Base):
    """
    One physical dispatch against a purchase order.

    Three sections are updated independently, each with its own status and
    timestamp: core details, shipping documents, delivery confirmation.
    """
    __tablename__ = "dispatches"

    id = Column(Integer, primary_key=True, index=True)
    po_id = Column(String(50), ForeignKey("purchase_orders.po_id"), nullable=False, index=True)

    # Section 1: dispatch details
    project_name = Column(String(200), nullable=True)
    project_location = Column(String(200), nullable=True)
    delivery_location = Column(String(200), nullable=True)
    delivery_address = Column(Text, nullable=True)
    google_map_link = Column(String(500), nullable=True)
    confirm_dispatch_date = Column(Date, nullable=True)
    delivery_contact = Column(String(100), nullable=True)
    remarks = Column(Text, nullable=True)
    details_status = Column(String(20), nullable=False, default=SectionStatus.PENDING.value)
    details_updated_at = Column(DateTime, nullable=True)

    # Section 2: shipping documents
    no_dues_clearance = Column(String(20), nullable=True)
    doc_osg_pi_no = Column(String(100), nullable=True)
    doc_osg_pi_date = Column(Date, nullable=True)
    tax_invoice_number = Column(String(100), nullable=True)
    invoice_date = Column(Date, nullable=True)
    eway_bill = Column(String(100), nullable=True)
    delivery_challan = Column(String(100), nullable=True)
    dispatch_date = Column(Date, nullable=True)
    packaging_list = Column(String(200), nullable=True)
    dispatch_from_location = Column(String(200), nullable=True)
    dispatch_lr_no = Column(String(100), nullable=True)
    dispatch_remarks = Column(Text, nullable=True)
    document_status = Column(String(20), nullable=True)
    document_updated_at = Column(DateTime, nullable=True)

    # Section 3: delivery confirmation
    date_of_delivery = Column(Date, nullable=True)
    proof_of_delivery = Column(String(200), nullable=True)
    delivery_status = Column(String(20), nullable=True)
    delivery_updated_at = Column(DateTime, nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    purchase_order = relationship("PurchaseOrder", back_populates="dispatches")
    items = relationship(
        "DispatchedItem", back_populates="dispatch",
        cascade="all, delete-orphan", order_by="DispatchedItem.id"
    )

    __table_args__ = (
        Index("ix_dispatch_po_delivery", "po_id", "delivery_status"),
    )

    @property
    def dispatched_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def document_done(self) -> bool:
        return self.document_status == SectionStatus.DONE.value

    @property
    def delivery_done(self) -> bool:
        return self.delivery_status == SectionStatus.DONE.value


class DispatchedItem(AuditMixin, Base):
    __tablename__ = "dispatched_items"

    id = Column(Integer, primary_key=True, index=True)
    dispatch_id = Column(Integer, ForeignKey("dispatches.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    dispatch = relationship("Dispatch", back_populates="items")
    serials = relationship(
        "DispatchSerial", back_populates="item",
        cascade="all, delete-orphan", order_by="DispatchSerial.position"
    )

    __table_args__ = (
        UniqueConstraint("dispatch_id", "product_id", name="uq_dispatched_item_product"),
        CheckConstraint("quantity > 0", name="ck_dispatched_item_quantity"),
    )

    @validates("quantity")
    def validate_quantity(self, key, value):
        if value is None or value <= 0:
            raise ValueError("Dispatched quantity must be positive")
        return value

    @property
    def serial_numbers(self):
        """Comma-joined form used on the wire"""
        if not self.serials:
            return None
        return ",".join(s.serial_number for s in self.serials)

    @property
    def product_name(self):
        po = self.dispatch.purchase_order if self.dispatch else None
        if po is None:
            return None
        for line in po.lines:
            if line.product_id == self.product_id:
                return line.product_name
        return None


class DispatchSerial(Base):
    """One serial number of a dispatched line, in recorded order"""
    __tablename__ = "dispatch_serials"

    id = Column(Integer, primary_key=True, index=True)
    dispatched_item_id = Column(Integer, ForeignKey("dispatched_items.id"), nullable=False)
    dispatch_id = Column(Integer, ForeignKey("dispatches.id"), nullable=False)
    position = Column(Integer, nullable=False)
    serial_number = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    item = relationship("DispatchedItem", back_populates="serials")

    __table_args__ = (
        UniqueConstraint("dispatch_id", "serial_number", name="uq_dispatch_serial"),
        UniqueConstraint("dispatched_item_id", "position", name="uq_dispatch_serial_position"),
    )


# =============================================================================
# SERVICE LIFECYCLE
# =============================================================================

class PreCommissioning(AuditMixin, Base):
    __tablename__ = "pre_commissioning"

    id = Column(Integer, primary_key=True, index=True)
    dispatch_serial_id = Column(Integer, ForeignKey("dispatch_serials.id"), nullable=False, unique=True)
    dispatch_id = Column(Integer, ForeignKey("dispatches.id"), nullable=False, index=True)
    serial_number = Column(String(100), nullable=False)
    product_name = Column(String(200), nullable=False)

    pc_contact = Column(String(100), nullable=True)
    service_engineer_assigned = Column(String(100), nullable=True)
    ppm_checklist = Column(String(200), nullable=True)
    ppm_sheet_received_from_client = Column(String(50), nullable=True)
    ppm_checklist_shared_with_oem = Column(String(50), nullable=True)
    ppm_ticked_no_from_oem = Column(String(100), nullable=True)
    ppm_confirmation_status = Column(String(20), nullable=True)
    oem_comments = Column(Text, nullable=True)
    pre_commissioning_status = Column(String(20), nullable=False, default=ServiceStatus.PENDING.value)
    remarks = Column(Text, nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    dispatch = relationship("Dispatch")
    commissioning = relationship("Commissioning", back_populates="pre_commissioning", uselist=False)

    __table_args__ = (
        UniqueConstraint("dispatch_id", "serial_number", name="uq_pre_commissioning_serial"),
    )

    @property
    def status(self):
        return self.pre_commissioning_status

    @property
    def po_id(self):
        return self.dispatch.po_id if self.dispatch else None

    @property
    def has_commissioning(self) -> bool:
        return self.commissioning is not None


class Commissioning(AuditMixin, Base):
    __tablename__ = "commissioning"

    id = Column(Integer, primary_key=True, index=True)
    pre_commissioning_id = Column(Integer, ForeignKey("pre_commissioning.id"), nullable=False, unique=True)

    ecd_from_client = Column(String(100), nullable=True)
    service_ticket_no = Column(String(100), nullable=True)
    ccd_from_client = Column(String(100), nullable=True)
    issues = Column(Text, nullable=True)
    solution = Column(Text, nullable=True)
    info_generated = Column(Text, nullable=True)
    commissioning_date = Column(Date, nullable=True)
    commissioning_status = Column(String(20), nullable=False, default=ServiceStatus.PENDING.value)
    remarks = Column(Text, nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    pre_commissioning = relationship("PreCommissioning", back_populates="commissioning")
    warranty_certificate = relationship("WarrantyCertificate", back_populates="commissioning", uselist=False)

    @property
    def status(self):
        return self.commissioning_status

    @property
    def serial_number(self):
        return self.pre_commissioning.serial_number

    @property
    def product_name(self):
        return self.pre_commissioning.product_name

    @property
    def dispatch_id(self):
        return self.pre_commissioning.dispatch_id

    @property
    def po_id(self):
        return self.pre_commissioning.po_id

    @property
    def has_warranty_certificate(self) -> bool:
        return self.warranty_certificate is not None


class WarrantyCertificate(AuditMixin, Base):
    __tablename__ = "warranty_certificates"

    id = Column(Integer, primary_key=True, index=True)
    commissioning_id = Column(Integer, ForeignKey("commissioning.id"), nullable=False, unique=True)

    certificate_no = Column(String(100), nullable=False)
    issue_date = Column(Date, nullable=True)
    warranty_start_date = Column(Date, nullable=True)
    warranty_end_date = Column(Date, nullable=True)
    warranty_status = Column(String(20), nullable=False, default=ServiceStatus.PENDING.value)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    commissioning = relationship("Commissioning", back_populates="warranty_certificate")

    @property
    def status(self):
        return self.warranty_status

    @property
    def pre_commissioning_id(self):
        return self.commissioning.pre_commissioning_id

    @property
    def serial_number(self):
        return self.commissioning.serial_number

    @property
    def product_name(self):
        return self.commissioning.product_name

    @property
    def dispatch_id(self):
        return self.commissioning.dispatch_id

    @property
    def po_id(self):
        return self.commissioning.po_id
