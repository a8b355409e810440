from typing import Dict, List, Optional
from datetime import date, datetime
from pydantic import BaseModel, Field

from .models import SectionStatus, ServiceStatus, NoDuesClearance, AccordionStatus, Stage


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str = "Viewer"


class UserCreate(BaseModel):
    full_name: str
    email: str
    username: str
    password: str
    role: str


class UserOut(BaseModel):
    id: int
    full_name: str
    email: str
    username: str
    role: str
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

class OrderLineIn(BaseModel):
    category: Optional[str] = None
    product_id: int
    product_name: str
    quantity: int = Field(..., ge=0)
    spare_quantity: int = Field(0, ge=0)
    total_quantity: Optional[int] = None


class OrderCreate(BaseModel):
    po_id: str = Field(..., min_length=1, max_length=50)
    client_name: str
    client_po_no: Optional[str] = None
    client_po_date: Optional[date] = None
    po_received_date: Optional[date] = None
    site_location: Optional[str] = None
    remarks: Optional[str] = None
    lines: List[OrderLineIn] = Field(..., min_length=1)


class OrderUpdate(BaseModel):
    client_name: Optional[str] = None
    client_po_no: Optional[str] = None
    client_po_date: Optional[date] = None
    po_received_date: Optional[date] = None
    site_location: Optional[str] = None
    remarks: Optional[str] = None
    lines: Optional[List[OrderLineIn]] = None


class OrderLineOut(BaseModel):
    id: int
    category: Optional[str]
    product_id: int
    product_name: str
    quantity: int
    spare_quantity: int
    total_quantity: int

    class Config:
        from_attributes = True


class StageStatusOut(BaseModel):
    stage: Stage
    status: AccordionStatus
    total_eligible: int
    completed: int
    pending: int


class OrderStatusOut(BaseModel):
    po_id: str
    po_status: str
    ready_to_close: bool
    stages: List[StageStatusOut]


class OrderOut(BaseModel):
    po_id: str
    client_name: str
    client_po_no: Optional[str]
    client_po_date: Optional[date]
    po_received_date: Optional[date]
    site_location: Optional[str]
    remarks: Optional[str]
    po_status: str
    closed_at: Optional[datetime]
    lines: List[OrderLineOut] = []
    accordion_status: Optional[OrderStatusOut] = None
    created_by_id: Optional[int]
    updated_by_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderSummaryOut(BaseModel):
    po_id: str
    client_name: str
    client_po_no: Optional[str]
    po_received_date: Optional[date]
    site_location: Optional[str]
    po_status: str
    total_quantity: int
    created_at: datetime

    class Config:
        from_attributes = True


class OrderPageOut(BaseModel):
    items: List[OrderSummaryOut]
    total: int
    page: int
    limit: int
    pages: int


class OrderCloseOut(BaseModel):
    po_id: str
    po_status: str
    closed_at: Optional[datetime]
    closed_by_id: Optional[int]
    already_closed: bool


class AvailableQuantityOut(BaseModel):
    po_id: str
    product_id: int
    excluding_dispatch_id: Optional[int] = None
    available: int


# =============================================================================
# DISPATCH
# =============================================================================

class DispatchedItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)


class DispatchDetailsFields(BaseModel):
    project_name: Optional[str] = None
    project_location: Optional[str] = None
    delivery_location: Optional[str] = None
    delivery_address: Optional[str] = None
    google_map_link: Optional[str] = None
    confirm_dispatch_date: Optional[date] = None
    delivery_contact: Optional[str] = None
    remarks: Optional[str] = None
    details_status: Optional[SectionStatus] = None

    class Config:
        use_enum_values = True


class DispatchCreate(DispatchDetailsFields):
    po_id: str
    items: List[DispatchedItemIn] = Field(..., min_length=1)


class DispatchDetailsUpdate(DispatchDetailsFields):
    items: Optional[List[DispatchedItemIn]] = None


class DispatchDocumentsUpdate(BaseModel):
    no_dues_clearance: Optional[NoDuesClearance] = None
    doc_osg_pi_no: Optional[str] = None
    doc_osg_pi_date: Optional[date] = None
    tax_invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    eway_bill: Optional[str] = None
    delivery_challan: Optional[str] = None
    dispatch_date: Optional[date] = None
    packaging_list: Optional[str] = None
    dispatch_from_location: Optional[str] = None
    dispatch_lr_no: Optional[str] = None
    dispatch_remarks: Optional[str] = None
    document_status: Optional[SectionStatus] = None
    # product_id -> comma-joined serial numbers
    serial_numbers: Optional[Dict[int, str]] = None

    class Config:
        use_enum_values = True


class DeliveryConfirmationUpdate(BaseModel):
    date_of_delivery: Optional[date] = None
    proof_of_delivery: Optional[str] = None
    delivery_status: Optional[SectionStatus] = None

    class Config:
        use_enum_values = True


class DispatchedItemOut(BaseModel):
    id: int
    product_id: int
    product_name: Optional[str] = None
    quantity: int
    serial_numbers: Optional[str] = None

    class Config:
        from_attributes = True


class DispatchOut(BaseModel):
    id: int
    po_id: str
    items: List[DispatchedItemOut] = []

    project_name: Optional[str]
    project_location: Optional[str]
    delivery_location: Optional[str]
    delivery_address: Optional[str]
    google_map_link: Optional[str]
    confirm_dispatch_date: Optional[date]
    delivery_contact: Optional[str]
    remarks: Optional[str]
    details_status: str
    details_updated_at: Optional[datetime]

    no_dues_clearance: Optional[str]
    doc_osg_pi_no: Optional[str]
    doc_osg_pi_date: Optional[date]
    tax_invoice_number: Optional[str]
    invoice_date: Optional[date]
    eway_bill: Optional[str]
    delivery_challan: Optional[str]
    dispatch_date: Optional[date]
    packaging_list: Optional[str]
    dispatch_from_location: Optional[str]
    dispatch_lr_no: Optional[str]
    dispatch_remarks: Optional[str]
    document_status: Optional[str]
    document_updated_at: Optional[datetime]

    date_of_delivery: Optional[date]
    proof_of_delivery: Optional[str]
    delivery_status: Optional[str]
    delivery_updated_at: Optional[datetime]

    created_by_id: Optional[int]
    updated_by_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# PRE-COMMISSIONING
# =============================================================================

class PreCommissioningItem(BaseModel):
    dispatch_id: int
    serial_number: str = Field(..., min_length=1)
    product_name: Optional[str] = None


class PreCommissioningFields(BaseModel):
    pc_contact: Optional[str] = None
    service_engineer_assigned: Optional[str] = None
    ppm_checklist: Optional[str] = None
    ppm_sheet_received_from_client: Optional[str] = None
    ppm_checklist_shared_with_oem: Optional[str] = None
    ppm_ticked_no_from_oem: Optional[str] = None
    ppm_confirmation_status: Optional[ServiceStatus] = None
    oem_comments: Optional[str] = None
    pre_commissioning_status: ServiceStatus = ServiceStatus.PENDING
    remarks: Optional[str] = None

    class Config:
        use_enum_values = True


class PreCommissioningCreate(PreCommissioningFields):
    items: List[PreCommissioningItem] = Field(..., min_length=1)


class PreCommissioningUpdate(BaseModel):
    pc_contact: Optional[str] = None
    service_engineer_assigned: Optional[str] = None
    ppm_checklist: Optional[str] = None
    ppm_sheet_received_from_client: Optional[str] = None
    ppm_checklist_shared_with_oem: Optional[str] = None
    ppm_ticked_no_from_oem: Optional[str] = None
    ppm_confirmation_status: Optional[ServiceStatus] = None
    oem_comments: Optional[str] = None
    pre_commissioning_status: Optional[ServiceStatus] = None
    remarks: Optional[str] = None

    class Config:
        use_enum_values = True


class PreCommissioningOut(BaseModel):
    id: int
    dispatch_id: int
    po_id: Optional[str] = None
    serial_number: str
    product_name: str
    pc_contact: Optional[str]
    service_engineer_assigned: Optional[str]
    ppm_checklist: Optional[str]
    ppm_sheet_received_from_client: Optional[str]
    ppm_checklist_shared_with_oem: Optional[str]
    ppm_ticked_no_from_oem: Optional[str]
    ppm_confirmation_status: Optional[str]
    oem_comments: Optional[str]
    pre_commissioning_status: str
    remarks: Optional[str]
    has_commissioning: bool = False
    created_by_id: Optional[int]
    updated_by_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EligibleSerialOut(BaseModel):
    dispatch_id: int
    serial_number: str
    product_name: str
    dispatch_date: Optional[date] = None


# =============================================================================
# COMMISSIONING
# =============================================================================

class CommissioningItem(BaseModel):
    pre_commissioning_id: int


class CommissioningFields(BaseModel):
    ecd_from_client: Optional[str] = None
    service_ticket_no: Optional[str] = None
    ccd_from_client: Optional[str] = None
    issues: Optional[str] = None
    solution: Optional[str] = None
    info_generated: Optional[str] = None
    commissioning_date: Optional[date] = None
    commissioning_status: ServiceStatus = ServiceStatus.PENDING
    remarks: Optional[str] = None

    class Config:
        use_enum_values = True


class CommissioningCreate(CommissioningFields):
    items: List[CommissioningItem] = Field(..., min_length=1)


class CommissioningUpdate(BaseModel):
    ecd_from_client: Optional[str] = None
    service_ticket_no: Optional[str] = None
    ccd_from_client: Optional[str] = None
    issues: Optional[str] = None
    solution: Optional[str] = None
    info_generated: Optional[str] = None
    commissioning_date: Optional[date] = None
    commissioning_status: Optional[ServiceStatus] = None
    remarks: Optional[str] = None

    class Config:
        use_enum_values = True


class CommissioningOut(BaseModel):
    id: int
    pre_commissioning_id: int
    serial_number: str
    product_name: str
    dispatch_id: int
    po_id: Optional[str] = None
    ecd_from_client: Optional[str]
    service_ticket_no: Optional[str]
    ccd_from_client: Optional[str]
    issues: Optional[str]
    solution: Optional[str]
    info_generated: Optional[str]
    commissioning_date: Optional[date]
    commissioning_status: str
    remarks: Optional[str]
    has_warranty_certificate: bool = False
    created_by_id: Optional[int]
    updated_by_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EligiblePreCommissioningOut(BaseModel):
    pre_commissioning_id: int
    serial_number: str
    product_name: str
    dispatch_id: int


# =============================================================================
# WARRANTY CERTIFICATES
# =============================================================================

class WarrantyItem(BaseModel):
    commissioning_id: int


class WarrantyFields(BaseModel):
    certificate_no: str = Field(..., min_length=1)
    issue_date: Optional[date] = None
    warranty_start_date: Optional[date] = None
    warranty_end_date: Optional[date] = None
    warranty_status: ServiceStatus = ServiceStatus.PENDING

    class Config:
        use_enum_values = True


class WarrantyCreate(WarrantyFields):
    items: List[WarrantyItem] = Field(..., min_length=1)


class WarrantyUpdate(BaseModel):
    certificate_no: Optional[str] = None
    issue_date: Optional[date] = None
    warranty_start_date: Optional[date] = None
    warranty_end_date: Optional[date] = None
    warranty_status: Optional[ServiceStatus] = None

    class Config:
        use_enum_values = True


class WarrantyOut(BaseModel):
    id: int
    commissioning_id: int
    pre_commissioning_id: int
    serial_number: str
    product_name: str
    dispatch_id: int
    po_id: Optional[str] = None
    certificate_no: str
    issue_date: Optional[date]
    warranty_start_date: Optional[date]
    warranty_end_date: Optional[date]
    warranty_status: str
    created_by_id: Optional[int]
    updated_by_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EligibleCommissioningOut(BaseModel):
    commissioning_id: int
    pre_commissioning_id: int
    serial_number: str
    product_name: str
    commissioning_date: Optional[date] = None
