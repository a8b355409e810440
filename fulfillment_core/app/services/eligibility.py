"""
Eligibility resolver.

For each stage boundary, the candidate set is every upstream record that is
complete and has no downstream record yet. Candidates are read fresh from
the caller's session on every call, so a candidate consumed by a committed
create is gone from the next resolution.
"""

from typing import List

from sqlalchemy.orm import Session

from ..schemas import EligibleSerialOut, EligiblePreCommissioningOut, EligibleCommissioningOut
from .repositories import (
    PurchaseOrderRepository, PreCommissioningRepository,
    CommissioningRepository, WarrantyCertificateRepository,
)


class EligibilityResolver:
    def __init__(self, db: Session):
        self.orders = PurchaseOrderRepository(db)
        self.pre_commissioning = PreCommissioningRepository(db)
        self.commissioning = CommissioningRepository(db)
        self.warranty = WarrantyCertificateRepository(db)

    def eligible_for_pre_commissioning(self, po_id: str) -> List[EligibleSerialOut]:
        """One candidate per serial of each delivered dispatch"""
        self.orders.require(po_id)
        return [
            EligibleSerialOut(
                dispatch_id=row.dispatch_id,
                serial_number=row.serial_number,
                product_name=row.product_name,
                dispatch_date=row.dispatch_date,
            )
            for row in self.pre_commissioning.eligible_serials(po_id)
        ]

    def eligible_for_commissioning(self, po_id: str) -> List[EligiblePreCommissioningOut]:
        self.orders.require(po_id)
        return [
            EligiblePreCommissioningOut(
                pre_commissioning_id=row.pre_commissioning_id,
                serial_number=row.serial_number,
                product_name=row.product_name,
                dispatch_id=row.dispatch_id,
            )
            for row in self.commissioning.eligible_pre_commissionings(po_id)
        ]

    def eligible_for_warranty(self, po_id: str) -> List[EligibleCommissioningOut]:
        self.orders.require(po_id)
        return [
            EligibleCommissioningOut(
                commissioning_id=row.commissioning_id,
                pre_commissioning_id=row.pre_commissioning_id,
                serial_number=row.serial_number,
                product_name=row.product_name,
                commissioning_date=row.commissioning_date,
            )
            for row in self.warranty.eligible_commissionings(po_id)
        ]

    # Counts used by the stage status aggregator

    def count_pre_commissioning(self, po_id: str) -> int:
        return len(self.pre_commissioning.eligible_serials(po_id))

    def count_commissioning(self, po_id: str) -> int:
        return len(self.commissioning.eligible_pre_commissionings(po_id))

    def count_warranty(self, po_id: str) -> int:
        return len(self.warranty.eligible_commissionings(po_id))
