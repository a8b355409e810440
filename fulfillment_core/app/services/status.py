"""
Stage Status Aggregator
=======================
Derives the accordion status (Not Started / In-Progress / Done) of every
lifecycle stage of a purchase order from persisted state. Nothing here is
stored; every status response goes through this class.

A stage can only be Done when the stage before it is Done, so that a Done
stage never regresses while upstream work is still open.
"""

from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..models import AccordionStatus, ServiceStatus, Stage, STAGE_ORDER, PurchaseOrder
from ..schemas import StageStatusOut, OrderStatusOut
from .eligibility import EligibilityResolver
from .errors import ValidationError
from .repositories import (
    PurchaseOrderRepository, DispatchRepository, PreCommissioningRepository,
    CommissioningRepository, WarrantyCertificateRepository,
)


def derive_status(eligible: int, total: int, completed: int, upstream_done: bool = True) -> AccordionStatus:
    """
    Not Started when nothing was recorded; Done when every eligible unit has
    a record and every record is Done; In-Progress otherwise.
    """
    universe = eligible + total
    if total == 0:
        return AccordionStatus.NOT_STARTED
    if upstream_done and universe > 0 and total >= universe and completed == total:
        return AccordionStatus.DONE
    return AccordionStatus.IN_PROGRESS


class StageStatusAggregator:
    def __init__(self, db: Session, resolver: Optional[EligibilityResolver] = None):
        self.orders = PurchaseOrderRepository(db)
        self.dispatches = DispatchRepository(db)
        self.pre_commissioning = PreCommissioningRepository(db)
        self.commissioning = CommissioningRepository(db)
        self.warranty = WarrantyCertificateRepository(db)
        self.resolver = resolver or EligibilityResolver(db)

    def _counts(self, po: PurchaseOrder, stage: Stage) -> Tuple[int, int, int]:
        """(eligible, total, completed) for one stage"""
        done = ServiceStatus.DONE.value

        if stage == Stage.DISPATCH:
            dispatched = self.orders.dispatched_by_product(po.po_id)
            remaining = sum(
                max(0, line.total_quantity - dispatched.get(line.product_id, 0))
                for line in po.lines
            )
            allocated = sum(dispatched.values())
            return remaining, allocated, allocated

        if stage in (Stage.DOCUMENT, Stage.DELIVERY):
            counts = self.dispatches.section_counts(po.po_id)
            if stage == Stage.DOCUMENT:
                return (
                    counts["dispatches"] - counts["with_document"],
                    counts["with_document"],
                    counts["document_done"],
                )
            return counts["awaiting_delivery"], counts["with_delivery"], counts["delivery_done"]

        if stage == Stage.PRE_COMMISSIONING:
            return (
                self.resolver.count_pre_commissioning(po.po_id),
                self.pre_commissioning.count_by_po(po.po_id),
                self.pre_commissioning.count_by_po(po.po_id, status=done),
            )

        if stage == Stage.COMMISSIONING:
            return (
                self.resolver.count_commissioning(po.po_id),
                self.commissioning.count_by_po(po.po_id),
                self.commissioning.count_by_po(po.po_id, status=done),
            )

        return (
            self.resolver.count_warranty(po.po_id),
            self.warranty.count_by_po(po.po_id),
            self.warranty.count_by_po(po.po_id, status=done),
        )

    def _stage_statuses(self, po: PurchaseOrder, until: Optional[Stage] = None) -> List[StageStatusOut]:
        statuses = []
        upstream_done = True
        for stage in STAGE_ORDER:
            eligible, total, completed = self._counts(po, stage)
            status = derive_status(eligible, total, completed, upstream_done=upstream_done)
            statuses.append(StageStatusOut(
                stage=stage,
                status=status,
                total_eligible=eligible + total,
                completed=completed,
                pending=total - completed,
            ))
            upstream_done = status == AccordionStatus.DONE
            if stage == until:
                break
        return statuses

    def get_stage_status(self, po_id: str, stage: Stage) -> StageStatusOut:
        try:
            stage = Stage(stage)
        except ValueError:
            raise ValidationError(f"unknown stage {stage}", entity_id=po_id)
        po = self.orders.require(po_id)
        return self._stage_statuses(po, until=stage)[-1]

    def get_order_status(self, po_id: str) -> OrderStatusOut:
        po = self.orders.require(po_id)
        stages = self._stage_statuses(po)
        return OrderStatusOut(
            po_id=po.po_id,
            po_status=po.po_status,
            ready_to_close=all(s.status == AccordionStatus.DONE for s in stages),
            stages=stages,
        )

    def stages_not_done(self, po_id: str) -> List[str]:
        po = self.orders.require(po_id)
        return [
            Stage(s.stage).value for s in self._stage_statuses(po)
            if s.status != AccordionStatus.DONE
        ]

    def is_ready_to_close(self, po_id: str) -> bool:
        return not self.stages_not_done(po_id)
