"""
Quantity ledger and serial reconciliation.

The ledger answers "how much of this product can still be dispatched" for a
purchase order; the reconciler checks that the serial numbers recorded on a
dispatched line account for exactly its quantity.
"""

from typing import Dict, Iterable, List, Optional

from .errors import CountMismatchError, NotFoundError, ValidationError
from .repositories import PurchaseOrderRepository


# =============================================================================
# QUANTITY LEDGER
# =============================================================================

def compute_available(total_quantity: int, dispatched: Iterable[int]) -> int:
    """available = max(0, total - sum(dispatched))"""
    return max(0, total_quantity - sum(dispatched))


class QuantityLedger:
    """Remaining dispatchable quantity per order line"""

    def __init__(self, orders: PurchaseOrderRepository):
        self.orders = orders

    def available(
        self,
        po_id: str,
        product_id: int,
        excluding_dispatch_id: Optional[int] = None
    ) -> int:
        line = self.orders.line_for_product(po_id, product_id)
        if line is None:
            raise NotFoundError(
                f"product {product_id} is not on purchase order {po_id}",
                entity_id=product_id
            )
        dispatched = self.orders.dispatched_quantities(po_id, product_id, excluding_dispatch_id)
        return compute_available(line.total_quantity, dispatched)

    def check_allocation(
        self,
        po_id: str,
        requested: Dict[int, int],
        excluding_dispatch_id: Optional[int] = None
    ) -> None:
        """
        Reject a dispatch whose quantity for any product exceeds what is left.

        Raises:
            ValidationError: quantity not positive or above the available quantity
            NotFoundError: product not on the order
        """
        for product_id, quantity in requested.items():
            if quantity is None or quantity <= 0:
                raise ValidationError(
                    f"quantity for product {product_id} must be positive",
                    entity_id=product_id
                )
            available = self.available(po_id, product_id, excluding_dispatch_id)
            if quantity > available:
                raise ValidationError(
                    f"requested quantity {quantity} for product {product_id} "
                    f"exceeds available quantity ({available})",
                    entity_id=product_id
                )


# =============================================================================
# SERIAL RECONCILER
# =============================================================================

def split_serials(serial_numbers: Optional[str]) -> List[str]:
    """Split a comma-joined serial list, trimming and dropping empty tokens"""
    if not serial_numbers:
        return []
    return [token.strip() for token in serial_numbers.split(",") if token.strip()]


def validate_serial_count(quantity: int, serial_numbers: Optional[str], entity_id=None) -> List[str]:
    """
    Return the serial tokens of a dispatched line.

    Raises:
        CountMismatchError: token count differs from the dispatched quantity
        ValidationError: the same serial appears twice
    """
    tokens = split_serials(serial_numbers)
    if len(tokens) != quantity:
        raise CountMismatchError(expected=quantity, actual=len(tokens), entity_id=entity_id)
    seen = set()
    for token in tokens:
        if token in seen:
            raise ValidationError(f"duplicate serial number {token}", entity_id=entity_id)
        seen.add(token)
    return tokens
