"""
Lifecycle error taxonomy.

None of these are transient: each one is a deterministic consequence of the
caller's view being stale or its input being wrong, so the engine never
retries. The caller refreshes eligibility and resubmits.
"""

from typing import Optional


class LifecycleError(Exception):
    """Base exception for lifecycle operations"""

    def __init__(self, message: str, entity_id=None):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id

    def __str__(self):
        return self.message


class ValidationError(LifecycleError):
    """Malformed or out-of-range input (quantity exceeds available, missing field)"""
    pass


class CountMismatchError(ValidationError):
    """Serial number count does not match the dispatched quantity"""

    def __init__(self, expected: int, actual: int, entity_id=None):
        super().__init__(
            f"serial number count mismatch: expected {expected}, got {actual}",
            entity_id=entity_id,
        )
        self.expected = expected
        self.actual = actual


class ConflictError(LifecycleError):
    """Upstream not Done, downstream already exists, or the order is closed"""
    pass


class NotReadyError(ConflictError):
    """Order cannot be closed while a stage is not Done"""
    pass


class NotFoundError(LifecycleError):
    """Referenced id does not exist"""
    pass


class BatchError(LifecycleError):
    """
    A bulk create failed on one of its items.

    Raised only after the batch transaction was rolled back, so the batch
    made zero persisted changes.
    """

    def __init__(self, cause: LifecycleError, item_id=None):
        super().__init__(str(cause), entity_id=item_id if item_id is not None else cause.entity_id)
        self.cause = cause
        self.item_id = item_id

    @property
    def cause_type(self) -> Optional[str]:
        return type(self.cause).__name__
