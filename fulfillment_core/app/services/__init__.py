"""
Services package initialization.
Business logic layer for the purchase-order lifecycle.
"""

from .errors import (
    LifecycleError,
    ValidationError,
    CountMismatchError,
    ConflictError,
    NotReadyError,
    NotFoundError,
    BatchError,
)
from .ledger import QuantityLedger, compute_available, split_serials, validate_serial_count
from .eligibility import EligibilityResolver
from .orchestrator import LifecycleOrchestrator
from .status import StageStatusAggregator, derive_status
from .engine import LifecycleEngine

__all__ = [
    'LifecycleError',
    'ValidationError',
    'CountMismatchError',
    'ConflictError',
    'NotReadyError',
    'NotFoundError',
    'BatchError',
    'QuantityLedger',
    'compute_available',
    'split_serials',
    'validate_serial_count',
    'EligibilityResolver',
    'LifecycleOrchestrator',
    'StageStatusAggregator',
    'derive_status',
    'LifecycleEngine',
]
