"""Failure classification and error types.

Re-exports all public symbols.
"""

from sheetrelay.core.errors.codes import (
    EscalationTier,
    FailureCategory,
    RecoveryAction,
)
from sheetrelay.core.errors.exceptions import (
    RelayError,
    SchedulerAbortedError,
    StoreError,
    WorkerError,
)
from sheetrelay.core.errors.models import ClassifiedFailure
from sheetrelay.core.errors.classifier import (
    VENDOR_PROFILES,
    CategoryRule,
    ErrorClassifier,
    VendorProfile,
    get_vendor_profile,
)

__all__ = [
    "EscalationTier",
    "FailureCategory",
    "RecoveryAction",
    "RelayError",
    "SchedulerAbortedError",
    "StoreError",
    "WorkerError",
    "ClassifiedFailure",
    "VENDOR_PROFILES",
    "CategoryRule",
    "ErrorClassifier",
    "VendorProfile",
    "get_vendor_profile",
]
