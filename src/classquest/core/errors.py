"""Failure taxonomy and exception classes.

Exceptions are raised inside the core and converted into structured
results at the public boundary; they never reach callers.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class FailureReason(str, Enum):
    """Reason carried by every failed result."""

    NOT_LINKED = "NOT_LINKED"
    NO_STUDENTS = "NO_STUDENTS"
    NO_CATALOG_MATCH = "NO_CATALOG_MATCH"
    DATA_INCONSISTENT = "DATA_INCONSISTENT"
    CONFLICT_RETRY_EXHAUSTED = "CONFLICT_RETRY_EXHAUSTED"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    UNKNOWN_USER = "UNKNOWN_USER"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL = "INTERNAL"


class ClassquestError(Exception):
    """Base exception for domain failures.

    Keyword context (e.g. ``teacher_id``) is attached to the failure log.
    """

    def __init__(self, reason: FailureReason, message: str, **context: Any):
        self.reason = reason
        self.context = context
        super().__init__(message)


class CohortResolutionError(ClassquestError):
    """Raised when a user cannot be mapped to a cohort."""

    pass


class RotationError(ClassquestError):
    """Raised when the weekly challenge cannot be created or adopted."""

    pass


class LedgerError(ClassquestError):
    """Raised when a consistency update cannot be applied."""

    pass


class TransientStoreError(Exception):
    """Serialization conflict or lock contention; safe to retry."""

    pass
