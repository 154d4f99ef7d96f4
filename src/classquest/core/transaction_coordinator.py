"""Serializable transactions with bounded retry.

Work functions receive an open connection inside ``BEGIN IMMEDIATE``.
Lock contention and serialization conflicts are retried with exponential
backoff up to a hard attempt ceiling; every other failure is returned
immediately. Nothing raised by the work function escapes as an exception:
callers always get a ``TransactionOutcome``, with ``INTERNAL`` for errors
that are neither domain nor store failures.
"""

from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

import structlog

from classquest.config.app_config import ChallengeConfig
from classquest.core.errors import ClassquestError, FailureReason, TransientStoreError
from classquest.db.database import transaction

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Substrings of sqlite3.OperationalError messages that are safe to retry
TRANSIENT_MARKERS = ("locked", "busy", "deadlock", "serializ")


@dataclass
class TransactionOutcome(Generic[T]):
    """Result of running work inside a transaction."""

    success: bool
    value: T | None = None
    reason: FailureReason | None = None
    message: str = ""
    attempts: int = 0


def is_transient(error: BaseException) -> bool:
    """Whether an error is a conflict that a fresh transaction may resolve."""
    if isinstance(error, TransientStoreError):
        return True
    if isinstance(error, sqlite3.OperationalError):
        text = str(error).lower()
        return any(marker in text for marker in TRANSIENT_MARKERS)
    return False


def classify_store_error(error: sqlite3.Error) -> FailureReason:
    if isinstance(error, sqlite3.IntegrityError):
        return FailureReason.DATA_INCONSISTENT
    return FailureReason.STORE_UNAVAILABLE


class TransactionCoordinator:
    """Runs work in serializable transactions with bounded retry."""

    def __init__(
        self,
        config: ChallengeConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or ChallengeConfig()
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        return self.config.backoff_base_seconds * (2 ** (attempt - 1))

    def run(
        self,
        work: Callable[[sqlite3.Connection], T],
        action: str,
        **context: Any,
    ) -> TransactionOutcome[T]:
        """Run work with up to ``max_attempts`` attempts.

        Args:
            work: Function executed inside the transaction
            action: Name of the attempted action, for logging
            **context: Extra log context (user id, cohort id, ...)
        """
        return self._execute(work, action, self.config.max_attempts, context)

    def run_once(
        self,
        work: Callable[[sqlite3.Connection], T],
        action: str,
        timeout: float | None = None,
        **context: Any,
    ) -> TransactionOutcome[T]:
        """Run work in a single transaction without retry."""
        return self._execute(work, action, 1, context, timeout=timeout)

    def _execute(
        self,
        work: Callable[[sqlite3.Connection], T],
        action: str,
        max_attempts: int,
        context: dict[str, Any],
        timeout: float | None = None,
    ) -> TransactionOutcome[T]:
        log = logger.bind(action=action, **context)
        timeout = timeout if timeout is not None else self.config.transaction_timeout_seconds
        attempt = 0

        while True:
            attempt += 1
            try:
                with transaction(timeout=timeout) as conn:
                    value = work(conn)
                return TransactionOutcome(success=True, value=value, attempts=attempt)

            except ClassquestError as e:
                log.error(
                    "transaction.failed",
                    reason=e.reason.value,
                    error=str(e),
                    attempt=attempt,
                    **e.context,
                )
                return TransactionOutcome(
                    success=False, reason=e.reason, message=str(e), attempts=attempt
                )

            except (sqlite3.Error, TransientStoreError) as e:
                if not is_transient(e):
                    reason = classify_store_error(e)
                    log.error("transaction.failed", reason=reason.value, error=str(e), attempt=attempt)
                    return TransactionOutcome(
                        success=False, reason=reason, message=str(e), attempts=attempt
                    )

                if attempt >= max_attempts:
                    log.error("transaction.retries_exhausted", error=str(e), attempts=attempt)
                    return TransactionOutcome(
                        success=False,
                        reason=FailureReason.CONFLICT_RETRY_EXHAUSTED,
                        message=f"Failed to {action} after {attempt} attempt(s): {e}",
                        attempts=attempt,
                    )

                delay = self.backoff_delay(attempt)
                log.warning("transaction.retrying", error=str(e), attempt=attempt, delay=delay)
                self._sleep(delay)

            except Exception as e:
                log.error(
                    "transaction.failed",
                    reason=FailureReason.INTERNAL.value,
                    error=f"{type(e).__name__}: {e}",
                    attempt=attempt,
                    exc_info=True,
                )
                return TransactionOutcome(
                    success=False,
                    reason=FailureReason.INTERNAL,
                    message=f"Unexpected error during {action}: {type(e).__name__}: {e}",
                    attempts=attempt,
                )
