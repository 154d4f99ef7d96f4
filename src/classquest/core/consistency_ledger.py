"""Per-student consistency ledger.

Keeps a rolling window of weekly buckets per student:

- ``consistency``: fraction of each week the student was active, decayed by
  1/7 for every missed day, clamped to [0, 1]
- ``metrics[kind]``: (points, correct, mistakes, total) sums per week
- ``last_recorded_day``: day index of the last processed event

Updates are incremental: only the current bucket and the days since
``last_recorded_day`` are looked at, never the full history. Buckets beyond
``max_weeks`` are evicted oldest first.

Two kinds of events drive the ledger:

- an activity write (``record_activity``): the student did something today,
  optionally contributing metrics of one kind
- a passive catch-up (``catch_up``): only advances the clock, counting the
  elapsed days as missed
"""

from __future__ import annotations

import math
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from classquest.config.app_config import LedgerConfig, load_app_config
from classquest.core.errors import FailureReason, LedgerError
from classquest.core.transaction_coordinator import TransactionCoordinator
from classquest.core.weeks import (
    MAX_DAY,
    MIN_DAY,
    day_position,
    is_valid_day,
    today_index,
    utc_now,
    weeks_between,
)
from classquest.db.student_repository import get_stats_row, save_stats_document

logger = structlog.get_logger(__name__)

MetricBucket = tuple[float, float, float, float]
ZERO_BUCKET: MetricBucket = (0.0, 0.0, 0.0, 0.0)


# =============================================================================
# MODELS
# =============================================================================


class MetricDelta(BaseModel):
    """Metrics contributed by one activity."""

    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)

    points: float = 0
    correct: int = Field(default=0, ge=0)
    mistakes: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)

    def as_bucket(self) -> MetricBucket:
        return (float(self.points), float(self.correct), float(self.mistakes), float(self.total))


class ConsistencySeries(BaseModel):
    """Stats document stored per student."""

    model_config = ConfigDict(extra="forbid", allow_inf_nan=False)

    consistency: list[float] = Field(default_factory=list)
    metrics: dict[str, list[MetricBucket]] = Field(default_factory=dict)
    last_recorded_day: int | None = Field(default=None, ge=MIN_DAY, le=MAX_DAY)

    @model_validator(mode="after")
    def _check_shape(self) -> ConsistencySeries:
        size = len(self.consistency)
        for kind, buckets in self.metrics.items():
            if len(buckets) != size:
                raise ValueError(
                    f"metrics[{kind!r}] has {len(buckets)} buckets, expected {size}"
                )
        if (self.last_recorded_day is None) != (size == 0):
            raise ValueError("last_recorded_day must be set exactly when buckets exist")
        if any(value < 0 or value > 1 for value in self.consistency):
            raise ValueError("consistency values must lie in [0, 1]")
        return self

    @property
    def weeks(self) -> int:
        return len(self.consistency)


@dataclass(frozen=True)
class Activity:
    """An activity write. ``kind=None`` records attendance only."""

    kind: str | None = None
    delta: MetricDelta = field(default_factory=MetricDelta)


@dataclass
class ActivityResult:
    """Result of a ledger update."""

    success: bool
    series: ConsistencySeries | None = None
    reason: FailureReason | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        if not self.success:
            return {"failure": True, "reason": self.reason.value, "message": self.message}
        return self.series.model_dump(mode="json")


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _all_finite(series: ConsistencySeries) -> bool:
    return all(
        math.isfinite(value)
        for buckets in series.metrics.values()
        for bucket in buckets
        for value in bucket
    )


def _add(bucket: MetricBucket, delta: MetricBucket) -> MetricBucket:
    return (
        bucket[0] + delta[0],
        bucket[1] + delta[1],
        bucket[2] + delta[2],
        bucket[3] + delta[3],
    )


def average_points(series: ConsistencySeries, kinds: tuple[str, ...]) -> float:
    """Average weekly points per kind over the window, to one decimal."""
    if not series.weeks or not kinds:
        return 0.0

    weekly_totals = [
        sum(series.metrics.get(kind, [ZERO_BUCKET] * series.weeks)[week][0] for kind in kinds)
        for week in range(series.weeks)
    ]
    return round(sum(weekly_totals) / series.weeks / len(kinds), 1)


# =============================================================================
# LEDGER
# =============================================================================


class ConsistencyLedger:
    """Applies activity and catch-up events to a student's series."""

    def __init__(
        self,
        config: LedgerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        coordinator: TransactionCoordinator | None = None,
    ):
        self.config = config or LedgerConfig()
        self._clock = clock or utc_now
        self._coordinator = coordinator or TransactionCoordinator()

    # --- persistence boundary ------------------------------------------------

    def load(self, document: str | None) -> ConsistencySeries:
        """Parse and validate a stored document.

        Raises:
            LedgerError: DATA_INCONSISTENT for malformed documents
        """
        if document is None:
            series = ConsistencySeries()
        else:
            try:
                series = ConsistencySeries.model_validate_json(document)
            except ValidationError as e:
                raise LedgerError(
                    FailureReason.DATA_INCONSISTENT, f"Malformed stats document: {e}"
                ) from e

        for kind in self.config.metric_kinds:
            series.metrics.setdefault(kind, [ZERO_BUCKET] * series.weeks)
        self._trim(series)
        return series

    def dump(self, series: ConsistencySeries) -> str:
        return series.model_dump_json()

    # --- pure update ---------------------------------------------------------

    def apply(
        self,
        series: ConsistencySeries,
        day: int,
        activity: Activity | None = None,
    ) -> ConsistencySeries:
        """Return the series after an event on ``day``.

        Args:
            series: Current series (not modified)
            day: Day index of the event
            activity: The write, or None for a passive catch-up
        """
        updated = series.model_copy(deep=True)
        for kind in self.config.metric_kinds:
            updated.metrics.setdefault(kind, [ZERO_BUCKET] * updated.weeks)

        active = activity is not None
        week_start_day = self.config.week_starts_on

        if updated.last_recorded_day is None:
            self._open_bucket(updated, 1.0 if active else 0.0, activity)
            updated.last_recorded_day = day
            return updated

        elapsed = day - updated.last_recorded_day

        if elapsed <= 0:
            # Same day (or a late event for an earlier day): nothing to decay
            if active:
                self._accumulate(updated, activity)
            return updated

        weeks_passed = weeks_between(updated.last_recorded_day, day, week_start_day)

        if weeks_passed == 0:
            missed = elapsed - (1 if active else 0)
            if missed > 0:
                updated.consistency[-1] = _clamp(updated.consistency[-1] - missed / 7)
            if active:
                self._accumulate(updated, activity)
        else:
            unaccounted = 7 - day_position(updated.last_recorded_day, week_start_day)
            updated.consistency[-1] = _clamp(updated.consistency[-1] - unaccounted / 7)

            for _ in range(min(weeks_passed - 1, self.config.max_weeks)):
                self._open_bucket(updated, 0.0, None)

            position = day_position(day, week_start_day)
            missed_this_week = position - 1 if active else position
            self._open_bucket(updated, _clamp(1 - missed_this_week / 7), activity)

        self._trim(updated)
        updated.last_recorded_day = day
        return updated

    def _open_bucket(
        self, series: ConsistencySeries, consistency: float, activity: Activity | None
    ) -> None:
        series.consistency.append(consistency)
        for kind, buckets in series.metrics.items():
            if activity is not None and activity.kind == kind:
                buckets.append(activity.delta.as_bucket())
            else:
                buckets.append(ZERO_BUCKET)

    def _accumulate(self, series: ConsistencySeries, activity: Activity) -> None:
        if activity.kind is None or not series.weeks:
            return
        buckets = series.metrics[activity.kind]
        buckets[-1] = _add(buckets[-1], activity.delta.as_bucket())

    def _trim(self, series: ConsistencySeries) -> None:
        excess = series.weeks - self.config.max_weeks
        if excess <= 0:
            return
        del series.consistency[:excess]
        for buckets in series.metrics.values():
            del buckets[:excess]

    # --- transactional operations --------------------------------------------

    def record_activity(
        self,
        student_id: int,
        kind: str | None = None,
        delta: MetricDelta | Mapping[str, Any] | None = None,
        day: int | None = None,
    ) -> ActivityResult:
        """Record a student activity and return the updated series.

        Args:
            student_id: Student id
            kind: Metric kind, or None for attendance only
            delta: Metrics of this activity (points, correct, mistakes, total)
            day: Day index, defaults to today
        """
        if kind is not None and kind not in self.config.metric_kinds:
            return ActivityResult(
                success=False,
                reason=FailureReason.INVALID_INPUT,
                message=f"Invalid metric kind {kind!r}. Must be one of: "
                + ", ".join(self.config.metric_kinds),
            )
        try:
            metric_delta = delta if isinstance(delta, MetricDelta) else MetricDelta(**(delta or {}))
        except (ValidationError, TypeError) as e:
            return ActivityResult(
                success=False, reason=FailureReason.INVALID_INPUT, message=str(e)
            )

        if day is None:
            day = today_index(self._clock())
        return self._update(student_id, day, Activity(kind=kind, delta=metric_delta))

    def catch_up(self, student_id: int, day: int | None = None) -> ActivityResult:
        """Advance a student's series without new activity.

        Args:
            day: Last day to account for, defaults to yesterday
        """
        if day is None:
            day = today_index(self._clock()) - 1
        return self._update(student_id, day, None)

    def _update(self, student_id: int, day: int, activity: Activity | None) -> ActivityResult:
        if not is_valid_day(day):
            return ActivityResult(
                success=False,
                reason=FailureReason.INVALID_INPUT,
                message=f"Day index out of range: {day!r}",
            )

        def work(conn: sqlite3.Connection) -> ConsistencySeries:
            row = get_stats_row(conn, student_id)
            if row is None:
                raise LedgerError(
                    FailureReason.UNKNOWN_USER, f"Student info not found: {student_id}"
                )
            current = self.load(row.document)
            updated = self.apply(current, day, activity)
            if not _all_finite(updated):
                raise LedgerError(
                    FailureReason.INVALID_INPUT,
                    f"Metric totals of student {student_id} would overflow",
                )
            if row.document is None or updated != current:
                save_stats_document(conn, student_id, self.dump(updated))
            return updated

        action = "record_activity" if activity is not None else "catch_up"
        outcome = self._coordinator.run_once(
            work,
            action=action,
            timeout=self.config.transaction_timeout_seconds,
            student_id=student_id,
        )
        if not outcome.success:
            return ActivityResult(success=False, reason=outcome.reason, message=outcome.message)

        logger.debug(
            "ledger.updated",
            student_id=student_id,
            action=action,
            day=day,
            weeks=outcome.value.weeks,
        )
        return ActivityResult(success=True, series=outcome.value)


def record_activity(
    student_id: int,
    kind: str | None = None,
    delta: MetricDelta | Mapping[str, Any] | None = None,
    day: int | None = None,
) -> ActivityResult:
    """Record an activity using the loaded application config."""
    return ConsistencyLedger(load_app_config().ledger).record_activity(student_id, kind, delta, day)


def catch_up(student_id: int, day: int | None = None) -> ActivityResult:
    return ConsistencyLedger(load_app_config().ledger).catch_up(student_id, day)
