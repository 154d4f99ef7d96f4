"""Weekly challenge rotation.

State machine deciding, once per invocation and inside the caller's
transaction, whether a cohort's active challenge is kept, created, rotated
(after settling rewards) or repaired:

    NONE     -> pick catalog entry, create row, reset members      -> ACTIVE
    ACTIVE   -> keep until the next week boundary after assignment -> ACTIVE
    EXPIRED  -> settle rewards, delete row, create as NONE          -> ACTIVE
    ORPHANED -> delete row whose catalog entry is gone, create      -> ACTIVE

If a row this invocation expected to mutate has already been rotated away,
or the store refuses a second row for the cohort, the cohort's current row
is re-read and adopted instead.
"""

from __future__ import annotations

import math
import random
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable

import structlog

from classquest.config.app_config import ChallengeConfig
from classquest.core.cohort_resolver import Cohort
from classquest.core.errors import FailureReason, RotationError
from classquest.core.reward_distributor import Settlement, settle_challenge
from classquest.core.weeks import next_week_boundary, school_period, utc_now
from classquest.db.challenge_repository import (
    ActiveChallengeRecord,
    CatalogEntry,
    assign_challenge,
    delete_active_challenge,
    find_catalog_entries,
    get_active_challenge,
    get_challenge_states,
    insert_active_challenge,
)
from classquest.db.membership_repository import knowledge_levels

logger = structlog.get_logger(__name__)

DEFAULT_LEVEL = 1


class ChallengeState(str, Enum):
    """State of a cohort's active challenge as observed at invocation."""

    NONE = "none"
    ACTIVE = "active"
    EXPIRED = "expired"
    ORPHANED = "orphaned"


@dataclass
class ChallengeView:
    """The challenge a cohort is working on after rotation."""

    challenge_id: int
    teacher_id: int
    catalog_entry_id: int
    prompt: str
    personal_duration: str
    cohort_duration: str
    assigned_at: datetime
    expiry_date: datetime
    observed_state: ChallengeState
    settlement: Settlement | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "challenge_id": self.challenge_id,
            "prompt": self.prompt,
            "personal_duration": self.personal_duration,
            "cohort_duration": self.cohort_duration,
            "assigned_at": self.assigned_at.isoformat(),
            "expiry_date": self.expiry_date.isoformat(),
        }


def median_knowledge_level(levels: Iterable[int | None]) -> int:
    """Median of declared (non-negative) levels.

    Even counts average the two middle values, rounding halves up.
    No declared levels gives the default level 1.
    """
    valid = sorted(level for level in levels if level is not None and level >= 0)
    if not valid:
        return DEFAULT_LEVEL

    mid = len(valid) // 2
    if len(valid) % 2:
        return valid[mid]
    return math.floor((valid[mid - 1] + valid[mid]) / 2 + 0.5)


class ChallengeRotationEngine:
    """Keeps exactly one valid, unexpired challenge per cohort."""

    def __init__(
        self,
        config: ChallengeConfig | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or ChallengeConfig()
        self._rng = rng or random.Random()
        self._clock = clock or utc_now

    def expiry_of(self, assigned_at: datetime) -> datetime:
        return next_week_boundary(assigned_at, self.config.week_starts_on)

    def classify(
        self, active: ActiveChallengeRecord | None, now: datetime
    ) -> ChallengeState:
        """Determine the state of a cohort's active challenge row."""
        if active is None:
            return ChallengeState.NONE
        if active.is_orphaned:
            return ChallengeState.ORPHANED
        if now >= self.expiry_of(active.assigned_at):
            return ChallengeState.EXPIRED
        return ChallengeState.ACTIVE

    def rotate(self, conn: sqlite3.Connection, cohort: Cohort) -> ChallengeView:
        """Run one transition for the cohort.

        Must be called inside a serializable transaction; the caller commits
        or rolls back everything done here as a unit.

        Raises:
            RotationError: NO_CATALOG_MATCH or DATA_INCONSISTENT
        """
        now = self._clock()
        active = get_active_challenge(conn, cohort.teacher_id)
        state = self.classify(active, now)

        log = logger.bind(teacher_id=cohort.teacher_id, state=state.value)

        if state is ChallengeState.ACTIVE:
            self._sync_members(conn, cohort, active)
            return self._view(active, state)

        settlement = None
        previous_assigned_at = active.assigned_at if active else None

        if state is ChallengeState.EXPIRED:
            # The delete claims the settlement: a vanished row was settled elsewhere
            if not delete_active_challenge(conn, active.challenge_id):
                return self._adopt(conn, cohort, state, action="settle")
            scores = [(s.student_id, s.score) for s in get_challenge_states(conn, cohort.student_ids)]
            settlement = settle_challenge(
                conn, scores, self.config.reward_pools, challenge_id=active.challenge_id
            )

        elif state is ChallengeState.ORPHANED:
            log.warning("challenge.orphaned", challenge_id=active.challenge_id)
            if not delete_active_challenge(conn, active.challenge_id):
                return self._adopt(conn, cohort, state, action="repair")

        record = self._create(conn, cohort, now, previous_assigned_at)
        if record is None:
            return self._adopt(conn, cohort, state, action="create")

        log.info(
            "challenge.rotated",
            old_challenge_id=active.challenge_id if active else None,
            challenge_id=record.challenge_id,
            catalog_entry_id=record.catalog_entry_id,
        )
        view = self._view(record, state)
        view.settlement = settlement
        return view

    def pick_entry(self, conn: sqlite3.Connection, cohort: Cohort, now: datetime) -> CatalogEntry:
        """Choose a catalog entry for the cohort's median level and period.

        Falls back to any period when the current one has no content.

        Raises:
            RotationError: NO_CATALOG_MATCH when the level has no content at all
        """
        level = median_knowledge_level(knowledge_levels(conn, cohort.student_ids))
        period = school_period(now)

        candidates = find_catalog_entries(conn, level, period)
        if not candidates:
            candidates = find_catalog_entries(conn, level)
            if candidates:
                logger.warning(
                    "challenge.period_fallback",
                    teacher_id=cohort.teacher_id,
                    level=level,
                    period=period,
                )
        if not candidates:
            raise RotationError(
                FailureReason.NO_CATALOG_MATCH,
                f"No challenges found for knowledge level {level}",
                teacher_id=cohort.teacher_id,
                level=level,
            )

        return self._rng.choice(candidates)

    def _create(
        self,
        conn: sqlite3.Connection,
        cohort: Cohort,
        now: datetime,
        previous_assigned_at: datetime | None,
    ) -> ActiveChallengeRecord | None:
        """Insert a fresh row and assign it to every member.

        Returns None if the store already holds a row for the cohort.
        """
        entry = self.pick_entry(conn, cohort, now)
        assigned_at = max(now, previous_assigned_at) if previous_assigned_at else now

        try:
            challenge_id = insert_active_challenge(
                conn, cohort.teacher_id, entry.entry_id, assigned_at
            )
        except sqlite3.IntegrityError:
            return None

        assign_challenge(conn, cohort.student_ids, challenge_id)
        return ActiveChallengeRecord(
            challenge_id=challenge_id,
            teacher_id=cohort.teacher_id,
            catalog_entry_id=entry.entry_id,
            assigned_at=assigned_at,
            entry=entry,
        )

    def _adopt(
        self,
        conn: sqlite3.Connection,
        cohort: Cohort,
        state: ChallengeState,
        action: str,
    ) -> ChallengeView:
        """Adopt the row a concurrent rotation left behind."""
        current = get_active_challenge(conn, cohort.teacher_id)
        if current is None or current.is_orphaned:
            logger.error(
                "challenge.adopt_failed",
                teacher_id=cohort.teacher_id,
                action=action,
                found=current is not None,
            )
            raise RotationError(
                FailureReason.DATA_INCONSISTENT,
                f"Challenge for teacher {cohort.teacher_id} vanished during {action}",
                teacher_id=cohort.teacher_id,
            )

        logger.info(
            "challenge.adopted",
            teacher_id=cohort.teacher_id,
            challenge_id=current.challenge_id,
            action=action,
        )
        self._sync_members(conn, cohort, current)
        return self._view(current, state)

    def _sync_members(
        self, conn: sqlite3.Connection, cohort: Cohort, record: ActiveChallengeRecord
    ) -> None:
        synced = assign_challenge(conn, cohort.student_ids, record.challenge_id, only_stale=True)
        if synced:
            logger.debug(
                "challenge.members_synced",
                teacher_id=cohort.teacher_id,
                challenge_id=record.challenge_id,
                count=synced,
            )

    def _view(self, record: ActiveChallengeRecord, state: ChallengeState) -> ChallengeView:
        entry = record.entry
        return ChallengeView(
            challenge_id=record.challenge_id,
            teacher_id=record.teacher_id,
            catalog_entry_id=record.catalog_entry_id,
            prompt=entry.prompt_text,
            personal_duration=entry.personal_duration,
            cohort_duration=entry.cohort_duration,
            assigned_at=record.assigned_at,
            expiry_date=self.expiry_of(record.assigned_at),
            observed_state=state,
        )
