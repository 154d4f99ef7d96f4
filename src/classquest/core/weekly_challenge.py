"""Weekly challenge operations exposed to callers.

Every operation returns a result dataclass; failures carry a
``FailureReason`` and never raise.

Usage:
    from classquest.core.weekly_challenge import resolve_and_rotate_challenge

    result = resolve_and_rotate_challenge(user_id=42)
    if result.success:
        print(result.challenge.prompt)
"""

from __future__ import annotations

import math
import random
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

import structlog

from classquest.config.app_config import AppConfig, load_app_config
from classquest.core.cohort_resolver import resolve_cohort
from classquest.core.consistency_ledger import ConsistencyLedger, average_points
from classquest.core.errors import FailureReason, LedgerError, RotationError
from classquest.core.reward_distributor import tier_values
from classquest.core.rotation_engine import ChallengeRotationEngine, ChallengeView
from classquest.core.transaction_coordinator import TransactionCoordinator
from classquest.db.challenge_repository import (
    get_active_challenge,
    get_challenge_states,
    raise_score,
)
from classquest.db.student_repository import get_stats_row

logger = structlog.get_logger(__name__)


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class ChallengeResult:
    """Result of resolve_and_rotate_challenge."""

    success: bool
    challenge: ChallengeView | None = None
    reason: FailureReason | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        if not self.success:
            return {"failure": True, "reason": self.reason.value, "message": self.message}
        return self.challenge.to_dict()


@dataclass
class ScoreResult:
    """Result of submit_challenge_score."""

    success: bool
    updated: bool = False
    score: float | None = None
    reason: FailureReason | None = None
    message: str = ""


@dataclass
class Standings:
    """Cohort leaderboard."""

    teacher_id: int
    challenge_id: int | None
    top_scores: list[tuple[int, float]] = field(default_factory=list)
    top_average_points: list[tuple[int, float]] = field(default_factory=list)
    winners: list[tuple[int, int]] = field(default_factory=list)
    requester_score: float = 0.0
    requester_average_points: float = 0.0


@dataclass
class StandingsResult:
    """Result of cohort_standings."""

    success: bool
    standings: Standings | None = None
    reason: FailureReason | None = None
    message: str = ""


def top_three(values: list[tuple[int, float]]) -> list[tuple[int, float]]:
    """Entries holding one of the three highest distinct positive values (ties kept)."""
    kept = set(tier_values([value for _, value in values]))
    ranked = [(sid, value) for sid, value in values if value in kept]
    return sorted(ranked, key=lambda item: (-item[1], item[0]))


# =============================================================================
# SERVICE
# =============================================================================


class WeeklyChallengeService:
    """Cohort-facing weekly challenge operations."""

    def __init__(
        self,
        config: AppConfig | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or load_app_config()
        self.coordinator = TransactionCoordinator(self.config.challenge, sleep=sleep)
        self.engine = ChallengeRotationEngine(self.config.challenge, rng=rng, clock=clock)
        self.ledger = ConsistencyLedger(self.config.ledger, clock=clock, coordinator=self.coordinator)

    def resolve_and_rotate_challenge(self, user_id: int) -> ChallengeResult:
        """Resolve the requester's cohort and bring its challenge up to date."""

        def work(conn: sqlite3.Connection) -> ChallengeView:
            cohort = resolve_cohort(conn, user_id)
            return self.engine.rotate(conn, cohort)

        outcome = self.coordinator.run(work, action="rotate_challenge", user_id=user_id)
        if not outcome.success:
            return ChallengeResult(success=False, reason=outcome.reason, message=outcome.message)

        view = outcome.value
        logger.debug(
            "challenge.resolved",
            user_id=user_id,
            teacher_id=view.teacher_id,
            challenge_id=view.challenge_id,
            state=view.observed_state.value,
            attempts=outcome.attempts,
        )
        return ChallengeResult(success=True, challenge=view)

    def submit_challenge_score(
        self, student_id: int, challenge_id: int, score: float
    ) -> ScoreResult:
        """Record a challenge score, keeping the student's best."""
        if not math.isfinite(score) or score < 0:
            return ScoreResult(
                success=False,
                reason=FailureReason.INVALID_INPUT,
                message=f"Score must be a non-negative number, got {score}",
            )

        def work(conn: sqlite3.Connection) -> tuple[bool, float]:
            states = get_challenge_states(conn, [student_id])
            if not states:
                raise RotationError(
                    FailureReason.UNKNOWN_USER, f"Student info not found: {student_id}"
                )
            state = states[0]
            if state.challenge_id != challenge_id:
                raise RotationError(
                    FailureReason.DATA_INCONSISTENT,
                    f"Challenge {challenge_id} is not the current challenge of student {student_id}",
                )
            updated = raise_score(conn, student_id, score)
            return updated, max(state.score, score)

        outcome = self.coordinator.run(
            work, action="submit_score", student_id=student_id, challenge_id=challenge_id
        )
        if not outcome.success:
            return ScoreResult(success=False, reason=outcome.reason, message=outcome.message)

        updated, best = outcome.value
        return ScoreResult(success=True, updated=updated, score=best)

    def cohort_standings(self, user_id: int) -> StandingsResult:
        """Leaderboard of the requester's cohort."""

        def work(conn: sqlite3.Connection) -> Standings:
            cohort = resolve_cohort(conn, user_id)
            states = get_challenge_states(conn, cohort.student_ids)
            active = get_active_challenge(conn, cohort.teacher_id)

            averages = [(sid, self._average_points(conn, sid)) for sid in cohort.student_ids]
            scores = [(s.student_id, s.score) for s in states]

            return Standings(
                teacher_id=cohort.teacher_id,
                challenge_id=active.challenge_id if active else None,
                top_scores=top_three(scores),
                top_average_points=top_three(averages),
                winners=[(s.student_id, s.winner_tier) for s in states if s.winner_tier > 0],
                requester_score=dict(scores).get(user_id, 0.0),
                requester_average_points=dict(averages).get(user_id, 0.0),
            )

        outcome = self.coordinator.run_once(work, action="standings", user_id=user_id)
        if not outcome.success:
            return StandingsResult(success=False, reason=outcome.reason, message=outcome.message)
        return StandingsResult(success=True, standings=outcome.value)

    def _average_points(self, conn: sqlite3.Connection, student_id: int) -> float:
        row = get_stats_row(conn, student_id)
        if row is None:
            return 0.0
        try:
            series = self.ledger.load(row.document)
        except LedgerError as e:
            logger.warning("standings.bad_stats", student_id=student_id, error=str(e))
            return 0.0
        return average_points(series, self.config.ledger.metric_kinds)


# =============================================================================
# MODULE-LEVEL SHORTCUTS
# =============================================================================


def resolve_and_rotate_challenge(user_id: int) -> ChallengeResult:
    """Resolve and rotate using the loaded application config."""
    return WeeklyChallengeService().resolve_and_rotate_challenge(user_id)


def submit_challenge_score(student_id: int, challenge_id: int, score: float) -> ScoreResult:
    return WeeklyChallengeService().submit_challenge_score(student_id, challenge_id, score)


def cohort_standings(user_id: int) -> StandingsResult:
    return WeeklyChallengeService().cohort_standings(user_id)
