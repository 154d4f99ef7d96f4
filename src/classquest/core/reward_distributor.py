"""Reward settlement for an expired weekly challenge.

Ranks cohort scores into up to three brackets (ties share a bracket),
splits each bracket's reward pool evenly and records the winner tier of
every participant.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Sequence

import structlog

from classquest.db.challenge_repository import set_winner_tiers
from classquest.db.student_repository import credit_wallet

logger = structlog.get_logger(__name__)

TIERS = (1, 2, 3)


@dataclass
class Payout:
    """Reward of one participant."""

    student_id: int
    tier: int
    amount: float


@dataclass
class Settlement:
    """Outcome of settling one challenge."""

    challenge_id: int | None
    payouts: list[Payout] = field(default_factory=list)

    @property
    def tiers(self) -> dict[int, int]:
        return {p.student_id: p.tier for p in self.payouts}

    @property
    def total_awarded(self) -> float:
        return round(sum(p.amount for p in self.payouts), 1)


def tier_values(scores: Sequence[float]) -> list[float]:
    """Scores that define tiers 1..3: the three highest distinct positive scores."""
    distinct = sorted({s for s in scores if s > 0}, reverse=True)
    return distinct[: len(TIERS)]


def rank_brackets(scores: Sequence[tuple[int, float]]) -> dict[int, list[int]]:
    """Group students into brackets.

    Args:
        scores: (student_id, score) pairs

    Returns:
        Mapping tier -> student ids, with tier 0 for everyone not placed.
        All four keys are always present.
    """
    brackets: dict[int, list[int]] = {0: [], 1: [], 2: [], 3: []}
    values = tier_values([score for _, score in scores])
    tier_of = {value: tier for tier, value in zip(TIERS, values)}

    for student_id, score in scores:
        brackets[tier_of.get(score, 0)].append(student_id)

    return brackets


def compute_payouts(
    scores: Sequence[tuple[int, float]],
    pools: Sequence[float],
) -> list[Payout]:
    """Split each tier's pool evenly among its members.

    Shares are rounded to one decimal; any rounding remainder is dropped.
    Non-winners get a zero payout with tier 0.
    """
    brackets = rank_brackets(scores)
    payouts: list[Payout] = []

    for tier in (*TIERS, 0):
        members = brackets[tier]
        if not members:
            continue
        share = round(pools[tier - 1] / len(members), 1) if tier else 0.0
        payouts.extend(Payout(student_id=sid, tier=tier, amount=share) for sid in members)

    payouts.sort(key=lambda p: p.student_id)
    return payouts


def settle_challenge(
    conn: sqlite3.Connection,
    scores: Sequence[tuple[int, float]],
    pools: Sequence[float],
    challenge_id: int | None = None,
) -> Settlement:
    """Credit wallets and persist winner tiers inside the caller's transaction."""
    payouts = compute_payouts(scores, pools)

    for payout in payouts:
        if payout.amount > 0:
            credit_wallet(conn, payout.student_id, payout.amount)

    set_winner_tiers(conn, {p.student_id: p.tier for p in payouts})

    settlement = Settlement(challenge_id=challenge_id, payouts=payouts)
    logger.info(
        "challenge.settled",
        challenge_id=challenge_id,
        participants=len(payouts),
        winners=sum(1 for p in payouts if p.tier),
        awarded=settlement.total_awarded,
    )
    return settlement
