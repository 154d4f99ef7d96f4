"""Repository functions for the challenge catalog, active challenges and
per-student challenge state.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping

import structlog

from classquest.db.membership_repository import placeholders

logger = structlog.get_logger(__name__)


@dataclass
class CatalogEntry:
    """Challenge catalog entry."""

    entry_id: int
    required_level: int
    period_tag: str | None
    prompt_text: str
    personal_duration: str
    cohort_duration: str


@dataclass
class ActiveChallengeRecord:
    """Active challenge row joined with its catalog entry (None if deleted)."""

    challenge_id: int
    teacher_id: int
    catalog_entry_id: int
    assigned_at: datetime
    entry: CatalogEntry | None

    @property
    def is_orphaned(self) -> bool:
        return self.entry is None


@dataclass
class StudentChallengeState:
    """Per-student challenge pointer, score and last winner tier."""

    student_id: int
    challenge_id: int | None
    score: float
    winner_tier: int


# =============================================================================
# CATALOG
# =============================================================================


def add_catalog_entry(
    conn: sqlite3.Connection,
    required_level: int,
    prompt_text: str,
    period_tag: str | None = None,
    personal_duration: str = "",
    cohort_duration: str = "",
    entry_id: int | None = None,
) -> int:
    """Insert a catalog entry and return its id."""
    cursor = conn.execute(
        """
        INSERT INTO challenge_catalog (
            entry_id, required_level, period_tag, prompt_text,
            personal_duration, cohort_duration
        ) VALUES (?, ?, ?, ?, ?, ?)
        """,
        (entry_id, required_level, period_tag, prompt_text, personal_duration, cohort_duration),
    )
    logger.debug("catalog.inserted", entry_id=cursor.lastrowid, level=required_level)
    return cursor.lastrowid


def delete_catalog_entry(conn: sqlite3.Connection, entry_id: int) -> bool:
    """Delete a catalog entry. Active challenges referencing it become orphans."""
    cursor = conn.execute("DELETE FROM challenge_catalog WHERE entry_id = ?", (entry_id,))
    return cursor.rowcount > 0


def find_catalog_entries(
    conn: sqlite3.Connection,
    required_level: int,
    period_tag: str | None = None,
) -> list[CatalogEntry]:
    """Find entries for a level, optionally narrowed to a period.

    Returns entries ordered by id so random selection is reproducible
    with a seeded random source.
    """
    if period_tag is None:
        rows = conn.execute(
            "SELECT * FROM challenge_catalog WHERE required_level = ? ORDER BY entry_id",
            (required_level,),
        ).fetchall()
    else:
        rows = conn.execute(
            """
            SELECT * FROM challenge_catalog
            WHERE required_level = ? AND period_tag = ?
            ORDER BY entry_id
            """,
            (required_level, period_tag),
        ).fetchall()

    return [_row_to_entry(row) for row in rows]


def _row_to_entry(row) -> CatalogEntry:
    return CatalogEntry(
        entry_id=row["entry_id"],
        required_level=row["required_level"],
        period_tag=row["period_tag"],
        prompt_text=row["prompt_text"],
        personal_duration=row["personal_duration"],
        cohort_duration=row["cohort_duration"],
    )


# =============================================================================
# ACTIVE CHALLENGES
# =============================================================================

_ACTIVE_SELECT = """
    SELECT a.challenge_id, a.teacher_id, a.catalog_entry_id, a.assigned_at,
           c.entry_id, c.required_level, c.period_tag, c.prompt_text,
           c.personal_duration, c.cohort_duration
    FROM active_challenges a
    LEFT JOIN challenge_catalog c ON c.entry_id = a.catalog_entry_id
"""


def get_active_challenge(
    conn: sqlite3.Connection, teacher_id: int
) -> ActiveChallengeRecord | None:
    """Get the active challenge of a teacher's cohort."""
    row = conn.execute(_ACTIVE_SELECT + " WHERE a.teacher_id = ?", (teacher_id,)).fetchone()
    return None if row is None else _row_to_active(row)


def get_active_challenge_by_id(
    conn: sqlite3.Connection, challenge_id: int
) -> ActiveChallengeRecord | None:
    """Get an active challenge by its id."""
    row = conn.execute(
        _ACTIVE_SELECT + " WHERE a.challenge_id = ?", (challenge_id,)
    ).fetchone()
    return None if row is None else _row_to_active(row)


def insert_active_challenge(
    conn: sqlite3.Connection,
    teacher_id: int,
    catalog_entry_id: int,
    assigned_at: datetime,
) -> int:
    """Insert the active challenge row of a cohort.

    Raises:
        sqlite3.IntegrityError: If the cohort already has an active challenge
    """
    cursor = conn.execute(
        """
        INSERT INTO active_challenges (teacher_id, catalog_entry_id, assigned_at)
        VALUES (?, ?, ?)
        """,
        (teacher_id, catalog_entry_id, assigned_at.isoformat()),
    )
    logger.debug(
        "active_challenges.inserted",
        challenge_id=cursor.lastrowid,
        teacher_id=teacher_id,
        catalog_entry_id=catalog_entry_id,
    )
    return cursor.lastrowid


def delete_active_challenge(conn: sqlite3.Connection, challenge_id: int) -> bool:
    """Delete an active challenge.

    Returns:
        True if deleted, False if the row was already gone
    """
    cursor = conn.execute(
        "DELETE FROM active_challenges WHERE challenge_id = ?", (challenge_id,)
    )
    deleted = cursor.rowcount > 0
    if deleted:
        logger.debug("active_challenges.deleted", challenge_id=challenge_id)
    return deleted


def count_active_challenges(conn: sqlite3.Connection, teacher_id: int | None = None) -> int:
    if teacher_id is None:
        row = conn.execute("SELECT COUNT(*) AS n FROM active_challenges").fetchone()
    else:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM active_challenges WHERE teacher_id = ?", (teacher_id,)
        ).fetchone()
    return row["n"]


def _row_to_active(row) -> ActiveChallengeRecord:
    entry = _row_to_entry(row) if row["entry_id"] is not None else None
    return ActiveChallengeRecord(
        challenge_id=row["challenge_id"],
        teacher_id=row["teacher_id"],
        catalog_entry_id=row["catalog_entry_id"],
        assigned_at=datetime.fromisoformat(row["assigned_at"]),
        entry=entry,
    )


# =============================================================================
# STUDENT CHALLENGE STATE
# =============================================================================


def get_challenge_states(
    conn: sqlite3.Connection, student_ids: Iterable[int]
) -> list[StudentChallengeState]:
    """Get challenge state for the given students, ordered by id."""
    ids = list(student_ids)
    if not ids:
        return []
    rows = conn.execute(
        f"""
        SELECT student_id, challenge_id, challenge_score, winner_tier
        FROM student_info
        WHERE student_id IN ({placeholders(len(ids))})
        ORDER BY student_id
        """,
        ids,
    ).fetchall()
    return [
        StudentChallengeState(
            student_id=row["student_id"],
            challenge_id=row["challenge_id"],
            score=row["challenge_score"],
            winner_tier=row["winner_tier"],
        )
        for row in rows
    ]


def assign_challenge(
    conn: sqlite3.Connection,
    student_ids: Iterable[int],
    challenge_id: int,
    only_stale: bool = False,
) -> int:
    """Point students at a challenge and reset their score to 0.

    Args:
        only_stale: Touch only students not already pointing at challenge_id

    Returns:
        Number of students updated
    """
    ids = list(student_ids)
    if not ids:
        return 0

    query = f"""
        UPDATE student_info SET challenge_id = ?, challenge_score = 0
        WHERE student_id IN ({placeholders(len(ids))})
    """
    if only_stale:
        query += " AND (challenge_id IS NULL OR challenge_id != ?)"
        params = [challenge_id, *ids, challenge_id]
    else:
        params = [challenge_id, *ids]

    cursor = conn.execute(query, params)
    return cursor.rowcount


def set_winner_tiers(conn: sqlite3.Connection, tiers: Mapping[int, int]) -> None:
    """Persist winner tier per student."""
    conn.executemany(
        "UPDATE student_info SET winner_tier = ? WHERE student_id = ?",
        [(tier, student_id) for student_id, tier in tiers.items()],
    )


def raise_score(conn: sqlite3.Connection, student_id: int, score: float) -> bool:
    """Store score only if it beats the stored one.

    Returns:
        True if the stored score changed
    """
    cursor = conn.execute(
        """
        UPDATE student_info SET challenge_score = ?
        WHERE student_id = ? AND challenge_score < ?
        """,
        (score, student_id, score),
    )
    return cursor.rowcount > 0
