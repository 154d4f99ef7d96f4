"""Repository functions for users, teacher-student links and knowledge levels.

Every function takes an open connection so callers can compose several
operations into one transaction.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Iterable, Literal

import structlog

logger = structlog.get_logger(__name__)

Role = Literal["teacher", "student"]


@dataclass
class UserRecord:
    """User record from database."""

    user_id: int
    role: Role
    nickname: str

    @property
    def is_teacher(self) -> bool:
        return self.role == "teacher"


def placeholders(count: int) -> str:
    """Build a ``?, ?, ?`` list for an IN clause."""
    return ", ".join("?" for _ in range(count))


def add_user(
    conn: sqlite3.Connection,
    user_id: int,
    role: Role,
    nickname: str = "",
) -> UserRecord:
    """Insert a new user.

    Students also get an empty student_info row.

    Raises:
        sqlite3.IntegrityError: If user_id already exists or role is invalid
    """
    conn.execute(
        "INSERT INTO users (user_id, role, nickname) VALUES (?, ?, ?)",
        (user_id, role, nickname),
    )
    if role == "student":
        conn.execute(
            "INSERT OR IGNORE INTO student_info (student_id) VALUES (?)",
            (user_id,),
        )

    logger.debug("users.inserted", user_id=user_id, role=role)
    return UserRecord(user_id=user_id, role=role, nickname=nickname)


def get_user(conn: sqlite3.Connection, user_id: int) -> UserRecord | None:
    """Get user by ID, or None if not found."""
    row = conn.execute(
        "SELECT user_id, role, nickname FROM users WHERE user_id = ?", (user_id,)
    ).fetchone()

    if row is None:
        return None

    return UserRecord(user_id=row["user_id"], role=row["role"], nickname=row["nickname"])


def get_teacher_id(conn: sqlite3.Connection, student_id: int) -> int | None:
    """Get the teacher a student is linked to."""
    row = conn.execute(
        "SELECT teacher_id FROM teacher_students WHERE student_id = ?", (student_id,)
    ).fetchone()
    return None if row is None else row["teacher_id"]


def list_student_ids(conn: sqlite3.Connection, teacher_id: int) -> list[int]:
    """Get ids of all students linked to a teacher, ascending."""
    rows = conn.execute(
        "SELECT student_id FROM teacher_students WHERE teacher_id = ? ORDER BY student_id",
        (teacher_id,),
    ).fetchall()
    return [row["student_id"] for row in rows]


def _reset_challenge_state(conn: sqlite3.Connection, student_id: int) -> None:
    # A membership change invalidates the previous cohort's ranking
    conn.execute(
        """
        INSERT INTO student_info (student_id) VALUES (?)
        ON CONFLICT(student_id) DO UPDATE SET
            challenge_id = NULL,
            challenge_score = 0,
            winner_tier = 0
        """,
        (student_id,),
    )


def link_student(conn: sqlite3.Connection, teacher_id: int, student_id: int) -> None:
    """Link a student to a teacher, replacing any previous link.

    Clears the student's challenge pointer, score and winner tier.

    Raises:
        ValueError: If either id is unknown or has the wrong role
    """
    teacher = get_user(conn, teacher_id)
    student = get_user(conn, student_id)
    if teacher is None or not teacher.is_teacher:
        raise ValueError(f"Not a teacher: {teacher_id}")
    if student is None or student.is_teacher:
        raise ValueError(f"Not a student: {student_id}")

    conn.execute(
        """
        INSERT INTO teacher_students (student_id, teacher_id) VALUES (?, ?)
        ON CONFLICT(student_id) DO UPDATE SET teacher_id = excluded.teacher_id
        """,
        (student_id, teacher_id),
    )
    _reset_challenge_state(conn, student_id)

    logger.debug("membership.linked", teacher_id=teacher_id, student_id=student_id)


def unlink_student(conn: sqlite3.Connection, student_id: int) -> bool:
    """Remove a student's teacher link.

    Returns:
        True if a link was removed, False if the student was not linked
    """
    cursor = conn.execute(
        "DELETE FROM teacher_students WHERE student_id = ?", (student_id,)
    )
    removed = cursor.rowcount > 0
    if removed:
        _reset_challenge_state(conn, student_id)
        logger.debug("membership.unlinked", student_id=student_id)
    return removed


def set_knowledge_level(conn: sqlite3.Connection, student_id: int, level: int) -> None:
    """Declare a student's knowledge level (negative means undeclared)."""
    conn.execute(
        """
        INSERT INTO student_info (student_id, knowledge_level) VALUES (?, ?)
        ON CONFLICT(student_id) DO UPDATE SET knowledge_level = excluded.knowledge_level
        """,
        (student_id, level),
    )
    logger.debug("membership.level_set", student_id=student_id, level=level)


def knowledge_levels(conn: sqlite3.Connection, student_ids: Iterable[int]) -> list[int]:
    """Get declared knowledge levels for the given students."""
    ids = list(student_ids)
    if not ids:
        return []
    rows = conn.execute(
        f"SELECT knowledge_level FROM student_info WHERE student_id IN ({placeholders(len(ids))})",
        ids,
    ).fetchall()
    return [row["knowledge_level"] for row in rows]
