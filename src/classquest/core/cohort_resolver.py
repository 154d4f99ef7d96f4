"""Cohort resolution.

A cohort is a teacher plus the students currently linked to it. Any member
(the teacher or one of the students) can be used to look it up.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field

import structlog

from classquest.core.errors import CohortResolutionError, FailureReason
from classquest.db.membership_repository import get_teacher_id, get_user, list_student_ids

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Cohort:
    """A teacher and its linked students."""

    teacher_id: int
    student_ids: tuple[int, ...] = field(default_factory=tuple)
    requester_id: int | None = None


def resolve_cohort(conn: sqlite3.Connection, user_id: int) -> Cohort:
    """Resolve the cohort of a requesting user.

    Args:
        conn: Open connection (inside the caller's transaction)
        user_id: Teacher or student id

    Returns:
        Cohort with student ids in ascending order

    Raises:
        CohortResolutionError: UNKNOWN_USER, NOT_LINKED or NO_STUDENTS
    """
    user = get_user(conn, user_id)
    if user is None:
        raise CohortResolutionError(FailureReason.UNKNOWN_USER, f"User not found: {user_id}")

    if user.is_teacher:
        teacher_id = user.user_id
    else:
        teacher_id = get_teacher_id(conn, user_id)
        if teacher_id is None:
            raise CohortResolutionError(
                FailureReason.NOT_LINKED,
                f"Student {user_id} is not linked to any teacher",
            )

    student_ids = list_student_ids(conn, teacher_id)
    if not student_ids:
        raise CohortResolutionError(
            FailureReason.NO_STUDENTS,
            f"No students found for teacher {teacher_id}",
            teacher_id=teacher_id,
        )

    logger.debug("cohort.resolved", user_id=user_id, teacher_id=teacher_id, size=len(student_ids))
    return Cohort(teacher_id=teacher_id, student_ids=tuple(student_ids), requester_id=user_id)
