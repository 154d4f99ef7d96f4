"""Shared fixtures: temporary database, controllable clock, seeded cohort."""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from classquest.config.app_config import AppConfig, clear_config_cache
from classquest.core.weekly_challenge import WeeklyChallengeService
from classquest.db.challenge_repository import add_catalog_entry
from classquest.db.database import get_db, init_db
from classquest.db.membership_repository import add_user, link_student, set_knowledge_level

TEACHER_ID = 1
STUDENT_IDS = [11, 12, 13, 14, 15]

# Wednesday, period "3-8"; the challenge assigned now expires Monday 2025-03-10
START = datetime(2025, 3, 5, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that tests move forward explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SeededCohort:
    teacher_id: int
    student_ids: list[int]


@pytest.fixture(autouse=True)
def _fresh_config():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def db_path(tmp_path):
    """Initialize an isolated test database."""
    path = tmp_path / "db" / "classquest.db"
    init_db(path)
    return path


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def cohort(db_path) -> SeededCohort:
    """One teacher with five students, all at knowledge level 2."""
    with get_db() as conn:
        add_user(conn, TEACHER_ID, "teacher", "Ms. Vega")
        for sid in STUDENT_IDS:
            add_user(conn, sid, "student", f"student-{sid}")
            link_student(conn, TEACHER_ID, sid)
            set_knowledge_level(conn, sid, 2)
    return SeededCohort(teacher_id=TEACHER_ID, student_ids=list(STUDENT_IDS))


@pytest.fixture
def catalog(db_path) -> dict[str, int]:
    """Catalog with period-specific and period-less entries."""
    with get_db() as conn:
        return {
            "spring_a": add_catalog_entry(conn, 2, "Read 3 chapters", "3-8", "[\"C39\",\"5\"]", "7", entry_id=100),
            "spring_b": add_catalog_entry(conn, 2, "Solve 20 equations", "3-8", "[\"C12\",\"3\"]", "7", entry_id=101),
            "autumn": add_catalog_entry(conn, 2, "Write a poem", "9-10", "", "7", entry_id=102),
            "level3": add_catalog_entry(conn, 3, "Build a model", None, "", "7", entry_id=103),
        }


@pytest.fixture
def service(db_path, clock) -> WeeklyChallengeService:
    return WeeklyChallengeService(
        AppConfig(), rng=random.Random(7), clock=clock, sleep=lambda _: None
    )
