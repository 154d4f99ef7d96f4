"""Tests for the sqlite repositories."""

import sqlite3
from datetime import datetime, timezone

import pytest

from classquest.db.challenge_repository import (
    add_catalog_entry,
    assign_challenge,
    count_active_challenges,
    delete_active_challenge,
    delete_catalog_entry,
    find_catalog_entries,
    get_active_challenge,
    get_active_challenge_by_id,
    get_challenge_states,
    insert_active_challenge,
    raise_score,
    set_winner_tiers,
)
from classquest.db.database import get_db, init_db
from classquest.db.membership_repository import (
    add_user,
    get_teacher_id,
    get_user,
    knowledge_levels,
    link_student,
    list_student_ids,
    set_knowledge_level,
    unlink_student,
)
from classquest.db.student_repository import (
    credit_wallet,
    get_balance,
    get_stats_row,
    save_stats_document,
)

ASSIGNED = datetime(2025, 3, 5, 10, 0, tzinfo=timezone.utc)


class TestSchema:
    """Tests for schema creation."""

    def test_init_is_idempotent(self, db_path):
        """Re-initializing keeps existing data."""
        with get_db() as conn:
            add_user(conn, 1, "teacher")

        init_db(db_path)

        with get_db() as conn:
            assert get_user(conn, 1) is not None

    def test_invalid_role_rejected(self, db_path):
        """Roles are limited to teacher and student."""
        with pytest.raises(sqlite3.IntegrityError):
            with get_db() as conn:
                add_user(conn, 1, "admin")

    def test_negative_score_rejected(self, cohort):
        """Stored scores are never negative."""
        with pytest.raises(sqlite3.IntegrityError):
            with get_db() as conn:
                conn.execute("UPDATE student_info SET challenge_score = -1 WHERE student_id = 11")


class TestMembership:
    """Tests for membership_repository."""

    def test_link_and_list(self, cohort):
        """Linked students are listed in ascending order."""
        with get_db() as conn:
            assert list_student_ids(conn, cohort.teacher_id) == cohort.student_ids
            assert get_teacher_id(conn, 13) == cohort.teacher_id

    def test_link_rejects_wrong_roles(self, cohort):
        """Only teacher-to-student links are allowed."""
        with get_db() as conn:
            with pytest.raises(ValueError):
                link_student(conn, 11, 12)
            with pytest.raises(ValueError):
                link_student(conn, cohort.teacher_id, cohort.teacher_id)

    def test_relink_clears_challenge_state(self, cohort):
        """Moving a student resets its pointer, score and tier."""
        with get_db() as conn:
            add_user(conn, 2, "teacher")
            assign_challenge(conn, [11], 5)
            raise_score(conn, 11, 8)
            set_winner_tiers(conn, {11: 2})

            link_student(conn, 2, 11)
            state = get_challenge_states(conn, [11])[0]

        assert (state.challenge_id, state.score, state.winner_tier) == (None, 0, 0)

    def test_unlink(self, cohort):
        """Unlinking removes the student from the cohort."""
        with get_db() as conn:
            assert unlink_student(conn, 11)
            assert not unlink_student(conn, 11)
            assert get_teacher_id(conn, 11) is None
            assert 11 not in list_student_ids(conn, cohort.teacher_id)

    def test_knowledge_levels(self, cohort):
        """Declared levels are returned for the requested students."""
        with get_db() as conn:
            set_knowledge_level(conn, 11, 4)
            assert sorted(knowledge_levels(conn, [11, 12])) == [2, 4]
            assert knowledge_levels(conn, []) == []


class TestCatalog:
    """Tests for catalog queries."""

    def test_find_by_level_and_period(self, catalog):
        """Period narrows the search; no period means any."""
        with get_db() as conn:
            spring = find_catalog_entries(conn, 2, "3-8")
            any_period = find_catalog_entries(conn, 2)

        assert [e.entry_id for e in spring] == [catalog["spring_a"], catalog["spring_b"]]
        assert [e.entry_id for e in any_period] == [100, 101, 102]
        assert spring[0].personal_duration == '["C39","5"]'

    def test_generated_id(self, db_path):
        """Entries without an explicit id get one."""
        with get_db() as conn:
            entry_id = add_catalog_entry(conn, 1, "Say hello")
            assert find_catalog_entries(conn, 1)[0].entry_id == entry_id


class TestActiveChallenges:
    """Tests for the active challenge table."""

    def test_one_row_per_cohort(self, cohort, catalog):
        """A second row for the same teacher is refused."""
        with get_db() as conn:
            insert_active_challenge(conn, cohort.teacher_id, 100, ASSIGNED)

        with pytest.raises(sqlite3.IntegrityError):
            with get_db() as conn:
                insert_active_challenge(conn, cohort.teacher_id, 101, ASSIGNED)

    def test_roundtrip_and_orphan(self, cohort, catalog):
        """Rows carry their catalog entry until it is deleted."""
        with get_db() as conn:
            challenge_id = insert_active_challenge(conn, cohort.teacher_id, 100, ASSIGNED)
            record = get_active_challenge(conn, cohort.teacher_id)

        assert record.assigned_at == ASSIGNED
        assert record.entry.prompt_text == "Read 3 chapters"
        assert not record.is_orphaned

        with get_db() as conn:
            delete_catalog_entry(conn, 100)
            assert get_active_challenge_by_id(conn, challenge_id).is_orphaned

    def test_ids_never_reused(self, cohort, catalog):
        """A deleted row's id is not handed out again."""
        with get_db() as conn:
            first = insert_active_challenge(conn, cohort.teacher_id, 100, ASSIGNED)
            assert delete_active_challenge(conn, first)
            assert not delete_active_challenge(conn, first)
            second = insert_active_challenge(conn, cohort.teacher_id, 100, ASSIGNED)
            assert count_active_challenges(conn, cohort.teacher_id) == 1

        assert second > first


class TestStudentState:
    """Tests for per-student challenge state."""

    def test_assign_only_stale(self, cohort):
        """only_stale leaves students already on the challenge alone."""
        with get_db() as conn:
            assign_challenge(conn, [11, 12], 3)
            raise_score(conn, 11, 6)
            synced = assign_challenge(conn, cohort.student_ids, 3, only_stale=True)
            states = get_challenge_states(conn, [11, 13])

        assert synced == 3
        assert [(s.challenge_id, s.score) for s in states] == [(3, 6), (3, 0)]

    def test_raise_score_keeps_best(self, cohort):
        """Lower scores do not overwrite."""
        with get_db() as conn:
            assert raise_score(conn, 11, 4)
            assert not raise_score(conn, 11, 2)
            assert get_challenge_states(conn, [11])[0].score == 4


class TestStudentRepository:
    """Tests for wallets and stats documents."""

    def test_credit_wallet_rounds(self, cohort):
        """Balances accumulate to one decimal."""
        with get_db() as conn:
            assert get_balance(conn, 11) is None
            credit_wallet(conn, 11, 3.3)
            assert credit_wallet(conn, 11, 3.3) == pytest.approx(6.6)

    def test_stats_document(self, cohort):
        """Documents are stored per student."""
        with get_db() as conn:
            assert get_stats_row(conn, 11).document is None
            save_stats_document(conn, 11, "{}")
            assert get_stats_row(conn, 11).document == "{}"
            assert get_stats_row(conn, 404) is None
            with pytest.raises(ValueError):
                save_stats_document(conn, 404, "{}")
