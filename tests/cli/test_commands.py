"""Tests for the classquest CLI."""

import pytest
from typer.testing import CliRunner

from classquest.cli.commands import app

runner = CliRunner()

CATALOG_YAML = """\
entries:
  - id: 1
    level: 1
    prompt: Read 3 chapters
    personal_duration: '["C39","5"]'
    cohort_duration: "7"
"""


@pytest.fixture
def db_file(tmp_path):
    return tmp_path / "cli.db"


@pytest.fixture
def invoke(db_file):
    def _invoke(*args):
        return runner.invoke(app, ["--db", str(db_file), *[str(a) for a in args]])

    return _invoke


@pytest.fixture
def linked(invoke, tmp_path):
    """Teacher 1 with students 11 and 12 and a one-entry catalog."""
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text(CATALOG_YAML, encoding="utf-8")

    for args in (
        ("add-user", 1, "teacher", "--nickname", "Ms. Vega"),
        ("add-user", 11, "student"),
        ("add-user", 12, "student"),
        ("link", 1, 11),
        ("link", 1, 12),
        ("seed-catalog", catalog),
    ):
        result = invoke(*args)
        assert result.exit_code == 0, result.output
    return invoke


class TestStoreCommands:
    """Tests for seeding commands."""

    def test_init_db(self, invoke, db_file):
        """init-db creates the database file."""
        result = invoke("init-db")

        assert result.exit_code == 0
        assert "Database ready" in result.output
        assert db_file.exists()

    def test_add_user_invalid_role(self, invoke):
        """Unknown roles are rejected."""
        result = invoke("add-user", 1, "admin")

        assert result.exit_code == 1
        assert "Invalid role" in result.output

    def test_add_user_duplicate(self, invoke):
        """A user id can only be registered once."""
        invoke("add-user", 1, "teacher")
        result = invoke("add-user", 1, "student")

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_link_wrong_role(self, invoke):
        """Linking two students fails."""
        invoke("add-user", 11, "student")
        invoke("add-user", 12, "student")

        result = invoke("link", 11, 12)

        assert result.exit_code == 1
        assert "Not a teacher" in result.output

    def test_unlink(self, linked):
        """A linked student can be unlinked once."""
        assert linked("unlink", 11).exit_code == 0

        result = linked("unlink", 11)

        assert result.exit_code == 1
        assert "not linked" in result.output

    def test_set_level(self, linked):
        """set-level confirms the new level."""
        result = linked("set-level", 11, 3)

        assert result.exit_code == 0
        assert "Level 3" in result.output

    def test_seed_catalog_invalid_entry(self, invoke, tmp_path):
        """Entries without a prompt are rejected."""
        catalog = tmp_path / "bad.yaml"
        catalog.write_text("- level: 1\n", encoding="utf-8")

        result = invoke("seed-catalog", catalog)

        assert result.exit_code == 1
        assert "Invalid catalog entry" in result.output


class TestChallengeCommands:
    """Tests for challenge, score and standings."""

    def test_challenge(self, linked):
        """challenge prints the cohort's challenge."""
        result = linked("challenge", 11)

        assert result.exit_code == 0, result.output
        assert "Challenge 1 (none)" in result.output
        assert "Read 3 chapters" in result.output

        again = linked("challenge", 1)
        assert "Challenge 1 (active)" in again.output

    def test_challenge_unlinked(self, invoke):
        """A student without a teacher gets NOT_LINKED."""
        invoke("add-user", 11, "student")

        result = invoke("challenge", 11)

        assert result.exit_code == 1
        assert "NOT_LINKED" in result.output

    def test_score(self, linked):
        """Only a higher score replaces the stored one."""
        linked("challenge", 1)

        first = linked("score", 11, 1, 5)
        second = linked("score", 11, 1, 2)

        assert "Score updated: 5" in first.output
        assert "Score not higher, kept 5" in second.output

    def test_score_stale_challenge(self, linked):
        """Scores for another challenge are rejected."""
        linked("challenge", 1)

        result = linked("score", 11, 9, 5)

        assert result.exit_code == 1
        assert "DATA_INCONSISTENT" in result.output

    def test_standings(self, linked):
        """standings prints both leaderboards."""
        linked("challenge", 1)
        linked("score", 12, 1, 4)

        result = linked("standings", 11)

        assert result.exit_code == 0, result.output
        assert "Challenge score" in result.output
        assert "Average points" in result.output


class TestLedgerCommands:
    """Tests for record and catch-up."""

    def test_record(self, linked):
        """record prints the updated series."""
        result = linked("record", 11, "--kind", "m", "--points", 4, "--total", 2, "--day", 20000)

        assert result.exit_code == 0, result.output
        assert "Last recorded day: 20000" in result.output

    def test_record_invalid_kind(self, linked):
        """Unknown metric kinds are rejected."""
        result = linked("record", 11, "--kind", "x")

        assert result.exit_code == 1
        assert "INVALID_INPUT" in result.output

    def test_catch_up(self, linked):
        """catch-up advances the series to the given day."""
        linked("record", 11, "--day", 20000)

        result = linked("catch-up", 11, "--day", 20002)

        assert result.exit_code == 0, result.output
        assert "Last recorded day: 20002" in result.output

    def test_catch_up_unknown_student(self, linked):
        """Students without a record get UNKNOWN_USER."""
        result = linked("catch-up", 404, "--day", 20002)

        assert result.exit_code == 1
        assert "UNKNOWN_USER" in result.output
