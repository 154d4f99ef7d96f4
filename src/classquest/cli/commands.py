"""CLI commands for classquest.

Store seeding:
- init-db, add-user, link, unlink, set-level, seed-catalog

Cohort operations:
- challenge: resolve and rotate the weekly challenge
- score: submit a challenge score
- standings: cohort leaderboard

Consistency ledger:
- record: record a student activity
- catch-up: advance a student's series without activity
"""

import sqlite3
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from classquest.config.app_config import load_app_config
from classquest.core.consistency_ledger import ActivityResult, ConsistencyLedger
from classquest.core.weekly_challenge import WeeklyChallengeService
from classquest.db.challenge_repository import add_catalog_entry
from classquest.db.database import current_db_path, get_db, init_db
from classquest.db.membership_repository import (
    add_user as do_add_user,
    link_student,
    set_knowledge_level,
    unlink_student,
)

app = typer.Typer(
    name="classquest",
    help="Weekly cohort challenges and student consistency tracking.",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def main(
    db: Optional[Path] = typer.Option(
        None, "--db", help="Database file (default from config or CLASSQUEST_DB_PATH)"
    ),
) -> None:
    """Bind the database for every command."""
    init_db(db or load_app_config().db_path)


def _fail(message: str) -> None:
    console.print(f"[red]✗ {message}[/red]")
    raise typer.Exit(code=1)


def _print_series(result: ActivityResult) -> None:
    if not result.success:
        _fail(f"{result.reason.value}: {result.message}")

    series = result.series
    table = Table(title=f"Last recorded day: {series.last_recorded_day}")
    table.add_column("Week", justify="right")
    table.add_column("Consistency", justify="right")
    for kind in sorted(series.metrics):
        table.add_column(f"{kind} (pts/ok/err/tot)")

    for week in range(series.weeks):
        row = [str(week + 1), f"{series.consistency[week]:.2f}"]
        for kind in sorted(series.metrics):
            points, correct, mistakes, total = series.metrics[kind][week]
            row.append(f"{points:g}/{correct:g}/{mistakes:g}/{total:g}")
        table.add_row(*row)

    console.print(table)


@app.command(name="init-db")
def init_database() -> None:
    """Create the database schema."""
    console.print(f"[green]✓ Database ready:[/green] {current_db_path()}")


@app.command(name="add-user")
def add_user(
    user_id: int = typer.Argument(..., help="User id"),
    role: str = typer.Argument(..., help="teacher | student"),
    nickname: str = typer.Option("", "--nickname", "-n", help="Display name"),
) -> None:
    """Register a teacher or student."""
    if role not in ("teacher", "student"):
        _fail(f"Invalid role '{role}'. Must be teacher or student")
    try:
        with get_db() as conn:
            do_add_user(conn, user_id, role, nickname)
    except sqlite3.IntegrityError:
        _fail(f"User {user_id} already exists")
    console.print(f"[green]✓ Added {role}[/green] {user_id}")


@app.command()
def link(
    teacher_id: int = typer.Argument(..., help="Teacher id"),
    student_id: int = typer.Argument(..., help="Student id"),
) -> None:
    """Link a student to a teacher."""
    try:
        with get_db() as conn:
            link_student(conn, teacher_id, student_id)
    except ValueError as e:
        _fail(str(e))
    console.print(f"[green]✓ Linked[/green] student {student_id} → teacher {teacher_id}")


@app.command()
def unlink(student_id: int = typer.Argument(..., help="Student id")) -> None:
    """Remove a student's teacher link."""
    with get_db() as conn:
        removed = unlink_student(conn, student_id)
    if not removed:
        _fail(f"Student {student_id} is not linked")
    console.print(f"[green]✓ Unlinked[/green] student {student_id}")


@app.command(name="set-level")
def set_level(
    student_id: int = typer.Argument(..., help="Student id"),
    level: int = typer.Argument(..., help="Knowledge level (negative = undeclared)"),
) -> None:
    """Declare a student's knowledge level."""
    with get_db() as conn:
        set_knowledge_level(conn, student_id, level)
    console.print(f"[green]✓ Level {level}[/green] for student {student_id}")


@app.command(name="seed-catalog")
def seed_catalog(
    file_path: Path = typer.Argument(..., exists=True, readable=True, help="YAML file"),
) -> None:
    """Load challenge catalog entries from a YAML list.

    Each entry needs ``level`` and ``prompt``; ``period``,
    ``personal_duration``, ``cohort_duration`` and ``id`` are optional.
    """
    data = yaml.safe_load(file_path.read_text(encoding="utf-8")) or []
    entries = data.get("entries", []) if isinstance(data, dict) else data

    try:
        with get_db() as conn:
            for entry in entries:
                add_catalog_entry(
                    conn,
                    required_level=int(entry["level"]),
                    prompt_text=str(entry["prompt"]),
                    period_tag=entry.get("period"),
                    personal_duration=str(entry.get("personal_duration", "")),
                    cohort_duration=str(entry.get("cohort_duration", "")),
                    entry_id=entry.get("id"),
                )
    except (KeyError, TypeError, ValueError) as e:
        _fail(f"Invalid catalog entry: {e}")
    except sqlite3.IntegrityError as e:
        _fail(f"Catalog entry conflicts with existing data: {e}")

    console.print(f"[green]✓ Seeded {len(entries)} catalog entries[/green]")


@app.command()
def challenge(user_id: int = typer.Argument(..., help="Teacher or student id")) -> None:
    """Show the cohort's weekly challenge, rotating it if needed."""
    result = WeeklyChallengeService().resolve_and_rotate_challenge(user_id)
    if not result.success:
        _fail(f"{result.reason.value}: {result.message}")

    view = result.challenge
    console.print(f"[bold]Challenge {view.challenge_id}[/bold] ({view.observed_state.value})")
    console.print(view.prompt)
    console.print(f"Personal duration: {view.personal_duration}")
    console.print(f"Cohort duration: {view.cohort_duration}")
    console.print(f"Expires: {view.expiry_date.isoformat()}")

    if view.settlement is not None:
        for payout in view.settlement.payouts:
            if payout.tier:
                console.print(
                    f"  Tier {payout.tier}: student {payout.student_id} +{payout.amount:.1f}"
                )


@app.command()
def score(
    student_id: int = typer.Argument(..., help="Student id"),
    challenge_id: int = typer.Argument(..., help="Challenge id"),
    value: float = typer.Argument(..., help="Score"),
) -> None:
    """Submit a weekly challenge score (only a higher score is kept)."""
    result = WeeklyChallengeService().submit_challenge_score(student_id, challenge_id, value)
    if not result.success:
        _fail(f"{result.reason.value}: {result.message}")

    if result.updated:
        console.print(f"[green]✓ Score updated:[/green] {result.score:g}")
    else:
        console.print(f"[yellow]Score not higher, kept {result.score:g}[/yellow]")


@app.command()
def standings(user_id: int = typer.Argument(..., help="Teacher or student id")) -> None:
    """Show the cohort leaderboard."""
    result = WeeklyChallengeService().cohort_standings(user_id)
    if not result.success:
        _fail(f"{result.reason.value}: {result.message}")

    board = result.standings
    console.print(f"[bold]Teacher {board.teacher_id}[/bold] · challenge {board.challenge_id}")

    for title, rows in (
        ("Challenge score", board.top_scores),
        ("Average points", board.top_average_points),
    ):
        table = Table(title=title)
        table.add_column("Student", justify="right")
        table.add_column("Value", justify="right")
        for student_id, value in rows:
            table.add_row(str(student_id), f"{value:g}")
        console.print(table)

    if board.winners:
        winners = ", ".join(f"{sid} (tier {tier})" for sid, tier in board.winners)
        console.print(f"Last winners: {winners}")


@app.command()
def record(
    student_id: int = typer.Argument(..., help="Student id"),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Metric kind"),
    points: float = typer.Option(0, "--points", help="Points earned"),
    correct: int = typer.Option(0, "--correct", help="Correct answers"),
    mistakes: int = typer.Option(0, "--mistakes", help="Mistakes"),
    total: int = typer.Option(0, "--total", help="Total answers"),
    day: Optional[int] = typer.Option(None, "--day", help="Day index (default: today)"),
) -> None:
    """Record a student activity."""
    ledger = ConsistencyLedger(load_app_config().ledger)
    result = ledger.record_activity(
        student_id,
        kind=kind,
        delta={"points": points, "correct": correct, "mistakes": mistakes, "total": total},
        day=day,
    )
    _print_series(result)


@app.command(name="catch-up")
def catch_up(
    student_id: int = typer.Argument(..., help="Student id"),
    day: Optional[int] = typer.Option(None, "--day", help="Day index (default: yesterday)"),
) -> None:
    """Advance a student's consistency series without activity."""
    ledger = ConsistencyLedger(load_app_config().ledger)
    _print_series(ledger.catch_up(student_id, day=day))


if __name__ == "__main__":
    app()
