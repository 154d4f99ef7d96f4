"""Repository functions for student wallets and stats documents."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class StatsRow:
    """Raw stats document of a student (None if never written)."""

    student_id: int
    document: str | None


def get_stats_row(conn: sqlite3.Connection, student_id: int) -> StatsRow | None:
    """Get the stats document of a student.

    Returns:
        StatsRow, or None if the student has no student_info record
    """
    row = conn.execute(
        "SELECT student_id, stats FROM student_info WHERE student_id = ?", (student_id,)
    ).fetchone()
    if row is None:
        return None
    return StatsRow(student_id=row["student_id"], document=row["stats"])


def save_stats_document(conn: sqlite3.Connection, student_id: int, document: str) -> None:
    """Replace the stats document of a student.

    Raises:
        ValueError: If the student has no student_info record
    """
    cursor = conn.execute(
        "UPDATE student_info SET stats = ? WHERE student_id = ?", (document, student_id)
    )
    if cursor.rowcount == 0:
        raise ValueError(f"Student info not found: {student_id}")


def get_balance(conn: sqlite3.Connection, student_id: int) -> float | None:
    """Get wallet balance, or None if the wallet does not exist yet."""
    row = conn.execute(
        "SELECT balance FROM wallets WHERE student_id = ?", (student_id,)
    ).fetchone()
    return None if row is None else row["balance"]


def credit_wallet(conn: sqlite3.Connection, student_id: int, amount: float) -> float:
    """Increment a wallet, creating it if absent.

    Balances are kept to one decimal place.

    Returns:
        New balance
    """
    conn.execute(
        """
        INSERT INTO wallets (student_id, balance) VALUES (?, ROUND(?, 1))
        ON CONFLICT(student_id) DO UPDATE SET balance = ROUND(balance + excluded.balance, 1)
        """,
        (student_id, amount),
    )
    balance = get_balance(conn, student_id)
    logger.debug("wallets.credited", student_id=student_id, amount=amount, balance=balance)
    return balance
