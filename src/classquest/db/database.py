"""SQLite database connection and schema management.

Provides connection management, serializable transactions and schema
initialization for classquest.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import structlog

logger = structlog.get_logger(__name__)

# Default database location
DEFAULT_DB_PATH = Path("db/classquest.db")

# Busy timeout for plain reads/writes (seconds)
DEFAULT_TIMEOUT = 5.0

# Current database path (module-level for simplicity in CLI context)
_db_path: Path | None = None


def init_db(db_path: Path | None = None) -> None:
    """Initialize database with schema.

    Creates the database file and all required tables if they don't exist.

    Args:
        db_path: Path to database file. Defaults to db/classquest.db
    """
    global _db_path
    _db_path = db_path or DEFAULT_DB_PATH

    _db_path.parent.mkdir(parents=True, exist_ok=True)

    # executescript manages its own transaction, so no get_db() wrapper here
    conn = _connect(DEFAULT_TIMEOUT)
    try:
        _create_schema(conn)
    finally:
        conn.close()

    logger.info("database.initialized", path=str(_db_path))


def current_db_path() -> Path:
    """Path of the database the module is bound to."""
    return _db_path or DEFAULT_DB_PATH


def _connect(timeout: float) -> sqlite3.Connection:
    db_path = current_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    # isolation_level=None: transactions are opened explicitly below
    conn = sqlite3.connect(db_path, timeout=timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_db(timeout: float = DEFAULT_TIMEOUT) -> Generator[sqlite3.Connection, None, None]:
    """Get database connection as context manager.

    Runs the block in a deferred transaction that commits on success
    and rolls back on any exception.

    Example:
        with get_db() as conn:
            rows = conn.execute("SELECT * FROM users").fetchall()
    """
    conn = _connect(timeout)
    try:
        conn.execute("BEGIN")
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


@contextmanager
def transaction(timeout: float = DEFAULT_TIMEOUT) -> Generator[sqlite3.Connection, None, None]:
    """Open a serializable transaction.

    SQLite serializes writers; BEGIN IMMEDIATE takes the write lock up front
    so two transactions over the same rows can never interleave. A competing
    writer waits up to ``timeout`` seconds and then fails with
    ``sqlite3.OperationalError: database is locked``.

    Yields:
        Connection inside an open transaction. Committed on normal exit,
        rolled back on any exception.
    """
    conn = _connect(timeout)
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Uses IF NOT EXISTS for idempotency.
    """
    conn.executescript(
        """
        -- users: teachers and students
        CREATE TABLE IF NOT EXISTS users (
            user_id INTEGER PRIMARY KEY,
            role TEXT NOT NULL CHECK(role IN ('teacher', 'student')),
            nickname TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        -- teacher_students: a student belongs to at most one teacher
        CREATE TABLE IF NOT EXISTS teacher_students (
            student_id INTEGER PRIMARY KEY REFERENCES users(user_id) ON DELETE CASCADE,
            teacher_id INTEGER NOT NULL REFERENCES users(user_id) ON DELETE CASCADE
        );

        -- student_info: challenge state and the stats document
        -- challenge_id is a weak reference (no FK): the row may be rotated away
        CREATE TABLE IF NOT EXISTS student_info (
            student_id INTEGER PRIMARY KEY REFERENCES users(user_id) ON DELETE CASCADE,
            knowledge_level INTEGER NOT NULL DEFAULT -1,
            challenge_id INTEGER,
            challenge_score REAL NOT NULL DEFAULT 0 CHECK(challenge_score >= 0),
            winner_tier INTEGER NOT NULL DEFAULT 0 CHECK(winner_tier BETWEEN 0 AND 3),
            stats TEXT
        );

        -- challenge_catalog: externally seeded content
        CREATE TABLE IF NOT EXISTS challenge_catalog (
            entry_id INTEGER PRIMARY KEY,
            required_level INTEGER NOT NULL,
            period_tag TEXT,
            prompt_text TEXT NOT NULL,
            personal_duration TEXT NOT NULL DEFAULT '',
            cohort_duration TEXT NOT NULL DEFAULT ''
        );

        -- active_challenges: one row per cohort, ids never reused
        -- catalog_entry_id has no FK: a deleted entry leaves an orphan to repair
        CREATE TABLE IF NOT EXISTS active_challenges (
            challenge_id INTEGER PRIMARY KEY AUTOINCREMENT,
            teacher_id INTEGER NOT NULL UNIQUE,
            catalog_entry_id INTEGER NOT NULL,
            assigned_at TEXT NOT NULL
        );

        -- wallets: virtual currency
        CREATE TABLE IF NOT EXISTS wallets (
            student_id INTEGER PRIMARY KEY REFERENCES users(user_id) ON DELETE CASCADE,
            balance REAL NOT NULL DEFAULT 0
        );

        -- Indices
        CREATE INDEX IF NOT EXISTS idx_teacher_students_teacher ON teacher_students(teacher_id);
        CREATE INDEX IF NOT EXISTS idx_catalog_level_period ON challenge_catalog(required_level, period_tag);
        """
    )
