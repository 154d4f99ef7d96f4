"""Database module for SQLite persistence.

Provides:
- Database connection management and serializable transactions
- Schema initialization
- Repository functions for membership, challenges and student records
"""

from classquest.db.database import get_db, init_db, transaction

__all__ = ["get_db", "init_db", "transaction"]
