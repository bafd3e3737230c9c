"""
Database connection management.

Provides SQLite connections for durable usage ledgers.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "omnidev_usage.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with a busy timeout for concurrent writers
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=30)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
