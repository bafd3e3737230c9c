"""
Repository pattern for data access.

Per-user usage ledgers. Every repository keeps logs newest first and
trims each user's ledger to a retention cap, evicting the oldest entries.
"""

import logging
import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import ContextMode, UsageLog, UsageType, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_CAP = 1000


class UsageRepository:
    """Interface for per-user usage log storage."""

    def __init__(self, cap: int = DEFAULT_RETENTION_CAP):
        if cap <= 0:
            raise ValueError("retention cap must be > 0")
        self.cap = cap

    def get(self, user_id: str) -> List[UsageLog]:
        """Return a user's logs, newest first."""
        raise NotImplementedError

    def append(self, user_id: str, log: UsageLog) -> int:
        """Add a log to the front of a user's ledger.

        Returns:
            Number of old logs evicted to stay within the cap
        """
        raise NotImplementedError

    def clear(self, user_id: str) -> None:
        raise NotImplementedError

    def clear_all(self) -> None:
        raise NotImplementedError

    def user_ids(self) -> List[str]:
        raise NotImplementedError


class InMemoryUsageRepository(UsageRepository):
    """Volatile repository. Logs are lost when the process exits."""

    def __init__(self, cap: int = DEFAULT_RETENTION_CAP):
        super().__init__(cap)
        self._logs: Dict[str, Deque[UsageLog]] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> List[UsageLog]:
        with self._lock:
            return list(self._logs.get(user_id, ()))

    def append(self, user_id: str, log: UsageLog) -> int:
        with self._lock:
            logs = self._logs.setdefault(user_id, deque(maxlen=self.cap))
            evicted = 1 if len(logs) == self.cap else 0
            logs.appendleft(log)
            return evicted

    def clear(self, user_id: str) -> None:
        with self._lock:
            self._logs.pop(user_id, None)

    def clear_all(self) -> None:
        with self._lock:
            self._logs.clear()

    def user_ids(self) -> List[str]:
        with self._lock:
            return list(self._logs)


class SqliteUsageRepository(UsageRepository):
    """Durable repository backed by a SQLite file."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH, cap: int = DEFAULT_RETENTION_CAP):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            cap: Maximum logs retained per user
        """
        super().__init__(cap)
        self.db_path = db_path

    def initialize_schema(self) -> None:
        """Create the usage_log table if it doesn't exist."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS usage_log (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    user_id TEXT NOT NULL,
                    model_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    type TEXT NOT NULL,
                    tokens_input INTEGER NOT NULL,
                    tokens_output INTEGER NOT NULL,
                    cost REAL NOT NULL,
                    latency_ms INTEGER NOT NULL,
                    context_mode TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS ix_usage_log_user_seq ON usage_log (user_id, seq)"
            )
            conn.commit()
        finally:
            conn.close()

    def get(self, user_id: str) -> List[UsageLog]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT id, user_id, model_id, provider, type, tokens_input,
                       tokens_output, cost, latency_ms, context_mode, created_at
                FROM usage_log
                WHERE user_id = ?
                ORDER BY seq DESC
                LIMIT ?
            """, (user_id, self.cap))
            return [_row_to_log(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def append(self, user_id: str, log: UsageLog) -> int:
        """Insert a log and trim the user's ledger in one transaction."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("""
                INSERT INTO usage_log
                (id, user_id, model_id, provider, type, tokens_input, tokens_output,
                 cost, latency_ms, context_mode, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                log.id,
                user_id,
                log.model_id,
                log.provider,
                log.usage_type.value,
                log.tokens_input,
                log.tokens_output,
                log.cost,
                log.latency_ms,
                log.context_mode.value if log.context_mode else None,
                log.created_at.isoformat(),
            ))
            cursor = conn.execute("""
                DELETE FROM usage_log
                WHERE user_id = ? AND seq NOT IN (
                    SELECT seq FROM usage_log
                    WHERE user_id = ?
                    ORDER BY seq DESC
                    LIMIT ?
                )
            """, (user_id, user_id, self.cap))
            evicted = cursor.rowcount
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        if evicted:
            logger.debug("Evicted %d usage logs for user %s", evicted, user_id)
        return evicted

    def clear(self, user_id: str) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("DELETE FROM usage_log WHERE user_id = ?", (user_id,))
            conn.commit()
        finally:
            conn.close()

    def clear_all(self) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("DELETE FROM usage_log")
            conn.commit()
        finally:
            conn.close()

    def user_ids(self) -> List[str]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("SELECT DISTINCT user_id FROM usage_log ORDER BY user_id")
            return [row[0] for row in cursor.fetchall()]
        finally:
            conn.close()


def _row_to_log(row) -> UsageLog:
    return UsageLog(
        id=row[0],
        user_id=row[1],
        model_id=row[2],
        provider=row[3],
        usage_type=UsageType(row[4]),
        tokens_input=row[5],
        tokens_output=row[6],
        cost=row[7],
        latency_ms=row[8],
        context_mode=ContextMode(row[9]) if row[9] else None,
        created_at=parse_timestamp(row[10]),
    )


def create_repository(
    backend: str = "memory",
    db_path: Optional[str] = None,
    cap: int = DEFAULT_RETENTION_CAP,
) -> UsageRepository:
    """Build a repository for the configured backend.

    Args:
        backend: ``memory`` or ``sqlite``
        db_path: SQLite file for the ``sqlite`` backend
        cap: Maximum logs retained per user

    Raises:
        ValueError: If the backend is unknown
    """
    if backend == "memory":
        return InMemoryUsageRepository(cap)
    if backend == "sqlite":
        repository = SqliteUsageRepository(db_path or DEFAULT_DB_PATH, cap)
        repository.initialize_schema()
        return repository
    raise ValueError(f"Unknown storage backend: {backend!r}")
