"""
Unit tests for storage layer.

Tests the usage log model, both repositories and the retention cap.
"""

import os
import shutil
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from omnidev_usage.storage.models import (
    ContextMode,
    UsageLog,
    UsageType,
    new_log_id,
    parse_timestamp,
)
from omnidev_usage.storage.repository import (
    InMemoryUsageRepository,
    SqliteUsageRepository,
    create_repository,
)

BASE_TIME = datetime(2025, 6, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


def make_log(n, user_id="alice", **kwargs):
    defaults = dict(
        id=f"log_{n}",
        user_id=user_id,
        model_id="gpt-5.1-chat",
        provider="openai",
        usage_type=UsageType.CHAT,
        tokens_input=n,
        tokens_output=2 * n,
        cost=0.001 * n,
        latency_ms=100 + n,
        created_at=BASE_TIME + timedelta(minutes=n),
    )
    defaults.update(kwargs)
    return UsageLog(**defaults)


class TestUsageLog:
    """Test UsageLog data model."""

    def test_valid_log(self):
        log = make_log(10, context_mode=ContextMode.SEARCH)
        assert log.total_tokens == 30
        assert log.context_mode == ContextMode.SEARCH

    def test_negative_values_rejected(self):
        with pytest.raises(ValueError, match="tokens_input cannot be negative"):
            make_log(1, tokens_input=-1)
        with pytest.raises(ValueError, match="cost cannot be negative"):
            make_log(1, cost=-0.01)
        with pytest.raises(ValueError, match="latency_ms cannot be negative"):
            make_log(1, latency_ms=-1)

    def test_log_is_immutable(self):
        log = make_log(1)
        with pytest.raises(AttributeError):
            log.cost = 5.0

    def test_to_dict_shape(self):
        data = make_log(1).to_dict()
        assert data["type"] == "chat"
        assert data["model_id"] == "gpt-5.1-chat"
        assert data["context_mode"] is None
        assert data["created_at"] == "2025-06-01T12:01:00.123Z"

    def test_from_dict_restores_log(self):
        original = make_log(3, context_mode=ContextMode.VIDEO)
        restored = UsageLog.from_dict(original.to_dict())

        assert restored.id == original.id
        assert restored.context_mode == ContextMode.VIDEO
        assert restored.usage_type == UsageType.CHAT
        # Serialized timestamps keep millisecond precision
        assert restored.created_at == original.created_at.replace(microsecond=123000)

    def test_new_log_id_format(self):
        log_id = new_log_id()
        prefix, millis, suffix = log_id.split("_")
        assert prefix == "log"
        assert millis.isdigit()
        assert len(suffix) == 9
        assert suffix.isalnum() and suffix == suffix.lower()

    def test_parse_timestamp(self):
        assert parse_timestamp("2025-06-01T00:00:00Z") == datetime(2025, 6, 1, tzinfo=timezone.utc)
        assert parse_timestamp("2025-06-01T00:00:00").tzinfo == timezone.utc
        offset = parse_timestamp("2025-06-01T02:00:00+02:00")
        assert offset == datetime(2025, 6, 1, tzinfo=timezone.utc)


class TestInMemoryRepository:
    """Test the volatile repository."""

    def test_newest_first(self):
        repository = InMemoryUsageRepository()
        for n in range(1, 4):
            repository.append("alice", make_log(n))
        assert [log.id for log in repository.get("alice")] == ["log_3", "log_2", "log_1"]

    def test_cap_evicts_oldest(self):
        repository = InMemoryUsageRepository(cap=2)
        evicted = [repository.append("alice", make_log(n)) for n in range(1, 5)]

        assert evicted == [0, 0, 1, 1]
        assert [log.id for log in repository.get("alice")] == ["log_4", "log_3"]

    def test_users_isolated(self):
        repository = InMemoryUsageRepository(cap=1)
        repository.append("alice", make_log(1))
        repository.append("bob", make_log(2, user_id="bob"))

        assert [log.id for log in repository.get("alice")] == ["log_1"]
        assert sorted(repository.user_ids()) == ["alice", "bob"]
        assert repository.get("carol") == []

    def test_clear(self):
        repository = InMemoryUsageRepository()
        repository.append("alice", make_log(1))
        repository.append("bob", make_log(2, user_id="bob"))

        repository.clear("alice")
        assert repository.get("alice") == []
        assert len(repository.get("bob")) == 1

        repository.clear_all()
        assert repository.user_ids() == []

    def test_invalid_cap(self):
        with pytest.raises(ValueError, match="retention cap"):
            InMemoryUsageRepository(cap=0)


class TestSqliteRepository:
    """Test the SQLite repository."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        self.repository = SqliteUsageRepository(self.db_path, cap=3)
        self.repository.initialize_schema()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_schema_creation(self):
        """Test that schema is created correctly."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='usage_log'"
        )
        assert cursor.fetchone() is not None
        conn.close()

    def test_schema_is_idempotent(self):
        self.repository.initialize_schema()
        self.repository.initialize_schema()

    def test_append_and_get_round_trip(self):
        log = make_log(7, context_mode=ContextMode.THINKING)
        assert self.repository.append("alice", log) == 0

        stored = self.repository.get("alice")
        assert stored == [log]

    def test_newest_first_and_cap(self):
        evicted = [self.repository.append("alice", make_log(n)) for n in range(1, 6)]

        assert evicted == [0, 0, 0, 1, 1]
        assert [log.id for log in self.repository.get("alice")] == ["log_5", "log_4", "log_3"]

    def test_cap_is_per_user(self):
        for n in range(1, 5):
            self.repository.append("alice", make_log(n))
        self.repository.append("bob", make_log(10, user_id="bob"))

        assert len(self.repository.get("alice")) == 3
        assert [log.id for log in self.repository.get("bob")] == ["log_10"]

    def test_duplicate_id_rejected_and_nothing_written(self):
        self.repository.append("alice", make_log(1))
        with pytest.raises(sqlite3.IntegrityError):
            self.repository.append("alice", make_log(1))
        assert len(self.repository.get("alice")) == 1

    def test_clear_and_user_ids(self):
        self.repository.append("alice", make_log(1))
        self.repository.append("bob", make_log(2, user_id="bob"))
        assert self.repository.user_ids() == ["alice", "bob"]

        self.repository.clear("alice")
        assert self.repository.user_ids() == ["bob"]

        self.repository.clear_all()
        assert self.repository.user_ids() == []


class TestCreateRepository:
    """Test repository selection."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_memory_backend(self):
        repository = create_repository("memory", cap=5)
        assert isinstance(repository, InMemoryUsageRepository)
        assert repository.cap == 5

    def test_sqlite_backend_initializes_schema(self):
        db_path = os.path.join(self.temp_dir, "usage.db")
        repository = create_repository("sqlite", db_path=db_path)
        assert isinstance(repository, SqliteUsageRepository)
        assert repository.get("alice") == []

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_repository("redis")
