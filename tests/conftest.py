"""
Pytest configuration and fixtures for the cloud sync tests.

Tests never touch a real store: the engine code takes its client by
injection, so most tests run against ``FakeStore`` (an in-memory upsert
store with programmable failures) and the SQL client is exercised on an
in-memory SQLite engine.
"""

import os

# The API lifespan would otherwise try to create tables in Postgres.
os.environ.setdefault("SKIP_DB_INIT", "1")

from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from cloudsync.db.store import StoreError, SqlStoreClient
from cloudsync.domain.sync.chunking import ChunkTuningConfig
from cloudsync.domain.sync.uploader import BatchUploadController


UpsertFailure = Callable[[str, Sequence[Dict[str, Any]]], Optional[StoreError]]
SelectFailure = Callable[[str, int], Optional[StoreError]]


class FakeStore:
    """In-memory ``TabularStoreClient``: upserts merge rows on the conflict key."""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self.upsert_calls: List[Tuple[str, int]] = []
        self.select_calls: List[Tuple[str, int, int]] = []
        self.delete_calls: List[Tuple[str, Optional[Mapping[str, Any]]]] = []
        self.upsert_failure: Optional[UpsertFailure] = None
        self.select_failure: Optional[SelectFailure] = None

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return [dict(row) for row in self.tables.get(table, {}).values()]

    def seed(self, table: str, rows: Sequence[Dict[str, Any]], key: Sequence[str]) -> None:
        target = self.tables.setdefault(table, {})
        for row in rows:
            target[tuple(row[col] for col in key)] = dict(row)

    def upsert(self, table, records, conflict_key):
        self.upsert_calls.append((table, len(records)))
        if self.upsert_failure:
            error = self.upsert_failure(table, records)
            if error is not None:
                raise error
        target = self.tables.setdefault(table, {})
        for record in records:
            key = tuple(record[col] for col in conflict_key) if conflict_key else len(target)
            target[key] = {**target.get(key, {}), **record}

    def select_range(self, table, field, low, high, offset, limit, tiebreak=()):
        self.select_calls.append((table, offset, limit))
        if self.select_failure:
            error = self.select_failure(table, offset)
            if error is not None:
                raise error
        rows = [
            row for row in self.rows(table)
            if (low is None or row.get(field) >= low) and (high is None or row.get(field) <= high)
        ]
        order = [field] + [col for col in tiebreak if col != field]
        rows.sort(key=lambda row: tuple(str(row.get(col)) for col in order))
        return rows[offset:offset + limit]

    def delete(self, table, predicate):
        self.delete_calls.append((table, predicate))
        target = self.tables.get(table, {})
        doomed = [
            key for key, row in target.items()
            if predicate is None or all(row.get(col) == value for col, value in predicate.items())
        ]
        for key in doomed:
            del target[key]
        return len(doomed)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def controller(store, sleeps) -> BatchUploadController:
    """Controller with default tuning that records sleeps instead of sleeping."""
    return BatchUploadController(
        store,
        tuning=ChunkTuningConfig(initial_size=100, min_size=10, max_size=200),
        max_attempts=3,
        backoff_base_seconds=1.0,
        backoff_jitter_seconds=1.0,
        pause_seconds=0.0,
        sleep=sleeps.append,
        jitter=lambda low, high: (low + high) / 2,
    )


SQLITE_TABLES = """
CREATE TABLE fact_shangzhi (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    sku_code TEXT NOT NULL,
    shop_name TEXT,
    paid_amount REAL,
    paid_items INTEGER,
    pv INTEGER,
    uv INTEGER,
    paid_users INTEGER,
    paid_customers INTEGER,
    UNIQUE (date, sku_code)
);
CREATE TABLE app_config (
    key TEXT PRIMARY KEY,
    data TEXT
);
"""


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    with engine.begin() as conn:
        for statement in SQLITE_TABLES.split(";"):
            if statement.strip():
                conn.execute(text(statement))
    yield engine
    engine.dispose()


@pytest.fixture
def sql_client(sqlite_engine) -> SqlStoreClient:
    return SqlStoreClient(sqlite_engine)
