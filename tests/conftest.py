"""Shared fixtures: temporary source databases and an in-memory index."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest

from es_sync.config import Relation, Settings, SourceConfig, SyncOptions
from es_sync.connectors.es_client import BulkResult, ElasticsearchError
from es_sync.connectors.sqlite import SQLiteConnector


class FakeIndex:
    """
    Stand-in for the bulk writer.

    Stores documents per index with replace semantics. ``accept`` decides how
    many documents of call number N (0-based) are accepted; default is all.
    """

    def __init__(self, accept: Callable[[int, int], int] | None = None) -> None:
        self.accept = accept
        self.calls: list[dict[str, dict[str, Any]]] = []
        self.indexes: dict[str, dict[str, dict[str, Any]]] = {}

    async def bulk_upsert(
        self,
        index: str,
        doc_type: str,
        documents: dict[str, dict[str, Any]],
    ) -> BulkResult:
        call_no = len(self.calls)
        self.calls.append(dict(documents))

        accepted = len(documents)
        if self.accept is not None:
            accepted = self.accept(call_no, len(documents))

        stored = self.indexes.setdefault(index, {})
        for doc_id in list(documents)[:accepted]:
            stored[doc_id] = documents[doc_id]
        return BulkResult(success=accepted > 0, accepted=accepted)

    async def __aenter__(self) -> "FakeIndex":
        return self

    async def __aexit__(self, *args: Any) -> None:
        pass

    def documents(self, index: str) -> dict[str, dict[str, Any]]:
        return self.indexes.get(index, {})


class BlockingIndex(FakeIndex):
    """FakeIndex whose first write waits until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def bulk_upsert(self, index, doc_type, documents):  # type: ignore[override]
        if not self.calls:
            self.started.set()
            await self.release.wait()
        return await super().bulk_upsert(index, doc_type, documents)


class FlakyAdmin(FakeIndex):
    """FakeIndex with index administration that fails while ``down`` is set."""

    def __init__(self, down: bool = True) -> None:
        super().__init__()
        self.down = down
        self.created: dict[str, dict[str, Any]] = {}

    def _check(self) -> None:
        if self.down:
            raise ElasticsearchError("Connection error: connection refused")

    async def index_exists(self, index: str) -> bool:
        self._check()
        return index in self.created

    async def create_index(self, index, properties=None) -> bool:
        self._check()
        self.created[index] = dict(properties or {})
        return True

    async def put_mapping(self, index, properties) -> None:
        self._check()
        self.created.setdefault(index, {}).update(properties)


class RecordingConnector(SQLiteConnector):
    """SQLiteConnector remembering every statement it ran."""

    def __init__(self, path: Path | str, timeout: float = 30.0) -> None:
        super().__init__(path, timeout)
        self.statements: list[str] = []

    def count(self, sql: str, params: Sequence[Any] = ()) -> int:
        self.statements.append(sql)
        return super().count(sql, params)

    def fetch(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        self.statements.append(sql)
        return super().fetch(sql, params)


def create_db(path: Path, schema: str, table: str, rows: list[tuple[Any, ...]]) -> Path:
    conn = sqlite3.connect(path)
    conn.execute(schema)
    if rows:
        placeholders = ", ".join("?" for _ in rows[0])
        conn.executemany(f'INSERT INTO "{table}" VALUES ({placeholders})', rows)
    conn.commit()
    conn.close()
    return path


def insert_rows(path: Path, table: str, rows: list[tuple[Any, ...]]) -> None:
    conn = sqlite3.connect(path)
    placeholders = ", ".join("?" for _ in rows[0])
    conn.executemany(f'INSERT INTO "{table}" VALUES ({placeholders})', rows)
    conn.commit()
    conn.close()


@pytest.fixture
def numeric_db(tmp_path: Path) -> Path:
    """Table ``users`` with auto-increment ids 1..5."""
    return create_db(
        tmp_path / "numeric.db",
        "CREATE TABLE users (id INTEGER PRIMARY KEY, user_name TEXT, email TEXT)",
        "users",
        [(i, f"user{i}", f"user{i}@example.com") for i in range(1, 6)],
    )


@pytest.fixture
def tied_db(tmp_path: Path) -> Path:
    """Table ``events`` where three rows share the same timestamp."""
    return create_db(
        tmp_path / "tied.db",
        "CREATE TABLE events (id INTEGER PRIMARY KEY, name TEXT, updated_at DATETIME)",
        "events",
        [
            (1, "a", "2024-01-01 00:00:10"),
            (2, "b", "2024-01-01 00:00:10"),
            (3, "c", "2024-01-01 00:00:10"),
            (4, "d", "2024-01-01 00:00:11"),
        ],
    )


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    def _make(db: Path, *relations: Relation, page_limit: int = 2) -> Settings:
        return Settings(
            source=SourceConfig(path=db),
            sync=SyncOptions(
                page_limit=page_limit,
                checkpoint_dir=tmp_path / "checkpoints",
            ),
            relations=list(relations),
        )

    return _make


@pytest.fixture
def users_relation() -> Relation:
    return Relation(table="users", increment_column="id")


@pytest.fixture
def events_relation() -> Relation:
    return Relation(table="events", increment_column="updated_at")


@pytest.fixture(autouse=True)
def reset_package_logger():
    """CLI commands configure the package logger; undo it between tests."""
    yield
    package_logger = logging.getLogger("es_sync")
    for handler in package_logger.handlers[:]:
        handler.close()
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True
