"""
SQLite Source Connector.

Read-only access to the source database with:
- Schema introspection (columns, declared types, primary key)
- Count and fetch statements with timing
- Value kinds of columns (string / number / temporal) from declared types
"""

from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Generator, Sequence


logger = logging.getLogger(__name__)

Row = dict[str, Any]


class SourceQueryError(Exception):
    """Raised when a statement against the source database fails."""

    def __init__(self, message: str, sql: str = "", elapsed_ms: float = 0.0) -> None:
        super().__init__(message)
        self.sql = sql
        self.elapsed_ms = elapsed_ms

    def __str__(self) -> str:
        return f"{self.args[0]} | sql({self.sql}) time({self.elapsed_ms:.0f}ms)"


class ValueKind(str, Enum):
    """Type tag of a source value, decided from declared column types."""

    STRING = "string"
    NUMBER = "number"
    TEMPORAL = "temporal"
    NULL = "null"


_TEMPORAL_TYPES = ("DATE", "TIME")
_NUMBER_TYPES = ("INT", "REAL", "FLOA", "DOUB", "NUM", "DEC", "BOOL")


def kind_for_declared_type(declared: str) -> ValueKind:
    """Map a declared column type to a value kind (SQLite affinity rules)."""
    upper = (declared or "").upper()
    if any(t in upper for t in _TEMPORAL_TYPES):
        return ValueKind.TEMPORAL
    if any(t in upper for t in _NUMBER_TYPES):
        return ValueKind.NUMBER
    return ValueKind.STRING


@dataclass
class ColumnInfo:
    """Information about a table column."""

    name: str
    type: str
    notnull: bool
    default_value: Any
    is_primary_key: bool

    @property
    def kind(self) -> ValueKind:
        return kind_for_declared_type(self.type)


class SQLiteConnector:
    """
    Read-only connector for the source SQLite database.

    Each sync pass opens its own connector so passes for different relations
    never share a connection.

    Example:
        with SQLiteConnector(Path("shop.db")) as source:
            total = source.count('SELECT COUNT(*) FROM "orders"')
            rows = source.fetch('SELECT * FROM "orders" LIMIT 10')
    """

    def __init__(self, path: Path | str, timeout: float = 30.0) -> None:
        """
        Initialize SQLite connector.

        Args:
            path: Path to local SQLite database file
            timeout: Seconds to wait when the database is locked
        """
        self.path = Path(path)
        self.timeout = timeout
        self._connection: sqlite3.Connection | None = None
        self._columns: dict[str, list[ColumnInfo]] = {}

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get the database connection, creating it on first use."""
        if self._connection is None:
            self._connection = self._create_connection()
        yield self._connection

    def _create_connection(self) -> sqlite3.Connection:
        if not self.path.exists():
            raise FileNotFoundError(f"Database not found: {self.path}")

        conn = sqlite3.connect(
            f"file:{self.path}?mode=ro",
            uri=True,
            check_same_thread=False,
            timeout=self.timeout,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> "SQLiteConnector":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def table_exists(self, table: str) -> bool:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type IN ('table', 'view') AND name = ?",
                (table,),
            ).fetchone()
            return row is not None

    def get_columns(self, table: str) -> list[ColumnInfo]:
        """Column metadata in declaration order (cached per connector)."""
        if table in self._columns:
            return self._columns[table]

        columns: list[ColumnInfo] = []
        with self.connection() as conn:
            for row in conn.execute(f'PRAGMA table_info("{table}")'):
                columns.append(
                    ColumnInfo(
                        name=row["name"],
                        type=row["type"],
                        notnull=bool(row["notnull"]),
                        default_value=row["dflt_value"],
                        is_primary_key=bool(row["pk"]),
                    )
                )
        self._columns[table] = columns
        return columns

    def get_primary_key(self, table: str) -> list[str]:
        return [c.name for c in self.get_columns(table) if c.is_primary_key]

    def count(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a COUNT statement and return its single value."""
        row = self._execute(sql, params, fetch_one=True)
        if row is None or row[0] is None:
            return 0
        return int(row[0])

    def fetch(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        """
        Run a select and return rows as ordered column -> value dicts.

        Values are returned as stored. Temporal columns stay in their stored
        text form so a cursor taken from a row compares equal to the column
        in the next statement.
        """
        return [dict(record) for record in self._execute(sql, params)]

    def _execute(
        self,
        sql: str,
        params: Sequence[Any],
        fetch_one: bool = False,
    ) -> Any:
        start = time.perf_counter()
        try:
            with self.connection() as conn:
                cursor = conn.execute(sql, tuple(params))
                result = cursor.fetchone() if fetch_one else cursor.fetchall()
        except sqlite3.Error as e:
            elapsed = (time.perf_counter() - start) * 1000
            raise SourceQueryError(str(e), sql=sql, elapsed_ms=elapsed) from e

        elapsed = (time.perf_counter() - start) * 1000
        logger.debug("sql(%s) params(%s) time(%.0fms)", sql, list(params), elapsed)
        return result

