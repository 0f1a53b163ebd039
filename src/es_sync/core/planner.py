"""
Query Planner - Statement builder for incremental fetches.

Builds the count, keyset page and boundary-equals statements for one
relation. Keyset pages use ``increment > cursor`` so every page is strictly
newer than the last checkpoint; rows tied on the boundary value are read
back with offset pages restricted to ``increment = cursor``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from es_sync.config import Relation
from es_sync.core.cursor import bind_cursor


def quote(identifier: str) -> str:
    """Quote an SQL identifier."""
    return '"' + identifier.replace('"', '""') + '"'


@dataclass(frozen=True)
class Statement:
    """A parameterized statement ready for the source connector."""

    sql: str
    params: tuple[Any, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        if not self.params:
            return self.sql
        return f"{self.sql} {list(self.params)}"


class QueryPlanner:
    """
    Statement builder for one relation.

    Example:
        planner = QueryPlanner(relation, page_limit=1000)

        planner.count_pending("2024-01-01 10:00:00")
        planner.fetch_page("2024-01-01 10:00:00")
        planner.fetch_equals("2024-01-01 10:00:00", page_index=3)
    """

    def __init__(
        self,
        relation: Relation,
        page_limit: int = 1000,
        deep_offset_threshold: int = 10_000,
    ) -> None:
        """
        Initialize planner.

        Args:
            relation: Relation to plan for
            page_limit: Rows per fetch when the relation sets no limit
            deep_offset_threshold: Default offset above which equals pages
                join on the primary key
        """
        self.relation = relation
        self.limit = relation.page_limit(page_limit)
        self.deep_offset_threshold = relation.offset_threshold(deep_offset_threshold)
        self._table = quote(relation.table)
        self._increment = quote(relation.increment_column)

    def select_list(self, qualifier: str = "") -> str:
        """Column list of fetch statements, with the cursor alias if any."""
        prefix = f"{qualifier}." if qualifier else ""
        if self.relation.columns:
            cols = [f"{prefix}{quote(c)}" for c in self.relation.columns]
        else:
            cols = [f"{prefix}*"]

        alias = self.relation.increment_column_alias
        if alias and alias != self.relation.increment_column:
            cols.append(f"{prefix}{self._increment} AS {quote(alias)}")
        return ", ".join(cols)

    def count_pending(self, cursor: str | None) -> Statement:
        """Rows strictly after the cursor (all rows without one)."""
        where, params = self._greater(cursor)
        return Statement(f"SELECT COUNT(*) FROM {self._table}{where}", params)

    def fetch_page(self, cursor: str | None) -> Statement:
        """Next keyset page strictly after the cursor."""
        where, params = self._greater(cursor)
        sql = (
            f"SELECT {self.select_list()} FROM {self._table}{where}"
            f" ORDER BY {self._increment} ASC LIMIT {self.limit}"
        )
        return Statement(sql, params)

    def count_equals(self, cursor: str) -> Statement:
        """Rows sharing the boundary value."""
        sql = f"SELECT COUNT(*) FROM {self._table} WHERE {self._increment} = ?"
        return Statement(sql, (bind_cursor(cursor),))

    def fetch_equals(self, cursor: str, page_index: int) -> Statement:
        """
        Offset page ``page_index`` of the rows sharing the boundary value.

        Past ``deep_offset_threshold`` with a primary key configured, the
        statement first selects only primary keys for the range and joins
        back for full rows, so the source does not materialize and discard
        ``offset`` full rows.
        """
        offset = page_index * self.limit
        pk = self.relation.primary_key_column
        param = (bind_cursor(cursor),)

        if pk and offset > self.deep_offset_threshold:
            qpk = quote(pk)
            sql = (
                f"SELECT {self.select_list('t')} FROM {self._table} AS t"
                f" INNER JOIN (SELECT {qpk} FROM {self._table}"
                f" WHERE {self._increment} = ? ORDER BY {qpk}"
                f" LIMIT {offset}, {self.limit}) AS page"
                f" ON t.{qpk} = page.{qpk}"
                f" ORDER BY t.{qpk}"
            )
            return Statement(sql, param)

        sql = (
            f"SELECT {self.select_list()} FROM {self._table}"
            f" WHERE {self._increment} = ?"
            f" ORDER BY {self._equals_order()}"
            f" LIMIT {offset}, {self.limit}"
        )
        return Statement(sql, param)

    def loop_count(self, total: int) -> int:
        """Number of equals pages needed for ``total`` tied rows."""
        if total <= 0:
            return 0
        return (total + self.limit - 1) // self.limit

    def _greater(self, cursor: str | None) -> tuple[str, tuple[Any, ...]]:
        if cursor is None:
            return "", ()
        return f" WHERE {self._increment} > ?", (bind_cursor(cursor),)

    def _equals_order(self) -> str:
        # Same order as the deep join so switching strategy mid-scan is stable
        if self.relation.primary_key_column:
            return quote(self.relation.primary_key_column)
        if self.relation.key_columns:
            return ", ".join(quote(c) for c in self.relation.key_columns)
        return "rowid"
