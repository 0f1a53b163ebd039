"""Tests for the query planner."""

from pathlib import Path

import pytest

from es_sync.config import Relation
from es_sync.connectors.sqlite import SQLiteConnector
from es_sync.core.cursor import bind_cursor, format_cursor, is_numeric
from es_sync.core.planner import QueryPlanner, Statement, quote

from conftest import create_db


@pytest.fixture
def relation() -> Relation:
    return Relation(
        table="events",
        increment_column="updated_at",
        key_columns=["id"],
        primary_key_column="id",
    )


class TestStatements:
    """Exact statement shapes."""

    def test_count_pending_without_cursor(self, relation: Relation) -> None:
        statement = QueryPlanner(relation).count_pending(None)
        assert statement.sql == 'SELECT COUNT(*) FROM "events"'
        assert statement.params == ()

    def test_count_pending(self, relation: Relation) -> None:
        statement = QueryPlanner(relation).count_pending("2024-01-01 00:00:00")
        assert statement.sql == 'SELECT COUNT(*) FROM "events" WHERE "updated_at" > ?'
        assert statement.params == ("2024-01-01 00:00:00",)

    def test_fetch_page(self, relation: Relation) -> None:
        statement = QueryPlanner(relation, page_limit=100).fetch_page("t")
        assert statement.sql == (
            'SELECT * FROM "events" WHERE "updated_at" > ? ORDER BY "updated_at" ASC LIMIT 100'
        )

    def test_fetch_page_numeric_cursor_binds_number(self) -> None:
        relation = Relation(table="users", increment_column="id")
        statement = QueryPlanner(relation).fetch_page("42")
        assert statement.params == (42,)

    def test_count_equals(self, relation: Relation) -> None:
        statement = QueryPlanner(relation).count_equals("t")
        assert statement.sql == 'SELECT COUNT(*) FROM "events" WHERE "updated_at" = ?'
        assert statement.params == ("t",)

    def test_fetch_equals(self, relation: Relation) -> None:
        statement = QueryPlanner(relation, page_limit=10).fetch_equals("t", page_index=3)
        assert statement.sql == (
            'SELECT * FROM "events" WHERE "updated_at" = ? ORDER BY "id" LIMIT 30, 10'
        )

    def test_fetch_equals_deep_offset_joins_primary_key(self, relation: Relation) -> None:
        planner = QueryPlanner(relation, page_limit=10, deep_offset_threshold=15)
        statement = planner.fetch_equals("t", page_index=2)
        assert statement.sql == (
            'SELECT t.* FROM "events" AS t'
            ' INNER JOIN (SELECT "id" FROM "events" WHERE "updated_at" = ? ORDER BY "id"'
            ' LIMIT 20, 10) AS page ON t."id" = page."id" ORDER BY t."id"'
        )

    def test_fetch_equals_without_primary_key_never_joins(self) -> None:
        relation = Relation(table="logs", increment_column="ts", key_columns=["host", "seq"])
        planner = QueryPlanner(relation, page_limit=10, deep_offset_threshold=0)
        statement = planner.fetch_equals("t", page_index=5)
        assert "JOIN" not in statement.sql
        assert statement.sql.endswith('ORDER BY "host", "seq" LIMIT 50, 10')

    def test_explicit_columns_and_alias(self) -> None:
        relation = Relation(
            table="orders",
            increment_column="modified",
            increment_column_alias="cursor",
            columns=["id", "modified"],
        )
        statement = QueryPlanner(relation, page_limit=5).fetch_page(None)
        assert statement.sql == (
            'SELECT "id", "modified", "modified" AS "cursor" FROM "orders"'
            ' ORDER BY "modified" ASC LIMIT 5'
        )

    def test_relation_limit_wins(self) -> None:
        relation = Relation(table="t", increment_column="id", limit=7)
        assert QueryPlanner(relation, page_limit=1000).limit == 7

    def test_quote_escapes(self) -> None:
        assert quote('we"ird') == '"we""ird"'

    def test_statement_str_includes_params(self) -> None:
        assert str(Statement("SELECT 1", ())) == "SELECT 1"
        assert str(Statement("SELECT ?", (3,))) == "SELECT ? [3]"


class TestLoopCount:
    @pytest.mark.parametrize(
        "total,expected",
        [(0, 0), (-1, 0), (1, 1), (2, 1), (3, 2), (4, 2), (5, 3)],
    )
    def test_loop_count(self, relation: Relation, total: int, expected: int) -> None:
        assert QueryPlanner(relation, page_limit=2).loop_count(total) == expected


class TestDeepOffsetAgainstDatabase:
    """The join rewrite returns the same rows as the plain offset page."""

    def test_same_rows(self, tmp_path: Path, relation: Relation) -> None:
        db = create_db(
            tmp_path / "deep.db",
            "CREATE TABLE events (id INTEGER PRIMARY KEY, name TEXT, updated_at DATETIME)",
            "events",
            [(i, f"e{i}", "2024-01-01 00:00:00") for i in range(1, 26)],
        )
        plain = QueryPlanner(relation, page_limit=5, deep_offset_threshold=1000)
        deep = QueryPlanner(relation, page_limit=5, deep_offset_threshold=0)

        with SQLiteConnector(db) as source:
            for page_index in range(5):
                a = plain.fetch_equals("2024-01-01 00:00:00", page_index)
                b = deep.fetch_equals("2024-01-01 00:00:00", page_index)
                assert "JOIN" not in a.sql
                if page_index:
                    assert "JOIN" in b.sql
                assert source.fetch(a.sql, a.params) == source.fetch(b.sql, b.params)


class TestCursor:
    """Cursor helpers."""

    def test_is_numeric(self) -> None:
        assert is_numeric("42")
        assert is_numeric("-3.5")
        assert not is_numeric("2024-01-01 00:00:00")
        assert not is_numeric("")
        assert not is_numeric(None)

    def test_format_cursor(self) -> None:
        from datetime import date, datetime

        assert format_cursor(5) == "5"
        assert format_cursor(datetime(2024, 1, 1, 0, 0, 10)) == "2024-01-01 00:00:10"
        assert format_cursor(date(2024, 1, 1)) == "2024-01-01"
        assert format_cursor("  ") is None
        assert format_cursor(None) is None

    def test_bind_cursor(self) -> None:
        assert bind_cursor("7") == 7
        assert bind_cursor("1.5") == 1.5
        assert bind_cursor("2024-01-01") == "2024-01-01"
