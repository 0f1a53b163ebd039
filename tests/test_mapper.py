"""Tests for the document mapper."""

from datetime import date, datetime

from es_sync.config import Relation
from es_sync.core.mapper import DocumentMapper, is_blank, render_value


def mapper_for(**kwargs) -> DocumentMapper:
    kwargs.setdefault("table", "orders")
    kwargs.setdefault("increment_column", "updated_at")
    kwargs.setdefault("key_columns", ["id"])
    return DocumentMapper(Relation(**kwargs))


class TestDocumentId:
    """Id composition from key columns."""

    def test_single_key(self) -> None:
        assert mapper_for().build_id({"id": 42}) == "42"

    def test_prefix(self) -> None:
        assert mapper_for(id_prefix="p-").build_id({"id": 42}) == "p-42"

    def test_composite_key(self) -> None:
        mapper = mapper_for(key_columns=["a", "b"])
        assert mapper.build_id({"a": 1, "b": 2}) == "1-2"

    def test_composite_key_with_prefix_and_suffix(self) -> None:
        mapper = mapper_for(key_columns=["shop_id", "order_no"], id_prefix="o_", id_suffix="_v1")
        assert mapper.build_id({"shop_id": 7, "order_no": "A-1"}) == "o_7-A-1_v1"

    def test_trailing_separator_trimmed(self) -> None:
        """A null last key part does not leave a dangling separator."""
        mapper = mapper_for(key_columns=["shop_id", "order_no"])
        assert mapper.build_id({"shop_id": 7, "order_no": None}) == "7"

    def test_id_is_deterministic(self) -> None:
        mapper = mapper_for(key_columns=["a", "b"])
        row = {"a": 1, "b": "x"}
        assert mapper.build_id(row) == mapper.build_id(dict(row))


class TestFields:
    """Field naming and value rendering."""

    def test_camel_case_by_default(self) -> None:
        fields = mapper_for().build_fields({"id": 1, "user_name": "ann", "updated_at": "2024"})
        assert fields == {"id": 1, "userName": "ann", "updatedAt": "2024"}

    def test_mapping_and_ignore(self) -> None:
        mapper = mapper_for(mapping={"user_name": "login"}, ignore_columns=["secret"])
        fields = mapper.build_fields({"id": 1, "user_name": "ann", "secret": "x"})
        assert fields == {"id": 1, "login": "ann"}

    def test_blank_values_become_placeholder(self) -> None:
        fields = mapper_for().build_fields({"id": 1, "note": None, "title": "  "})
        assert fields["note"] == " "
        assert fields["title"] == " "

    def test_render_value(self) -> None:
        assert render_value(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04:05"
        assert render_value(date(2024, 1, 2)) == "2024-01-02"
        assert render_value(b"abc") == "abc"
        assert render_value(0) == 0
        assert render_value(False) is False

    def test_is_blank(self) -> None:
        assert is_blank(None)
        assert is_blank(" ")
        assert not is_blank(0)
        assert not is_blank("x")


class TestMapRows:
    """Whole-row mapping."""

    def test_row_without_id_dropped(self) -> None:
        mapper = mapper_for()
        assert mapper.map_row({"id": None, "name": "x"}) is None

    def test_row_with_only_ignored_columns_dropped(self) -> None:
        mapper = mapper_for(ignore_columns=["id", "secret"])
        assert mapper.map_row({"id": 1, "secret": "x"}) is None

    def test_map_rows(self) -> None:
        mapper = mapper_for()
        documents = mapper.map_rows(
            [
                {"id": 1, "name": "a"},
                {"id": None, "name": "b"},
                {"id": 2, "name": "c"},
            ]
        )
        assert documents == {"1": {"id": 1, "name": "a"}, "2": {"id": 2, "name": "c"}}

    def test_repeated_id_keeps_last_row(self) -> None:
        mapper = mapper_for()
        documents = mapper.map_rows([{"id": 1, "name": "old"}, {"id": 1, "name": "new"}])
        assert documents == {"1": {"id": 1, "name": "new"}}
