"""
Document Mapper - Source rows to index documents.

The id is ``prefix + key values joined with "-" + suffix``. Fields are
renamed through the relation's mapping (camelCase by default) and blank
values are written as a single space: a null would clear completion and
ranking metadata attached to the field instead of leaving it unset.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable

from es_sync.config import Relation
from es_sync.core.cursor import TEMPORAL_FORMAT


logger = logging.getLogger(__name__)

ID_SEPARATOR = "-"
BLANK_PLACEHOLDER = " "


@dataclass
class Document:
    """A document ready for the bulk writer."""

    id: str
    fields: dict[str, Any] = field(default_factory=dict)


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def render_value(value: Any) -> Any:
    """JSON-safe field value."""
    if is_blank(value):
        return BLANK_PLACEHOLDER
    if isinstance(value, datetime):
        return value.strftime(TEMPORAL_FORMAT)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return value


class DocumentMapper:
    """Builds documents for one relation."""

    def __init__(self, relation: Relation) -> None:
        self.relation = relation

    def build_id(self, row: dict[str, Any]) -> str:
        parts = []
        for column in self.relation.key_columns:
            value = row.get(column)
            parts.append("" if value is None else str(render_value(value)).strip())

        body = ID_SEPARATOR.join(parts)
        if body.endswith(ID_SEPARATOR):
            body = body[: -len(ID_SEPARATOR)]
        return f"{self.relation.id_prefix}{body}{self.relation.id_suffix}"

    def build_fields(self, row: dict[str, Any]) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        for column, value in row.items():
            name = self.relation.use_field(column)
            if name:
                fields[name] = render_value(value)
        return fields

    def map_row(self, row: dict[str, Any]) -> Document | None:
        """Document for ``row``, or None when it has no id or no fields."""
        doc_id = self.build_id(row)
        if is_blank(doc_id):
            logger.warning(
                "relation(%s) dropped row without id: %s",
                self.relation.relation_id,
                row,
            )
            return None

        fields = self.build_fields(row)
        if not fields:
            logger.debug("relation(%s) dropped empty document %s", self.relation.relation_id, doc_id)
            return None
        return Document(id=doc_id, fields=fields)

    def map_rows(self, rows: Iterable[dict[str, Any]]) -> dict[str, dict[str, Any]]:
        """id -> fields for a page; a repeated id keeps the last row."""
        documents: dict[str, dict[str, Any]] = {}
        for row in rows:
            doc = self.map_row(row)
            if doc is not None:
                documents[doc.id] = doc.fields
        return documents
