"""
Scheme - Table structure to index structure.

Runs once per relation before its first pass:
- resolves the document id columns (explicit config, else primary key)
- maps declared column types to index field types
- optionally creates the index or extends its mapping
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from es_sync.config import Relation, RelationConfigError
from es_sync.connectors.es_client import ElasticsearchClient
from es_sync.connectors.sqlite import SQLiteConnector, ValueKind


logger = logging.getLogger(__name__)

TEMPORAL_FORMAT = "yyyy-MM-dd HH:mm:ss||yyyy-MM-dd||strict_date_optional_time||epoch_millis"


def db_to_es_type(declared: str) -> dict[str, Any]:
    """
    Index field definition for a declared column type.

    Numeric and date fields ignore malformed values so the blank placeholder
    written for nulls does not reject the whole document.
    """
    upper = (declared or "").upper()
    if "DATE" in upper or "TIME" in upper:
        return {"type": "date", "format": TEMPORAL_FORMAT, "ignore_malformed": True}
    if "INT" in upper or "BOOL" in upper:
        # SQLite stores booleans as 0/1 integers
        return {"type": "long", "ignore_malformed": True}
    if any(t in upper for t in ("REAL", "FLOA", "DOUB", "DEC", "NUM")):
        return {"type": "double", "ignore_malformed": True}
    if "CHAR" in upper:
        return {"type": "keyword"}
    if "BLOB" in upper:
        # Raw bytes are written as their text form, not base64
        return {"type": "keyword", "ignore_above": 256}
    return {"type": "text", "fields": {"keyword": {"type": "keyword", "ignore_above": 256}}}


@dataclass
class SchemeResult:
    """A relation with resolved key columns and its index mapping."""

    relation: Relation
    properties: dict[str, dict[str, Any]] = field(default_factory=dict)
    primary_key: list[str] = field(default_factory=list)
    cursor_kind: ValueKind = ValueKind.STRING


class SchemeBuilder:
    """
    Resolve a relation against the source table structure.

    Example:
        with SQLiteConnector(path) as source:
            result = SchemeBuilder(source).resolve(relation)
        await provision_index(es, result)
    """

    def __init__(self, source: SQLiteConnector) -> None:
        self.source = source

    def resolve(self, relation: Relation) -> SchemeResult:
        """
        Fill in key columns and build the field mapping.

        Explicit ``key_columns`` always win; the primary key is only a
        fallback. Raises RelationConfigError when no id can be composed.
        """
        table = relation.table
        columns = self.source.get_columns(table)
        if not columns:
            raise RelationConfigError(
                f"table ({table}) not found in source", relation.relation_id
            )

        names = {c.name for c in columns}
        primary_key = [c.name for c in columns if c.is_primary_key]

        # Every referenced column must exist in the table
        referenced = [relation.increment_column, *relation.columns, *relation.key_columns]
        if relation.primary_key_column:
            referenced.append(relation.primary_key_column)
        for column in referenced:
            if column not in names:
                raise RelationConfigError(
                    f"table ({table}) don't have column ({column})",
                    relation.relation_id,
                )

        updates: dict[str, Any] = {}
        if not relation.key_columns:
            if not primary_key:
                raise RelationConfigError(
                    f"table ({table}) has no primary key and no key_columns, "
                    "can't compose document ids",
                    relation.relation_id,
                )
            if len(primary_key) > 1:
                logger.warning("table (%s) has multi primary key(%s)", table, ",".join(primary_key))
            updates["key_columns"] = primary_key

        if relation.primary_key_column is None and len(primary_key) == 1:
            updates["primary_key_column"] = primary_key[0]

        if updates:
            relation = relation.model_copy(update=updates)

        properties: dict[str, dict[str, Any]] = {}
        if relation.scheme:
            for column in columns:
                name = relation.use_field(column.name)
                if name:
                    properties[name] = db_to_es_type(column.type)

        cursor_kind = next(c.kind for c in columns if c.name == relation.increment_column)
        return SchemeResult(
            relation=relation,
            properties=properties,
            primary_key=primary_key,
            cursor_kind=cursor_kind,
        )


async def provision_index(es: ElasticsearchClient, result: SchemeResult) -> bool:
    """
    Create the index (or extend its mapping) for a scheme-enabled relation.

    Returns True when the cluster was changed.
    """
    relation = result.relation
    if not relation.scheme or not result.properties:
        return False

    index = relation.use_index
    if await es.index_exists(index):
        await es.put_mapping(index, result.properties)
        logger.info("updated mapping of index(%s) with %d fields", index, len(result.properties))
    else:
        await es.create_index(index, result.properties)
        logger.info("created index(%s) with %d fields", index, len(result.properties))
    return True
