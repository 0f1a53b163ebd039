"""
ES Sync Configuration System.

This module provides a type-safe configuration system using Pydantic.
Settings can be loaded from:
1. Environment variables (prefixed with ES_SYNC_)
2. Config file (TOML or JSON)
3. CLI arguments (highest priority)

Example usage:
    from es_sync.config import Settings

    # Load from environment
    settings = Settings()

    # Or from a config file with relations
    settings = Settings.from_file("es-sync.toml")
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DOC_TYPE = "_doc"


class RelationConfigError(Exception):
    """Raised when a relation cannot be synchronized as configured."""

    def __init__(self, message: str, relation_id: str | None = None) -> None:
        super().__init__(message)
        self.relation_id = relation_id


def to_camel_case(column: str) -> str:
    """Default field naming: ``user_name`` -> ``userName``."""
    parts = [p for p in column.split("_") if p]
    if not parts:
        return column
    head, *rest = parts
    return head[:1].lower() + head[1:] + "".join(p[:1].upper() + p[1:] for p in rest)


def _escape_id_part(part: str) -> str:
    return part.replace("%", "%25").replace("-", "%2D")


class Relation(BaseModel):
    """
    Mapping between one source table and one target index.

    A relation is loaded once at startup and is read-only afterwards. The
    scheme step returns an updated copy (``model_copy``) when it has to fill
    in inferred key columns.
    """

    model_config = ConfigDict(frozen=True)

    table: str = Field(description="Source table name")
    index: str = Field(
        default="",
        description="Target index name (defaults to the table name)",
    )
    type: str = Field(
        default=DEFAULT_DOC_TYPE,
        description="Document kind inside the index",
    )
    increment_column: str = Field(
        description="Ordering column used as the sync cursor (need not be unique)",
    )
    increment_column_alias: str | None = Field(
        default=None,
        description="Key under which the cursor appears in fetched rows",
    )
    key_columns: list[str] = Field(
        default_factory=list,
        description="Columns composing the document id (empty = primary key)",
    )
    mapping: dict[str, str] = Field(
        default_factory=dict,
        description="Column -> field name overrides",
    )
    ignore_columns: list[str] = Field(
        default_factory=list,
        description="Columns left out of the document",
    )
    columns: list[str] = Field(
        default_factory=list,
        description="Explicit select list (empty = all columns)",
    )
    id_prefix: str = ""
    id_suffix: str = ""
    limit: int | None = Field(
        default=None,
        ge=1,
        description="Rows per fetch (None = sync.page_limit)",
    )
    primary_key_column: str | None = Field(
        default=None,
        description="Single-column primary key used for deep offset joins",
    )
    deep_offset_threshold: int | None = Field(
        default=None,
        ge=0,
        description="Offset above which the join rewrite is used",
    )
    scheme: bool = Field(
        default=False,
        description="Create the index mapping from the table structure",
    )

    @field_validator("table", "increment_column")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @property
    def use_index(self) -> str:
        """Target index, falling back to the table name."""
        return self.index or self.table

    @property
    def relation_id(self) -> str:
        """
        Stable identity used for checkpoints, locks and log lines.

        Dashes inside a part are escaped so ``table-index-type`` stays
        unambiguous (``a-b``/``c`` and ``a``/``b-c`` differ).
        """
        return "-".join(_escape_id_part(p) for p in (self.table, self.use_index, self.type))

    @property
    def cursor_key(self) -> str:
        """Row key holding the increment value."""
        return self.increment_column_alias or self.increment_column

    def use_field(self, column: str) -> str:
        """Target field name for a column, or "" when it is ignored."""
        if column in self.ignore_columns:
            return ""
        if column in self.mapping:
            return self.mapping[column]
        return to_camel_case(column)

    def page_limit(self, default: int) -> int:
        return self.limit or default

    def offset_threshold(self, default: int) -> int:
        if self.deep_offset_threshold is None:
            return default
        return self.deep_offset_threshold


class SourceConfig(BaseModel):
    """Source database configuration."""

    path: Path | None = Field(
        default=None,
        description="Path to the source SQLite database file",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="How long to wait on a locked database",
    )


class ElasticsearchConfig(BaseModel):
    """Target document store connection."""

    url: str = Field(
        default="http://localhost:9200",
        description="Base URL of the cluster",
    )
    username: str | None = None
    password: SecretStr | None = None
    api_key: SecretStr | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=1, le=10)
    verify_certs: bool = True

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class SyncOptions(BaseModel):
    """Options controlling sync behavior."""

    page_limit: int = Field(
        default=1000,
        ge=1,
        le=10_000,
        description="Default rows per fetch for relations without a limit",
    )
    deep_offset_threshold: int = Field(
        default=10_000,
        ge=0,
        description="Offset above which equals-pages use a primary key join",
    )
    checkpoint_dir: Path = Field(
        default=Path(".es-sync"),
        description="Directory holding one checkpoint file per relation",
    )
    interval_seconds: int = Field(
        default=60,
        ge=1,
        description="Fixed schedule for `run` when no cron is given",
    )
    cron: str | None = Field(
        default=None,
        description="Crontab expression for `run` (overrides interval_seconds)",
    )
    scheme_on_start: bool = Field(
        default=True,
        description="Resolve key columns and provision indexes before the first pass",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path (None = console only)",
    )
    format: str = Field(
        default="rich",
        pattern="^(rich|json|simple)$",
        description="Log format: rich (colored), json, or simple",
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Max log file size before rotation",
    )
    backup_count: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of rotated log files to keep",
    )


class Settings(BaseSettings):
    """
    Main settings class for ES Sync.

    Settings are loaded in this priority (highest first):
    1. Explicit constructor arguments
    2. Environment variables (ES_SYNC_* prefix)
    3. Config file (if specified)
    4. Defaults

    Example:
        export ES_SYNC_SOURCE__PATH="./shop.db"
        export ES_SYNC_ELASTICSEARCH__URL="http://es:9200"
        settings = Settings()
    """

    model_config = SettingsConfigDict(
        env_prefix="ES_SYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    source: SourceConfig = Field(default_factory=SourceConfig)
    elasticsearch: ElasticsearchConfig = Field(default_factory=ElasticsearchConfig)
    sync: SyncOptions = Field(default_factory=SyncOptions)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    relations: list[Relation] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_relations(self) -> Self:
        seen: set[str] = set()
        for relation in self.relations:
            if relation.relation_id in seen:
                raise ValueError(f"duplicate relation: {relation.relation_id}")
            seen.add(relation.relation_id)
        return self

    @classmethod
    def from_file(cls, path: Path | str) -> "Settings":
        """Load settings from a TOML or JSON config file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()

        if path.suffix in (".toml", ".tml"):
            import tomllib
            data = tomllib.loads(content)
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")

        return cls.model_validate(data)

    def to_file(self, path: Path | str) -> None:
        """Save current settings to a JSON config file, secrets redacted."""
        path = Path(path)
        data = self.model_dump(mode="json", exclude_none=True)

        es = data.get("elasticsearch", {})
        for secret in ("password", "api_key"):
            if secret in es:
                es[secret] = "***REDACTED***"

        path.write_text(json.dumps(data, indent=2))

    def get_relation(self, name: str) -> Relation | None:
        """Find a relation by table name or relation id."""
        for relation in self.relations:
            if name in (relation.table, relation.relation_id):
                return relation
        return None

    def validate_settings(self) -> list[str]:
        """Validate that a sync can run. Returns list of errors."""
        errors = []
        if self.source.path is None:
            errors.append("source.path is required")
        elif not self.source.path.exists():
            errors.append(f"source database not found: {self.source.path}")
        if not self.relations:
            errors.append("at least one relation is required")
        if self.elasticsearch.username and self.elasticsearch.api_key:
            errors.append("use either elasticsearch.username or elasticsearch.api_key, not both")
        return errors


def load_settings(
    config_file: Path | str | None = None,
    **overrides: Any,
) -> Settings:
    """
    Load settings with optional config file and overrides.

    Args:
        config_file: Optional path to config file
        **overrides: Settings to override (highest priority)

    Returns:
        Configured Settings instance
    """
    if config_file:
        settings = Settings.from_file(config_file)
        if overrides:
            data = settings.model_dump()
            data.update(overrides)
            return Settings.model_validate(data)
        return settings
    return Settings(**overrides)
