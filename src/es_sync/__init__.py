"""ES Sync - incremental SQLite to Elasticsearch synchronization."""

__version__ = "1.0.0"
__author__ = "ES Sync Contributors"

from es_sync.config import Relation, Settings

__all__ = ["Relation", "Settings", "__version__"]
