"""Source and target connectors for ES Sync."""

from es_sync.connectors.sqlite import SQLiteConnector
from es_sync.connectors.es_client import ElasticsearchClient

__all__ = ["SQLiteConnector", "ElasticsearchClient"]
