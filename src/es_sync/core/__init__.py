"""Core sync engine components for ES Sync."""

from es_sync.core.engine import SyncEngine, SyncStats
from es_sync.core.checkpoint import CheckpointStore
from es_sync.core.planner import QueryPlanner
from es_sync.core.mapper import DocumentMapper
from es_sync.core.scheme import SchemeBuilder

__all__ = [
    "SyncEngine",
    "SyncStats",
    "CheckpointStore",
    "QueryPlanner",
    "DocumentMapper",
    "SchemeBuilder",
]
