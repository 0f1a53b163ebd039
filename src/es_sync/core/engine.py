"""
Sync Engine - Incremental pass orchestration.

One pass for one relation walks the state machine

    COUNTING -> PAGING -> RESOLVING_TIES -> PAGING ... -> DONE

reading the checkpoint, paging rows strictly after it, writing each page to
the index and only then advancing the checkpoint. Because the increment
column may hold duplicates, a page that ends inside a group of equal values
is followed by offset pages over ``increment = boundary`` before the cursor
moves past the boundary.

Coordinates:
- SQLite connector for the source table (one connection per pass)
- Query planner and document mapper for the relation
- Elasticsearch client for bulk upserts
- Checkpoint store for resume
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from es_sync.config import Relation, RelationConfigError, Settings
from es_sync.connectors.es_client import BulkResult, ElasticsearchClient, ElasticsearchError
from es_sync.connectors.sqlite import Row, SourceQueryError, SQLiteConnector, ValueKind
from es_sync.core.checkpoint import CheckpointStore
from es_sync.core.cursor import format_cursor, is_numeric
from es_sync.core.mapper import DocumentMapper
from es_sync.core.planner import QueryPlanner, Statement
from es_sync.core.scheme import SchemeBuilder, SchemeResult, provision_index


logger = logging.getLogger(__name__)


class PassState(str, Enum):
    """Position of a pass in the sync state machine."""

    COUNTING = "counting"
    PAGING = "paging"
    RESOLVING_TIES = "resolving_ties"
    DONE = "done"


class PassStatus(str, Enum):
    """How a pass ended."""

    PENDING = "pending"
    COMPLETED = "completed"
    UP_TO_DATE = "up_to_date"
    STOPPED = "stopped"  # soft stop: nothing accepted, blank cursor or shutdown
    FAILED = "failed"
    SKIPPED = "skipped"  # another pass of the relation is running
    DISABLED = "disabled"


@dataclass
class SyncStats:
    """Statistics for one sync pass."""

    relation: str
    status: PassStatus = PassStatus.PENDING
    state: PassState = PassState.COUNTING
    pending_rows: int = 0
    pages: int = 0
    rows_fetched: int = 0
    documents_written: int = 0
    write_calls: int = 0
    tie_rounds: int = 0
    checkpoint_before: str | None = None
    checkpoint_after: str | None = None
    start_time: float = 0.0
    end_time: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        """Duration in seconds."""
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        if self.start_time:
            return time.time() - self.start_time
        return 0.0

    @property
    def rows_per_second(self) -> float:
        """Processing rate."""
        duration = self.duration_seconds
        if duration > 0:
            return self.documents_written / duration
        return 0.0

    @property
    def cursor(self) -> str | None:
        """Checkpoint in effect after the pass."""
        return self.checkpoint_after or self.checkpoint_before


SourceFactory = Callable[[], SQLiteConnector]


class SyncEngine:
    """
    Incremental sync of configured relations into the index.

    Passes for different relations may run concurrently; a pass for a
    relation that is already being synced returns immediately as SKIPPED.

    Example:
        async with create_es_client(settings) as es:
            engine = SyncEngine(settings, es)
            stats = await engine.run_sync_pass(settings.relations[0])
            print(stats.documents_written, stats.cursor)
    """

    def __init__(
        self,
        settings: Settings,
        writer: ElasticsearchClient,
        checkpoints: CheckpointStore | None = None,
        source_factory: SourceFactory | None = None,
    ) -> None:
        """
        Initialize sync engine.

        Args:
            settings: Application settings
            writer: Target store client (anything with ``bulk_upsert``)
            checkpoints: Checkpoint store (default: sync.checkpoint_dir)
            source_factory: Opens a source connector per pass
        """
        self.settings = settings
        self.writer = writer
        self.checkpoints = checkpoints or CheckpointStore(settings.sync.checkpoint_dir)
        self._source_factory = source_factory or self._open_source
        self._locks: dict[str, asyncio.Lock] = {}
        self._schemes: dict[str, SchemeResult] = {}
        self._provision_pending: set[str] = set()
        self._disabled: dict[str, str] = {}
        self._stop = asyncio.Event()

    def _open_source(self) -> SQLiteConnector:
        if self.settings.source.path is None:
            raise RelationConfigError("source.path is not configured")
        return SQLiteConnector(
            self.settings.source.path,
            timeout=self.settings.source.timeout_seconds,
        )

    @property
    def disabled(self) -> dict[str, str]:
        """Relations skipped because of a configuration error, with reason."""
        return dict(self._disabled)

    def request_stop(self) -> None:
        """Let in-flight passes finish their current page, then stop."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    # -------------------------------------------------------------------------
    # Scheme
    # -------------------------------------------------------------------------
    async def prepare(self, relation: Relation, provision: bool = False) -> SchemeResult:
        """
        Resolve key columns (and optionally provision the index) for a relation.

        A configuration error disables the relation for all later passes.
        When provisioning fails (cluster unreachable) the error is raised and
        every later pass retries it before writing.
        """
        if provision:
            self._provision_pending.add(relation.relation_id)

        source = self._source_factory()
        try:
            result = await self._resolve(relation, source)
        finally:
            source.close()

        if provision:
            await self._provision(result)
        return result

    async def _provision(self, result: SchemeResult) -> None:
        await provision_index(self.writer, result)
        self._provision_pending.discard(result.relation.relation_id)

    async def _resolve(self, relation: Relation, source: SQLiteConnector) -> SchemeResult:
        rid = relation.relation_id
        try:
            result = await asyncio.to_thread(SchemeBuilder(source).resolve, relation)
        except RelationConfigError as e:
            self._disabled[rid] = str(e)
            logger.error("relation(%s) disabled: %s", rid, e)
            raise
        self._schemes[rid] = result
        return result

    # -------------------------------------------------------------------------
    # Passes
    # -------------------------------------------------------------------------
    async def run_all(self, relations: Iterable[Relation]) -> list[SyncStats]:
        """One concurrent pass per relation."""
        return list(await asyncio.gather(*(self.run_sync_pass(r) for r in relations)))

    async def run_sync_pass(self, relation: Relation) -> SyncStats:
        """
        Run one incremental pass for ``relation``.

        Never raises for source, target or checkpoint failures: the outcome
        is reported in the returned SyncStats and the checkpoint is left at
        the last fully written page.
        """
        rid = relation.relation_id
        stats = SyncStats(relation=rid)
        stats.start_time = time.time()

        if rid in self._disabled:
            stats.status = PassStatus.DISABLED
            stats.errors.append(self._disabled[rid])
            stats.end_time = time.time()
            return stats

        lock = self._locks.setdefault(rid, asyncio.Lock())
        if lock.locked():
            logger.warning("relation(%s) pass already running, skipped", rid)
            stats.status = PassStatus.SKIPPED
            stats.end_time = time.time()
            return stats

        async with lock:
            source: SQLiteConnector | None = None
            try:
                source = self._source_factory()
                await self._run(relation, source, stats)
            except RelationConfigError as e:
                stats.status = PassStatus.FAILED
                stats.errors.append(str(e))
            except SourceQueryError as e:
                # Checkpoint untouched: the next pass retries from the same cursor
                logger.warning("relation(%s) source query failed: %s", rid, e)
                stats.status = PassStatus.FAILED
                stats.errors.append(str(e))
            except FileNotFoundError as e:
                logger.warning("relation(%s) source unavailable: %s", rid, e)
                stats.status = PassStatus.FAILED
                stats.errors.append(str(e))
            except ElasticsearchError as e:
                logger.warning("relation(%s) index provisioning failed: %s", rid, e)
                stats.status = PassStatus.FAILED
                stats.errors.append(str(e))
            finally:
                if source is not None:
                    source.close()
                stats.state = PassState.DONE
                stats.end_time = time.time()

        logger.info(
            "relation(%s) pass %s: pages(%d) rows(%d) written(%d) ties(%d) cursor(%s) time(%.0fms)",
            rid,
            stats.status.value,
            stats.pages,
            stats.rows_fetched,
            stats.documents_written,
            stats.tie_rounds,
            stats.cursor,
            stats.duration_seconds * 1000,
            extra={"relation": rid, "cursor": stats.cursor},
        )
        return stats

    async def _run(self, relation: Relation, source: SQLiteConnector, stats: SyncStats) -> None:
        rid = relation.relation_id
        scheme = self._schemes.get(rid)
        if scheme is None:
            scheme = await self._resolve(relation, source)
        if rid in self._provision_pending:
            await self._provision(scheme)
        resolved = scheme.relation
        unique_cursor = scheme.cursor_kind is ValueKind.NUMBER

        planner = QueryPlanner(
            resolved,
            page_limit=self.settings.sync.page_limit,
            deep_offset_threshold=self.settings.sync.deep_offset_threshold,
        )
        mapper = DocumentMapper(resolved)

        # COUNTING
        stats.state = PassState.COUNTING
        cursor = self.checkpoints.read(rid)
        stats.checkpoint_before = cursor

        stats.pending_rows = await self._count(source, planner.count_pending(cursor))
        if stats.pending_rows <= 0:
            stats.status = PassStatus.UP_TO_DATE
            return

        stats.status = PassStatus.COMPLETED
        while True:
            if self.stopping:
                logger.info("relation(%s) stop requested, ending pass at cursor(%s)", rid, cursor)
                stats.status = PassStatus.STOPPED
                return

            # PAGING
            stats.state = PassState.PAGING
            rows = await self._fetch(source, planner.fetch_page(cursor))
            if not rows:
                return
            stats.pages += 1
            stats.rows_fetched += len(rows)

            accepted = await self._write(resolved, mapper, rows, stats)
            if accepted == 0:
                self._soft_stop(stats, f"no documents accepted for page after cursor({cursor})")
                return

            boundary = format_cursor(rows[-1].get(resolved.cursor_key))
            if boundary is None:
                self._soft_stop(stats, f"last row has blank {resolved.cursor_key}, can't advance")
                return

            # RESOLVING_TIES: a numeric cursor (auto increment id) is unique
            if not (unique_cursor and is_numeric(boundary)):
                stats.state = PassState.RESOLVING_TIES
                if not await self._resolve_ties(source, planner, mapper, resolved, boundary, stats):
                    self._soft_stop(stats, f"rows equal to boundary({boundary}) not fully written")
                    return

            if self.checkpoints.write(rid, boundary):
                stats.checkpoint_after = boundary
            else:
                stats.errors.append(f"checkpoint({boundary}) not persisted")
            cursor = boundary

            if len(rows) < planner.limit:
                return

    async def _resolve_ties(
        self,
        source: SQLiteConnector,
        planner: QueryPlanner,
        mapper: DocumentMapper,
        relation: Relation,
        boundary: str,
        stats: SyncStats,
    ) -> bool:
        """
        Write every row whose increment equals ``boundary``.

        Rows already written by the keyset page are written again (same id,
        same fields). Returns False when the index accepted nothing.
        """
        total = await self._count(source, planner.count_equals(boundary))
        for page_index in range(planner.loop_count(total)):
            rows = await self._fetch(source, planner.fetch_equals(boundary, page_index))
            if not rows:
                return True
            stats.tie_rounds += 1
            stats.rows_fetched += len(rows)

            if await self._write(relation, mapper, rows, stats) == 0:
                return False
            if len(rows) < planner.limit:
                return True
        return True

    # -------------------------------------------------------------------------
    # I/O
    # -------------------------------------------------------------------------
    async def _count(self, source: SQLiteConnector, statement: Statement) -> int:
        start = time.perf_counter()
        count = await asyncio.to_thread(source.count, statement.sql, statement.params)
        logger.info(
            "count sql(%s) time(%.0fms) return(%d)",
            statement,
            (time.perf_counter() - start) * 1000,
            count,
        )
        return count

    async def _fetch(self, source: SQLiteConnector, statement: Statement) -> list[Row]:
        start = time.perf_counter()
        rows = await asyncio.to_thread(source.fetch, statement.sql, statement.params)
        logger.debug(
            "sql(%s) time(%.0fms) return size(%d)",
            statement,
            (time.perf_counter() - start) * 1000,
            len(rows),
        )
        return rows

    async def _write(
        self,
        relation: Relation,
        mapper: DocumentMapper,
        rows: list[Row],
        stats: SyncStats,
    ) -> int:
        documents = mapper.map_rows(rows)
        if not documents:
            logger.warning(
                "relation(%s) mapped no documents from %d rows", relation.relation_id, len(rows)
            )
            return 0

        result: BulkResult = await self.writer.bulk_upsert(
            relation.use_index, relation.type, documents
        )
        stats.write_calls += 1
        stats.documents_written += result.accepted
        if not result.success:
            stats.errors.append(result.error or "bulk write failed")

        logger.info(
            "batch to(%s/%s) time(%.0fms) size(%d) success(%d)",
            relation.use_index,
            relation.type,
            result.duration_ms,
            len(documents),
            result.accepted,
            extra={"relation": relation.relation_id, "index": relation.use_index},
        )
        return result.accepted

    def _soft_stop(self, stats: SyncStats, reason: str) -> None:
        logger.warning("relation(%s) pass stopped: %s", stats.relation, reason)
        stats.status = PassStatus.STOPPED
        stats.errors.append(reason)


def summarize(results: Iterable[SyncStats]) -> dict[str, Any]:
    """Totals over several passes, for display."""
    results = list(results)
    return {
        "relations": len(results),
        "failed": sum(1 for s in results if s.status in (PassStatus.FAILED, PassStatus.DISABLED)),
        "stopped": sum(1 for s in results if s.status is PassStatus.STOPPED),
        "rows_fetched": sum(s.rows_fetched for s in results),
        "documents_written": sum(s.documents_written for s in results),
        "duration": max((s.duration_seconds for s in results), default=0.0),
    }
