"""
Sync Scheduler - Periodic trigger for sync passes.

Registers one APScheduler job per relation, on a fixed interval or a
crontab expression. ``max_instances=1`` keeps a relation's passes from
overlapping, on top of the engine's own per-relation guard.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import datetime, timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from es_sync.config import Relation, RelationConfigError, Settings
from es_sync.connectors.es_client import ElasticsearchError
from es_sync.connectors.sqlite import SourceQueryError
from es_sync.core.engine import SyncEngine, SyncStats


logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Run sync passes for every relation on a schedule until stopped.

    Example:
        async with create_es_client(settings) as es:
            scheduler = SyncScheduler(settings, SyncEngine(settings, es))
            await scheduler.serve()   # until SIGINT / SIGTERM
    """

    def __init__(self, settings: Settings, engine: SyncEngine) -> None:
        self.settings = settings
        self.engine = engine
        self.scheduler = AsyncIOScheduler()
        self.last_results: dict[str, SyncStats] = {}
        self._shutdown = asyncio.Event()
        self._running: set[asyncio.Task[Any]] = set()

    def build_trigger(self) -> CronTrigger | IntervalTrigger:
        if self.settings.sync.cron:
            return CronTrigger.from_crontab(self.settings.sync.cron)
        return IntervalTrigger(seconds=self.settings.sync.interval_seconds)

    async def prepare(self) -> list[Relation]:
        """
        Resolve every relation; ones with configuration errors are left out.

        Relations whose source or cluster is unavailable stay scheduled: their
        passes retry resolution and provisioning.
        """
        ready: list[Relation] = []
        for relation in self.settings.relations:
            try:
                await self.engine.prepare(relation, provision=self.settings.sync.scheme_on_start)
            except RelationConfigError:
                continue
            except (ElasticsearchError, SourceQueryError, FileNotFoundError) as e:
                logger.warning(
                    "relation(%s) not prepared, retrying on first pass: %s",
                    relation.relation_id,
                    e,
                )
            ready.append(relation)
        return ready

    async def run_relation(self, relation: Relation) -> SyncStats:
        """Job body: one pass, tracked so shutdown can wait for it."""
        task = asyncio.current_task()
        if task is not None:
            self._running.add(task)
        try:
            stats = await self.engine.run_sync_pass(relation)
        finally:
            if task is not None:
                self._running.discard(task)
        self.last_results[relation.relation_id] = stats
        return stats

    def start(self, relations: list[Relation]) -> None:
        """Register jobs and start the scheduler."""
        trigger = self.build_trigger()
        for relation in relations:
            self.scheduler.add_job(
                self.run_relation,
                trigger=trigger,
                args=[relation],
                id=relation.relation_id,
                name=f"sync {relation.relation_id}",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
                next_run_time=datetime.now(timezone.utc),
            )
        self.scheduler.start()
        logger.info("Sync scheduler started for %d relations (%s)", len(relations), trigger)

    async def stop(self) -> None:
        """
        Stop triggering and wait for in-flight passes.

        Passes finish their current page (write + checkpoint) before ending.
        """
        self.engine.request_stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
        logger.info("Sync scheduler stopped")

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def serve(self) -> None:
        """Prepare, start, and block until a shutdown signal arrives."""
        relations = await self.prepare()
        if not relations:
            logger.error("No relation can be synced, nothing to schedule")
            return

        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                continue
            installed.append(sig)

        self.start(relations)
        try:
            await self._shutdown.wait()
        finally:
            await self.stop()
            for sig in installed:
                loop.remove_signal_handler(sig)
