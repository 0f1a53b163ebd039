"""Tests for the sync scheduler."""

import asyncio

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from es_sync.config import Relation
from es_sync.core.engine import PassStatus, SyncEngine
from es_sync.core.scheduler import SyncScheduler

from conftest import FakeIndex, FlakyAdmin


class TestTrigger:
    @pytest.mark.asyncio
    async def test_interval_by_default(self, numeric_db, make_settings, users_relation) -> None:
        settings = make_settings(numeric_db, users_relation)
        settings.sync.interval_seconds = 15
        scheduler = SyncScheduler(settings, SyncEngine(settings, FakeIndex()))

        trigger = scheduler.build_trigger()
        assert isinstance(trigger, IntervalTrigger)
        assert trigger.interval.total_seconds() == 15

    @pytest.mark.asyncio
    async def test_cron_overrides_interval(self, numeric_db, make_settings, users_relation) -> None:
        settings = make_settings(numeric_db, users_relation)
        settings.sync.cron = "*/5 * * * *"
        scheduler = SyncScheduler(settings, SyncEngine(settings, FakeIndex()))

        assert isinstance(scheduler.build_trigger(), CronTrigger)


class TestScheduler:
    @pytest.mark.asyncio
    async def test_prepare_skips_broken_relations(self, numeric_db, make_settings, users_relation) -> None:
        broken = Relation(table="missing", increment_column="id")
        settings = make_settings(numeric_db, users_relation, broken)
        engine = SyncEngine(settings, FakeIndex())

        ready = await SyncScheduler(settings, engine).prepare()

        assert ready == [users_relation]
        assert broken.relation_id in engine.disabled

    @pytest.mark.asyncio
    async def test_prepare_keeps_relations_when_cluster_down(
        self, numeric_db, make_settings
    ) -> None:
        """Provisioning failures leave the relation scheduled; its passes retry."""
        relation = Relation(table="users", increment_column="id", scheme=True)
        settings = make_settings(numeric_db, relation)
        settings.sync.scheme_on_start = True
        index = FlakyAdmin(down=True)
        scheduler = SyncScheduler(settings, SyncEngine(settings, index))

        ready = await scheduler.prepare()
        assert ready == [relation]

        index.down = False
        stats = await scheduler.run_relation(relation)

        assert stats.status is PassStatus.COMPLETED
        assert "users" in index.created

    @pytest.mark.asyncio
    async def test_run_relation_records_result(self, numeric_db, make_settings, users_relation) -> None:
        settings = make_settings(numeric_db, users_relation)
        scheduler = SyncScheduler(settings, SyncEngine(settings, FakeIndex()))

        stats = await scheduler.run_relation(users_relation)

        assert stats.status is PassStatus.COMPLETED
        assert scheduler.last_results[users_relation.relation_id] is stats

    @pytest.mark.asyncio
    async def test_start_registers_one_job_per_relation(
        self, numeric_db, make_settings, users_relation
    ) -> None:
        settings = make_settings(numeric_db, users_relation)
        scheduler = SyncScheduler(settings, SyncEngine(settings, FakeIndex()))

        scheduler.start([users_relation])
        try:
            job = scheduler.scheduler.get_job(users_relation.relation_id)
            assert job is not None
            assert job.max_instances == 1
        finally:
            await scheduler.stop()

        assert scheduler.engine.stopping

    @pytest.mark.asyncio
    async def test_serve_runs_until_shutdown(self, numeric_db, make_settings, users_relation) -> None:
        """The first pass runs immediately; shutdown waits for it."""
        settings = make_settings(numeric_db, users_relation)
        index = FakeIndex()
        scheduler = SyncScheduler(settings, SyncEngine(settings, index))

        serving = asyncio.create_task(scheduler.serve())
        for _ in range(100):
            if scheduler.last_results:
                break
            await asyncio.sleep(0.05)

        scheduler.request_shutdown()
        await asyncio.wait_for(serving, timeout=5)

        assert scheduler.last_results[users_relation.relation_id].documents_written == 5
        assert len(index.documents("users")) == 5
        assert not scheduler.scheduler.running

    @pytest.mark.asyncio
    async def test_serve_without_relations_returns(self, numeric_db, make_settings) -> None:
        broken = Relation(table="missing", increment_column="id")
        settings = make_settings(numeric_db, broken)
        scheduler = SyncScheduler(settings, SyncEngine(settings, FakeIndex()))

        await asyncio.wait_for(scheduler.serve(), timeout=5)

        assert scheduler.last_results == {}
