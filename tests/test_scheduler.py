"""Tests for the auto-sync scheduler."""

from unittest.mock import AsyncMock, Mock

import pytest

from debrid_connector.api_clients.errors import SyncConflict
from debrid_connector.config.schema import SyncConfiguration
from debrid_connector.scheduler import AutoSyncScheduler


class TestAutoSyncScheduler:
    """Interval job management."""

    def setup_method(self):
        self.engine = Mock()
        self.engine.get_configuration.return_value = SyncConfiguration(auto_sync=True, sync_interval_minutes=15)
        self.engine.start_sync = AsyncMock(return_value=Mock(id="sync_1_abc"))
        self.scheduler = AutoSyncScheduler(self.engine, "acct")

    @pytest.mark.asyncio
    async def test_start_schedules_interval_job(self):
        self.scheduler.start()

        job = self.scheduler.job
        assert self.scheduler.running
        assert job is not None
        assert job.trigger.interval.total_seconds() == 15 * 60
        self.scheduler.stop()
        assert not self.scheduler.running

    @pytest.mark.asyncio
    async def test_disabled_auto_sync_removes_job(self):
        self.scheduler.start()
        self.engine.get_configuration.return_value = SyncConfiguration(auto_sync=False)

        assert self.scheduler.reschedule() is None
        assert self.scheduler.job is None
        self.scheduler.stop()

    @pytest.mark.asyncio
    async def test_reschedule_applies_new_interval(self):
        self.scheduler.start()
        self.engine.get_configuration.return_value = SyncConfiguration(auto_sync=True, sync_interval_minutes=60)

        job = self.scheduler.reschedule()

        assert job.trigger.interval.total_seconds() == 3600
        assert len(self.scheduler.scheduler.get_jobs()) == 1
        self.scheduler.stop()

    @pytest.mark.asyncio
    async def test_run_once_starts_sync(self):
        assert await self.scheduler.run_once()
        self.engine.start_sync.assert_awaited_once_with("acct")

    @pytest.mark.asyncio
    async def test_run_once_skips_when_job_in_progress(self):
        self.engine.start_sync.side_effect = SyncConflict("busy")

        assert not await self.scheduler.run_once()
