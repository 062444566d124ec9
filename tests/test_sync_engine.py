"""Tests for the sync engine."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from debrid_connector.api_clients.errors import (
    HttpServerError,
    PersistenceError,
    SyncCancelled,
    SyncConflict,
    SyncError,
)
from debrid_connector.config.schema import SyncConfiguration
from debrid_connector.core.sync_engine import FileIndex, JobControl, JobSignal, SyncEngine, SyncJobStatus
from debrid_connector.database.models import FileIndexEntry

from conftest import NOW, InMemoryStore, make_remote_file


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestSyncEngine:
    """Job body: listing, classification and bookkeeping."""

    def setup_method(self):
        self.store = InMemoryStore()
        self.service = Mock()
        self.service.get_files = AsyncMock(return_value=[])
        self.sleep = AsyncMock()
        self.engine = SyncEngine(
            self.service,
            self.store,
            SyncConfiguration(),
            batch_pause_seconds=0,
            sleep=self.sleep
        )

    def pages(self, *pages):
        self.service.get_files.side_effect = list(pages)

    @pytest.mark.asyncio
    async def test_duplicate_hash_collapses_into_first_file(self):
        self.pages([make_remote_file("a", "h1"), make_remote_file("b", "H1")])

        status = await self.engine.start_sync("acct")
        result = await self.engine.wait()

        assert status.status == SyncJobStatus.RUNNING
        assert result.success
        assert result.files_added == 1
        assert result.duplicates_found == 1
        assert result.files_updated == 0
        assert result.files_processed == 2
        assert len(self.store.files) == 1

        final = self.engine.get_status()
        assert final.status == SyncJobStatus.COMPLETED
        assert final.progress.percentage == 100
        assert final.last_sync_timestamp == status.timing.started
        assert self.store.last_sync["acct"] == status.timing.started
        assert [run.status for run in self.store.runs] == ["completed"]

    @pytest.mark.asyncio
    async def test_duplicate_detection_disabled_inserts_both(self):
        self.pages([make_remote_file("a", "h1"), make_remote_file("b", "h1")])

        await self.engine.start_sync("acct", {"enable_duplicate_detection": False})
        result = await self.engine.wait()

        assert result.files_added == 2
        assert result.duplicates_found == 0

    @pytest.mark.asyncio
    async def test_known_remote_id_is_updated(self):
        self.store.seed("acct", "a", "h1")
        self.pages([make_remote_file("a", "h1")])

        await self.engine.start_sync("acct")
        result = await self.engine.wait()

        assert result.files_updated == 1
        assert result.files_added == 0

    @pytest.mark.asyncio
    async def test_pagination_stops_on_short_page(self):
        full_page = [make_remote_file(f"f{i}", f"hash{i}") for i in range(25)]
        self.pages(full_page, [make_remote_file("last", "hash-last")])

        await self.engine.start_sync("acct")
        result = await self.engine.wait()

        assert result.files_added == 26
        pages = [call.kwargs["page"] for call in self.service.get_files.await_args_list]
        assert pages == [1, 2]
        assert self.service.get_files.await_args.kwargs["per_page"] == 25

    @pytest.mark.asyncio
    async def test_full_sync_removes_orphans(self):
        self.store.seed("acct", "gone", "old")
        self.pages([make_remote_file("a", "h1")])

        await self.engine.start_sync("acct")
        result = await self.engine.wait()

        assert result.files_deleted == 1
        assert [row["remote_id"] for row in self.store.files.values()] == ["a"]

    @pytest.mark.asyncio
    async def test_incremental_sync_filters_by_modified_time(self):
        self.store.last_sync["acct"] = NOW - timedelta(hours=1)
        self.store.seed("acct", "gone", "old")
        self.pages([
            make_remote_file("fresh", "h1", modified_at=NOW),
            make_remote_file("stale", "h2", modified_at=NOW - timedelta(hours=2)),
            make_remote_file("unknown", "h3", modified_at=None),
        ])

        await self.engine.start_sync("acct")
        result = await self.engine.wait()

        assert result.files_processed == 1
        assert result.files_added == 1
        assert result.files_deleted == 0

    @pytest.mark.asyncio
    async def test_failed_page_is_retried_with_backoff(self):
        self.pages(HttpServerError("boom", status=503), [make_remote_file("a", "h1")])

        await self.engine.start_sync("acct")
        result = await self.engine.wait()

        assert result.files_added == 1
        assert result.errors == []
        assert self.sleep.await_args_list[0].args[0] == 2

    @pytest.mark.asyncio
    async def test_exhausted_page_retries_keep_collected_files(self):
        self.store.seed("acct", "kept", "old")
        self.service.get_files.side_effect = HttpServerError("boom", status=503)

        await self.engine.start_sync("acct", {"max_retries": 1})
        result = await self.engine.wait()

        assert result.success
        assert self.service.get_files.await_count == 2
        assert len(result.errors) == 1
        assert result.files_deleted == 0
        assert self.engine.get_status().stats.errors == 1

    @pytest.mark.asyncio
    async def test_per_file_failures_are_recorded(self):
        self.store.fail_inserts_for = {"b"}
        self.pages([make_remote_file("a", "h1"), make_remote_file("b", "h2")])

        await self.engine.start_sync("acct")
        result = await self.engine.wait()

        assert result.success
        assert result.files_added == 1
        assert result.files_processed == 2
        assert result.errors == ["Failed to insert file b.mkv"]

    @pytest.mark.asyncio
    async def test_store_exception_on_one_file_does_not_stop_job(self):
        self.store.seed("acct", "a", "h1")
        self.store.update_file = AsyncMock(side_effect=RuntimeError("disk full"))
        self.pages([make_remote_file("a", "h1"), make_remote_file("b", "h2")])

        await self.engine.start_sync("acct")
        result = await self.engine.wait()

        assert result.files_added == 1
        assert result.errors == ["Error processing a.mkv: disk full"]

    @pytest.mark.asyncio
    async def test_fatal_store_error_finalizes_as_error(self):
        self.store.list_file_index = AsyncMock(side_effect=PersistenceError("database unavailable"))
        self.pages([make_remote_file("a", "h1")])

        await self.engine.start_sync("acct")
        result = await self.engine.wait()

        assert not result.success
        assert result.errors[0] == "database unavailable"
        status = self.engine.get_status()
        assert status.status == SyncJobStatus.ERROR
        assert status.error == "database unavailable"
        assert "acct" not in self.store.last_sync
        assert [run.status for run in self.store.runs] == ["error"]

    @pytest.mark.asyncio
    async def test_wait_without_job(self):
        with pytest.raises(SyncError):
            await self.engine.wait()


class TestSyncJobControl:
    """Conflicts, pause, resume, cancel and observers."""

    def setup_method(self):
        self.store = InMemoryStore()
        self.service = Mock()
        self.service.get_files = AsyncMock(return_value=[
            make_remote_file("a", "h1"),
            make_remote_file("b", "h2"),
            make_remote_file("c", "h3"),
        ])
        self.clock = ManualClock()
        self.engine = SyncEngine(
            self.service,
            self.store,
            batch_pause_seconds=0,
            sleep=AsyncMock(),
            clock=self.clock
        )

    @pytest.mark.asyncio
    async def test_second_start_conflicts(self):
        await self.engine.start_sync("acct")

        with pytest.raises(SyncConflict):
            await self.engine.start_sync("acct")

        await self.engine.wait()

    @pytest.mark.asyncio
    async def test_paused_job_does_no_work_until_resumed(self):
        await self.engine.start_sync("acct")
        assert self.engine.pause_sync()
        await settle()

        status = self.engine.get_status()
        assert status.status == SyncJobStatus.PAUSED
        assert status.progress.current_label == "Sync paused"
        self.service.get_files.assert_not_awaited()

        with pytest.raises(SyncConflict):
            await self.engine.start_sync("acct")

        assert self.engine.resume_sync()
        result = await self.engine.wait()
        assert result.files_processed == 3

    @pytest.mark.asyncio
    async def test_pause_freezes_processed_count(self):
        paused = []

        def pause_after_first(status):
            if not paused and status.progress.processed == 1:
                paused.append(status.id)
                self.engine.pause_sync()

        self.engine.subscribe(pause_after_first)
        await self.engine.start_sync("acct")
        await settle()

        assert self.engine.get_status().progress.processed == 1
        await settle()
        assert self.engine.get_status().progress.processed == 1

        self.engine.resume_sync()
        result = await self.engine.wait()
        assert result.files_processed == 3

    @pytest.mark.asyncio
    async def test_cancel_frees_slot_and_discards_job(self):
        first = await self.engine.start_sync("acct")
        self.engine.pause_sync()

        assert self.engine.cancel_sync()
        status = self.engine.get_status()
        assert status.status == SyncJobStatus.IDLE
        assert status.progress.current_label == "Sync cancelled"
        assert status.timing.ended is not None

        with pytest.raises(SyncCancelled):
            await self.engine.wait()
        assert self.store.runs == []
        assert self.store.files == {}

        second = await self.engine.start_sync("acct")
        assert second.id != first.id
        result = await self.engine.wait()
        assert result.files_added == 3

    @pytest.mark.asyncio
    async def test_paused_time_does_not_count_toward_timeout(self):
        await self.engine.start_sync("acct", {"sync_timeout_ms": 30_000})
        assert self.engine.pause_sync()
        await settle()

        self.clock.now += 31
        await settle()

        assert self.engine.get_status().status == SyncJobStatus.PAUSED
        assert self.engine.resume_sync()
        result = await self.engine.wait()

        assert result.success
        assert result.files_added == 3
        self.service.get_files.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_running_time_past_budget_times_out(self):
        async def slow_listing(page, per_page):
            self.clock.now += 31
            return [make_remote_file("a", "h1")]

        self.service.get_files = AsyncMock(side_effect=slow_listing)

        await self.engine.start_sync("acct", {"sync_timeout_ms": 30_000})
        result = await self.engine.wait()

        assert not result.success
        assert result.errors == ["Sync timed out after 30s"]
        assert self.engine.get_status().status == SyncJobStatus.ERROR
        assert [run.status for run in self.store.runs] == ["error"]

    @pytest.mark.asyncio
    async def test_cancelled_job_failing_before_checkpoint_records_nothing(self):
        async def cancel_then_fail(account_id):
            self.engine.cancel_sync()
            raise PersistenceError("database unavailable")

        self.store.list_file_index = AsyncMock(side_effect=cancel_then_fail)

        await self.engine.start_sync("acct")
        with pytest.raises(SyncCancelled):
            await self.engine.wait()

        assert self.store.runs == []
        assert self.engine.get_status().status == SyncJobStatus.IDLE
        assert self.engine.get_last_result() is None

    def test_control_without_job_is_noop(self):
        assert not self.engine.pause_sync()
        assert not self.engine.resume_sync()
        assert not self.engine.cancel_sync()

    @pytest.mark.asyncio
    async def test_observers_receive_copies_and_failures_are_isolated(self):
        seen = []

        def broken(status):
            raise RuntimeError("observer bug")

        self.engine.subscribe(broken)
        subscription = self.engine.subscribe(seen.append)

        await self.engine.start_sync("acct")
        await self.engine.wait()

        percentages = [status.progress.percentage for status in seen]
        assert percentages == sorted(percentages)
        assert percentages[-1] == 100
        assert all(0 <= p <= 100 for p in percentages)
        assert seen[-1].status == SyncJobStatus.COMPLETED
        seen[-1].stats.added = 999
        assert self.engine.get_status().stats.added == 3

        assert self.engine.unsubscribe(subscription)
        assert not self.engine.unsubscribe(subscription)

    @pytest.mark.asyncio
    async def test_estimated_end_is_set_while_running(self):
        status = await self.engine.start_sync("acct")

        assert status.timing.estimated_end > status.timing.started
        await self.engine.wait()

    def test_update_configuration_clamps_and_ignores_unknown(self):
        config = self.engine.update_configuration({"batch_size": 1000, "bogus": 1, "max_retries": "5"})

        assert config.batch_size == 500
        assert config.max_retries == 3
        assert self.engine.get_configuration().batch_size == 500


class TestJobPrimitives:
    """FileIndex and JobControl."""

    def test_file_index_normalizes_hashes(self):
        index = FileIndex.from_entries([
            FileIndexEntry(local_id=1, remote_id="a", hash=" ABC "),
            FileIndexEntry(local_id=2, remote_id="b", hash=None),
        ])

        assert index.by_hash == {"abc": "1"}
        assert index.by_remote_id == {"a": "1", "b": "2"}

    @pytest.mark.asyncio
    async def test_cancel_wakes_paused_checkpoint(self):
        control = JobControl()
        control.pause()
        waiter = asyncio.create_task(control.checkpoint())
        await settle(3)
        assert not waiter.done()

        control.cancel()

        assert await waiter is JobSignal.STOP

    def test_running_time_stops_while_paused(self):
        clock = ManualClock()
        control = JobControl(budget=10, clock=clock)

        clock.now = 4
        control.pause()
        clock.now = 100
        assert control.active_seconds() == 4

        control.resume()
        clock.now = 103
        assert control.active_seconds() == 7
        assert control.remaining_seconds() == 3
