"""Sync engine that mirrors remote Real-Debrid file listings into the local index."""

import asyncio
import copy
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..api_clients.debrid_service import DebridService
from ..api_clients.errors import DebridServiceError, SyncCancelled, SyncConflict, SyncError, SyncTimeout
from ..api_clients.models import RemoteFile
from ..config.schema import SyncConfiguration
from ..database.models import FileIndexEntry, SyncRunRecord
from ..database.stores import FileIndexStore
from ..utils.logging import get_logger, log_async_execution_time
from ..utils.timestamps import utcnow


DEFAULT_ESTIMATE = timedelta(minutes=5)
MAX_PAGE_BACKOFF_SECONDS = 10


class SyncJobStatus(str, Enum):
    """Lifecycle of a sync job."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


ACTIVE_STATUSES = frozenset({SyncJobStatus.RUNNING, SyncJobStatus.PAUSED})


@dataclass
class SyncProgress:
    total: int = 0
    processed: int = 0
    current_label: str = ""
    percentage: int = 0


@dataclass
class SyncTiming:
    started: Optional[datetime] = None
    estimated_end: Optional[datetime] = None
    ended: Optional[datetime] = None


@dataclass
class SyncStats:
    added: int = 0
    updated: int = 0
    duplicates: int = 0
    deleted: int = 0
    errors: int = 0


@dataclass
class SyncStatus:
    """Observable state of the current (or last) sync job."""

    id: Optional[str] = None
    status: SyncJobStatus = SyncJobStatus.IDLE
    account_id: Optional[str] = None
    progress: SyncProgress = field(default_factory=SyncProgress)
    timing: SyncTiming = field(default_factory=SyncTiming)
    stats: SyncStats = field(default_factory=SyncStats)
    last_sync_timestamp: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass
class SyncResult:
    """Result of a finished sync job."""

    job_id: str
    success: bool
    files_processed: int
    files_added: int
    files_updated: int
    files_deleted: int
    duplicates_found: int
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    timestamp: Optional[datetime] = None

    @property
    def files_changed(self) -> int:
        """Total files that were added, updated or merged."""
        return self.files_added + self.files_updated + self.duplicates_found


class JobSignal(Enum):
    """Outcome of a unit of work: keep going or unwind."""
    CONTINUE = "continue"
    STOP = "stop"


class JobControl:
    """Pause and cancellation token checked at every unit boundary.

    Also keeps the job's running time, which stops while the job is paused,
    and enforces the optional ``budget`` (seconds) on it.
    """

    def __init__(self, budget: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._resume = asyncio.Event()
        self._resume.set()
        self.cancelled = False
        self.budget = budget
        self._clock = clock
        self._elapsed = 0.0
        self._running_since: Optional[float] = clock()

    @property
    def paused(self) -> bool:
        return not self._resume.is_set()

    def pause(self) -> None:
        if self._running_since is not None:
            self._elapsed += self._clock() - self._running_since
            self._running_since = None
        self._resume.clear()

    def resume(self) -> None:
        if self._running_since is None:
            self._running_since = self._clock()
        self._resume.set()

    def cancel(self) -> None:
        self.cancelled = True
        self._resume.set()

    def active_seconds(self) -> float:
        if self._running_since is None:
            return self._elapsed
        return self._elapsed + self._clock() - self._running_since

    def remaining_seconds(self) -> Optional[float]:
        if self.budget is None:
            return None
        return self.budget - self.active_seconds()

    def timeout_error(self) -> SyncTimeout:
        return SyncTimeout(f"Sync timed out after {self.budget:g}s")

    async def wait_resumed(self) -> None:
        await self._resume.wait()

    async def checkpoint(self) -> JobSignal:
        """Block while paused; STOP once cancelled.

        Raises:
            SyncTimeout: the running-time budget is used up
        """
        if not self.cancelled and self.paused:
            await self._resume.wait()
        if self.cancelled:
            return JobSignal.STOP
        remaining = self.remaining_seconds()
        if remaining is not None and remaining <= 0:
            raise self.timeout_error()
        return JobSignal.CONTINUE


@dataclass
class FileIndex:
    """Lookup of stored files by remote id and by normalized content hash."""

    by_remote_id: Dict[str, str] = field(default_factory=dict)
    by_hash: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def normalize(content_hash: Optional[str]) -> str:
        return (content_hash or "").strip().lower()

    @classmethod
    def from_entries(cls, entries: List[FileIndexEntry]) -> "FileIndex":
        index = cls()
        for entry in entries:
            index.add(entry.remote_id, entry.hash, entry.local_id)
        return index

    def add(self, remote_id: Optional[str], content_hash: Optional[str], local_id: str) -> None:
        if remote_id:
            self.by_remote_id[remote_id] = local_id
        normalized = self.normalize(content_hash)
        if normalized:
            self.by_hash[normalized] = local_id


@dataclass
class _Job:
    id: str
    account_id: str
    config: SyncConfiguration
    control: JobControl
    status: SyncStatus
    errors: List[str] = field(default_factory=list)
    sync_timestamp: Optional[datetime] = None
    task: Optional[asyncio.Task] = None


class SyncEngine:
    """Runs one resumable sync job at a time."""

    def __init__(
        self,
        service: DebridService,
        store: FileIndexStore,
        configuration: Optional[SyncConfiguration] = None,
        batch_pause_seconds: float = 0.075,
        sleep=asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize sync engine.

        Args:
            service: Real-Debrid facade used to list remote files
            store: File index store holding the local mirror
            configuration: Default job configuration
            batch_pause_seconds: Pause between processing batches
            clock: Monotonic clock measuring the job's running time
        """
        self.service = service
        self.store = store
        self.configuration = configuration or SyncConfiguration()
        self.batch_pause_seconds = batch_pause_seconds
        self.logger = get_logger(self.__class__.__name__)

        self._sleep = sleep
        self._now = now
        self._clock = clock
        self._status = SyncStatus()
        self._job: Optional[_Job] = None
        self._observers: Dict[str, Callable[[SyncStatus], None]] = {}
        self._last_result: Optional[SyncResult] = None

    # Job control

    async def start_sync(self, account_id: str, overrides: Optional[Dict] = None) -> SyncStatus:
        """Start a job in the background and return its initial status.

        Raises:
            SyncConflict: a job is already running or paused
        """
        if self._status.is_active:
            raise SyncConflict("A sync job is already in progress")

        config = self.configuration.merge(overrides) if overrides else self.configuration
        started = self._now()
        job_id = f"sync_{int(started.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"

        status = SyncStatus(
            id=job_id,
            status=SyncJobStatus.RUNNING,
            account_id=account_id,
            progress=SyncProgress(current_label="Initializing sync..."),
            timing=SyncTiming(started=started, estimated_end=started + DEFAULT_ESTIMATE),
            last_sync_timestamp=self._status.last_sync_timestamp,
        )
        control = JobControl(budget=config.sync_timeout_ms / 1000, clock=self._clock)
        job = _Job(id=job_id, account_id=account_id, config=config, control=control, status=status)

        self._status = status
        self._job = job
        self._notify()

        job.task = asyncio.create_task(self._run_job(job))

        self.logger.info(
            "Sync job started",
            job_id=job_id,
            account_id=account_id,
            batch_size=config.batch_size,
            duplicate_detection=config.enable_duplicate_detection
        )
        return self.get_status()

    def pause_sync(self) -> bool:
        if self._job is None or self._status.status != SyncJobStatus.RUNNING:
            return False
        self._status.status = SyncJobStatus.PAUSED
        self._status.progress.current_label = "Sync paused"
        self._job.control.pause()
        self.logger.info("Sync job paused", job_id=self._job.id)
        self._notify()
        return True

    def resume_sync(self) -> bool:
        if self._job is None or self._status.status != SyncJobStatus.PAUSED:
            return False
        self._status.status = SyncJobStatus.RUNNING
        self._status.progress.current_label = "Resuming sync..."
        self._job.control.resume()
        self.logger.info("Sync job resumed", job_id=self._job.id)
        self._notify()
        return True

    def cancel_sync(self) -> bool:
        """Stop the active job at its next checkpoint and free the job slot."""
        if self._job is None or not self._status.is_active:
            return False

        self._job.control.cancel()

        # The job keeps its own status object; the engine moves on to a copy
        cancelled = copy.deepcopy(self._status)
        cancelled.status = SyncJobStatus.IDLE
        cancelled.progress.current_label = "Sync cancelled"
        cancelled.timing.ended = self._now()
        self._status = cancelled

        self.logger.info("Sync job cancelled", job_id=self._job.id)
        self._notify()
        return True

    async def wait(self) -> SyncResult:
        """Wait for the most recent job to finish.

        Raises:
            SyncCancelled: the job was cancelled
        """
        job = self._job
        if job is None or job.task is None:
            raise SyncError("No sync job has been started")

        result = await asyncio.shield(job.task)
        if result is None:
            raise SyncCancelled(f"Sync job {job.id} was cancelled")
        return result

    def get_status(self) -> SyncStatus:
        return copy.deepcopy(self._status)

    def get_last_result(self) -> Optional[SyncResult]:
        return self._last_result

    def get_configuration(self) -> SyncConfiguration:
        return self.configuration.model_copy()

    def update_configuration(self, changes: Dict) -> SyncConfiguration:
        """Apply the valid part of ``changes``; applies to jobs started afterwards."""
        self.configuration = self.configuration.merge(changes)
        self.logger.info("Sync configuration updated", **self.configuration.model_dump())
        return self.get_configuration()

    # Observers

    def subscribe(self, callback: Callable[[SyncStatus], None]) -> str:
        subscription_id = uuid.uuid4().hex
        self._observers[subscription_id] = callback
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        return self._observers.pop(subscription_id, None) is not None

    def _notify(self) -> None:
        if not self._observers:
            return
        snapshot = self.get_status()
        for subscription_id, callback in list(self._observers.items()):
            try:
                callback(snapshot)
            except Exception as e:
                self.logger.error("Progress observer failed", subscription_id=subscription_id, error=str(e))

    def _publish(self, job: _Job) -> None:
        """Notify observers unless the job has been cancelled or superseded."""
        if self._status is job.status:
            self._notify()

    # Progress bookkeeping

    def _set_label(self, job: _Job, label: str) -> None:
        job.status.progress.current_label = label
        self._publish(job)

    def _advance(self, job: _Job) -> None:
        progress = job.status.progress
        progress.processed += 1

        if progress.total > 0:
            progress.percentage = min(100, max(0, math.floor(progress.processed / progress.total * 100)))

        now = self._now()
        started = job.status.timing.started or now
        if progress.processed and progress.total:
            elapsed = now - started
            job.status.timing.estimated_end = started + elapsed * (progress.total / progress.processed)
        else:
            job.status.timing.estimated_end = now + DEFAULT_ESTIMATE

        self._publish(job)

    def _record_error(self, job: _Job, message: str) -> None:
        job.errors.append(message)
        job.status.stats.errors += 1

    # Job body

    async def _run_job(self, job: _Job) -> Optional[SyncResult]:
        try:
            signal = await self._run_within_budget(job)
        except Exception as e:
            if job.control.cancelled:
                self.logger.info("Sync job stopped after cancellation", job_id=job.id, error=str(e))
                return None
            self.logger.error("Sync job failed", job_id=job.id, account_id=job.account_id, error=str(e))
            return await self._finalize(job, SyncJobStatus.ERROR, str(e))

        if signal is JobSignal.STOP:
            self.logger.info("Sync job stopped after cancellation", job_id=job.id)
            return None
        return await self._finalize(job, SyncJobStatus.COMPLETED)

    async def _run_within_budget(self, job: _Job) -> JobSignal:
        """Run the job body, timing out on running time only.

        Checkpoints enforce the budget between units of work; this loop
        catches a unit that hangs past it. Paused time is not counted.
        """
        control = job.control
        body = asyncio.ensure_future(self._execute(job))
        try:
            while not body.done():
                if control.paused and not control.cancelled:
                    resumed = asyncio.ensure_future(control.wait_resumed())
                    try:
                        await asyncio.wait({body, resumed}, return_when=asyncio.FIRST_COMPLETED)
                    finally:
                        resumed.cancel()
                    continue

                remaining = control.remaining_seconds()
                if remaining is not None and remaining <= 0:
                    raise control.timeout_error()
                await asyncio.wait({body}, timeout=remaining)
            return body.result()
        finally:
            if not body.done():
                body.cancel()
                await asyncio.gather(body, return_exceptions=True)

    @log_async_execution_time
    async def _execute(self, job: _Job) -> JobSignal:
        last_sync = await self.store.get_last_sync_timestamp(job.account_id)
        job.status.last_sync_timestamp = last_sync
        job.sync_timestamp = job.status.timing.started
        incremental = last_sync is not None

        self.logger.info(
            "Fetching remote files",
            job_id=job.id,
            mode="incremental" if incremental else "full",
            since=last_sync.isoformat() if last_sync else None
        )

        signal, files, fetched_ids, complete = await self._fetch_all(job, last_sync)
        if signal is JobSignal.STOP:
            return signal

        job.status.progress.total = len(files)
        job.status.timing.estimated_end = self._now() + DEFAULT_ESTIMATE
        self._set_label(job, f"Processing {len(files)} files...")

        index = FileIndex.from_entries(await self.store.list_file_index(job.account_id))

        if await self._process_files(job, files, index) is JobSignal.STOP:
            return JobSignal.STOP

        if not incremental:
            if complete:
                if await self._cleanup_orphans(job, fetched_ids) is JobSignal.STOP:
                    return JobSignal.STOP
            else:
                self.logger.warning("Skipping orphan cleanup after incomplete listing", job_id=job.id)

        if await job.control.checkpoint() is JobSignal.STOP:
            return JobSignal.STOP

        await self.store.set_last_sync_timestamp(job.account_id, job.sync_timestamp)
        return JobSignal.CONTINUE

    async def _fetch_all(
        self,
        job: _Job,
        last_sync: Optional[datetime]
    ) -> Tuple[JobSignal, List[RemoteFile], Set[str], bool]:
        """Page through the remote listing.

        Returns the signal, the files to process, every remote id seen, and
        whether the listing ran to its end.
        """
        files: List[RemoteFile] = []
        fetched_ids: Set[str] = set()
        page = 1

        while True:
            if await job.control.checkpoint() is JobSignal.STOP:
                return JobSignal.STOP, files, fetched_ids, False
            self._set_label(job, f"Fetching page {page} from Real-Debrid...")

            signal, batch = await self._fetch_page(job, page)
            if signal is JobSignal.STOP:
                return JobSignal.STOP, files, fetched_ids, False
            if batch is None:
                return JobSignal.CONTINUE, files, fetched_ids, False

            fetched_ids.update(remote.id for remote in batch)
            if last_sync is not None:
                batch_to_keep = [f for f in batch if f.modified_at is not None and f.modified_at > last_sync]
            else:
                batch_to_keep = batch
            files.extend(batch_to_keep)

            if len(batch) < job.config.batch_size:
                return JobSignal.CONTINUE, files, fetched_ids, True
            page += 1

    async def _fetch_page(self, job: _Job, page: int) -> Tuple[JobSignal, Optional[List[RemoteFile]]]:
        """Fetch one page, retrying with backoff; ``None`` means give up."""
        max_retries = job.config.max_retries
        for attempt in range(max_retries + 1):
            if attempt:
                await self._sleep(min(2 ** attempt, MAX_PAGE_BACKOFF_SECONDS))
                if await job.control.checkpoint() is JobSignal.STOP:
                    return JobSignal.STOP, None
            try:
                return JobSignal.CONTINUE, await self.service.get_files(page=page, per_page=job.config.batch_size)
            except DebridServiceError as e:
                self.logger.warning(
                    "Failed to fetch files page",
                    job_id=job.id,
                    page=page,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    error=str(e)
                )

        self.logger.error("Giving up on files page", job_id=job.id, page=page)
        self._record_error(job, f"Failed to fetch page {page} after {max_retries + 1} attempts")
        return JobSignal.CONTINUE, None

    async def _process_files(self, job: _Job, files: List[RemoteFile], index: FileIndex) -> JobSignal:
        batch_size = job.config.batch_size
        for start in range(0, len(files), batch_size):
            batch = files[start:start + batch_size]
            self._set_label(job, f"Processing files {start + 1}-{start + len(batch)}...")

            for remote in batch:
                if await job.control.checkpoint() is JobSignal.STOP:
                    return JobSignal.STOP
                await self._process_file(job, remote, index)
                self._advance(job)

            if start + batch_size < len(files):
                await self._sleep(self.batch_pause_seconds)

        return JobSignal.CONTINUE

    async def _process_file(self, job: _Job, remote: RemoteFile, index: FileIndex) -> None:
        """Classify one file as update, duplicate or insert and write it."""
        stats = job.status.stats
        normalized = remote.normalized_hash
        by_remote = index.by_remote_id.get(remote.id)
        by_hash = index.by_hash.get(normalized) if normalized else None

        try:
            if by_remote:
                if await self.store.update_file(by_remote, remote):
                    stats.updated += 1
                else:
                    self._record_error(job, f"Failed to update file {remote.name}")

            elif job.config.enable_duplicate_detection and by_hash:
                if await self.store.update_file(by_hash, remote):
                    stats.duplicates += 1
                    index.by_remote_id[remote.id] = by_hash
                else:
                    self._record_error(job, f"Failed to merge duplicate file {remote.name}")

            else:
                local_id = await self.store.insert_file(job.account_id, remote)
                if local_id:
                    index.add(remote.id, normalized, local_id)
                    stats.added += 1
                else:
                    self._record_error(job, f"Failed to insert file {remote.name}")

        except Exception as e:
            self.logger.error("Error processing file", job_id=job.id, remote_id=remote.id, error=str(e))
            self._record_error(job, f"Error processing {remote.name}: {e}")

    async def _cleanup_orphans(self, job: _Job, fetched_ids: Set[str]) -> JobSignal:
        """Delete stored files whose remote id was not in the full listing."""
        self._set_label(job, "Removing deleted files...")
        stored = await self.store.list_stored_remote_ids(job.account_id)

        for entry in stored:
            if await job.control.checkpoint() is JobSignal.STOP:
                return JobSignal.STOP
            if entry.remote_id and entry.remote_id not in fetched_ids:
                if await self.store.delete_file(entry.local_id):
                    job.status.stats.deleted += 1
                    self._publish(job)
                else:
                    self._record_error(job, f"Failed to delete stale file {entry.remote_id}")

        return JobSignal.CONTINUE

    async def _finalize(self, job: _Job, outcome: SyncJobStatus, error: Optional[str] = None) -> SyncResult:
        status = job.status
        ended = self._now()
        started = status.timing.started or ended
        success = outcome == SyncJobStatus.COMPLETED

        status.status = outcome
        status.timing.ended = ended
        status.error = error
        if success:
            status.last_sync_timestamp = job.sync_timestamp
            status.progress.current_label = "Sync completed"
        else:
            status.progress.current_label = "Sync failed"

        errors = list(job.errors)
        if error:
            errors.insert(0, error)

        result = SyncResult(
            job_id=job.id,
            success=success,
            files_processed=status.progress.processed,
            files_added=status.stats.added,
            files_updated=status.stats.updated,
            files_deleted=status.stats.deleted,
            duplicates_found=status.stats.duplicates,
            errors=errors,
            duration_seconds=(ended - started).total_seconds(),
            timestamp=ended,
        )
        self._log_sync_result(job, result)

        if self._status is job.status:
            self._last_result = result
        self._publish(job)

        try:
            await self.store.record_sync_run(job.account_id, SyncRunRecord(
                job_id=job.id,
                status=outcome.value,
                started_at=started,
                ended_at=ended,
                files_processed=result.files_processed,
                files_added=result.files_added,
                files_updated=result.files_updated,
                files_deleted=result.files_deleted,
                duplicates_found=result.duplicates_found,
                errors=result.errors,
                error_message=error,
                duration_seconds=result.duration_seconds,
            ))
        except Exception as e:
            self.logger.warning("Failed to record sync run", job_id=job.id, error=str(e))

        return result

    def _log_sync_result(self, job: _Job, result: SyncResult) -> None:
        self.logger.info(
            "Sync job finished",
            job_id=job.id,
            account_id=job.account_id,
            success=result.success,
            files_processed=result.files_processed,
            files_added=result.files_added,
            files_updated=result.files_updated,
            files_deleted=result.files_deleted,
            duplicates_found=result.duplicates_found,
            errors=len(result.errors),
            duration=f"{result.duration_seconds:.2f}s"
        )
