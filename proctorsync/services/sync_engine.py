"""Periodic reconciliation between the local progress store and the remote store.

The local store answers every read; the remote store is where progress
survives a device change.  This engine keeps them converging:

  VIDEO SYNC (every VIDEO_SYNC_INTERVAL, default 5 s)
    1. every dirty local record is put in the outbox
    2. every due outbox entry is reconciled:
         read remote → merge_records(local, remote) → write remote
         → mark_synced locally
    3. a failure keeps the record dirty and backs the entry off

  AGGREGATE SYNC (every AGGREGATE_SYNC_INTERVAL, default 30 s)
    course aggregates are field-merged into users/{uid}/courses (courses
    this device never saw are left alone) and the overall aggregate is
    written to users/{uid}/overall.

Remote writes never happen on the save path.  A save returns as soon as
the local write is durable; losing the network only delays convergence.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace

from proctorsync.core.clock import Clock, epoch_ms, system_clock
from proctorsync.core.config import SETTINGS
from proctorsync.core.metrics import SYNC_DURATION, SYNC_OPERATIONS
from proctorsync.models.progress import VideoProgress, merge_records
from proctorsync.repos.remote_store import (
    RemoteStore,
    courses_path,
    overall_path,
    remote_store,
    video_path,
    videos_path,
)
from proctorsync.services.outbox import Outbox, OutboxEntry
from proctorsync.services.progress_store import ProgressStore, progress_store
from proctorsync.services.scheduler import AsyncioScheduler, ScheduledJob, Scheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SyncReport:
    """Outcome of one video sync pass.

    attempted:  outbox entries that were due and tried this pass
    synced:     entries acknowledged by the remote store
    failed:     entries rescheduled with backoff
    pending:    entries still in the outbox for this user afterwards
    """

    attempted: int = 0
    synced: int = 0
    failed: int = 0
    pending: int = 0

    def to_record(self) -> dict[str, int]:
        return {
            "attempted": self.attempted,
            "synced": self.synced,
            "failed": self.failed,
            "pending": self.pending,
        }


class SyncEngine:
    def __init__(
        self,
        store: ProgressStore,
        remote: RemoteStore,
        *,
        scheduler: Scheduler | None = None,
        clock: Clock = system_clock,
        video_interval: float = SETTINGS.video_sync_interval,
        aggregate_interval: float = SETTINGS.aggregate_sync_interval,
        max_backoff: float = SETTINGS.sync_max_backoff,
    ) -> None:
        self.store = store
        self.remote = remote
        self.scheduler = scheduler or AsyncioScheduler()
        self.clock = clock
        self.video_interval = video_interval
        self.aggregate_interval = aggregate_interval
        self.outbox = Outbox(video_interval, max_backoff)
        self._jobs: dict[str, list[ScheduledJob]] = {}

    # -- one-shot operations -------------------------------------------------

    async def sync_videos(self, user_id: str) -> SyncReport:
        started = time.perf_counter()
        # Backoff counts from the start of the tick, not from when the I/O gave up
        tick_at = self.clock.time()
        for record in self.store.list_dirty(user_id):
            self.outbox.enqueue(record.user_id, record.course_id, record.video_id)

        attempted = synced = failed = 0
        for entry in self.outbox.due(tick_at, user_id):
            attempted += 1
            if await self._reconcile(entry, tick_at):
                synced += 1
            else:
                failed += 1

        SYNC_DURATION.observe(time.perf_counter() - started)
        report = SyncReport(
            attempted=attempted,
            synced=synced,
            failed=failed,
            pending=len(self.outbox.pending(user_id)),
        )
        if attempted:
            logger.info(
                "Video sync: %d attempted, %d synced, %d failed, %d pending",
                report.attempted,
                report.synced,
                report.failed,
                report.pending,
                extra={"user_id": user_id},
            )
        return report

    async def _reconcile(self, entry: OutboxEntry, tick_at: float) -> bool:
        local = self.store.get_video_progress(entry.user_id, entry.course_id, entry.video_id)
        if local is None or not local.dirty:
            # Cleared, or already reconciled by a pull/migration
            self.outbox.record_success(entry)
            return True

        path = video_path(entry.user_id, entry.course_id, entry.video_id)
        try:
            remote_doc = await self.remote.get(path)
            merged = local
            if remote_doc is not None:
                remote = VideoProgress.from_record(
                    remote_doc,
                    user_id=entry.user_id,
                    course_id=entry.course_id,
                    video_id=entry.video_id,
                )
                merged = merge_records(local, remote)
            sync_time = epoch_ms(self.clock)
            merged = replace(merged, last_sync_time=sync_time)
            await self.remote.set(path, merged.to_remote())
        except Exception as exc:
            delay = self.outbox.record_failure(entry, tick_at, str(exc))
            SYNC_OPERATIONS.labels(kind="video", result="failed").inc()
            logger.warning(
                "Video sync failed (attempt %d), retrying in %.0fs: %s",
                entry.attempts,
                delay,
                exc,
                extra={
                    "user_id": entry.user_id,
                    "course_id": entry.course_id,
                    "video_id": entry.video_id,
                },
            )
            return False

        self.store.mark_synced(merged, sync_time)
        self.outbox.record_success(entry)
        SYNC_OPERATIONS.labels(kind="video", result="ok").inc()
        return True

    async def sync_aggregates(self, user_id: str) -> bool:
        """Push course and overall aggregates.  Returns False on failure (logged)."""
        try:
            courses = {
                course_id: self.store.get_course_progress(user_id, course_id).to_record()
                for course_id in self.store.list_courses(user_id)
            }
            if courses:
                await self.remote.update(courses_path(user_id), courses)
            overall = self.store.get_overall_progress(user_id)
            await self.remote.set(overall_path(user_id), overall.to_record())
        except Exception:
            SYNC_OPERATIONS.labels(kind="aggregate", result="failed").inc()
            logger.exception("Aggregate sync failed", extra={"user_id": user_id})
            return False

        SYNC_OPERATIONS.labels(kind="aggregate", result="ok").inc()
        return True

    async def pull(self, user_id: str) -> int:
        """Merge every remote video record into the local store.

        Raises RemoteStoreUnavailable when the remote store can't be read.
        """
        try:
            docs = await self.remote.children(videos_path(user_id))
        except Exception:
            SYNC_OPERATIONS.labels(kind="pull", result="failed").inc()
            raise

        merged = 0
        for doc in docs.values():
            record = VideoProgress.from_record(doc, user_id=user_id)
            if not record.course_id or not record.video_id or record.total_duration <= 0:
                logger.warning("Skipping unusable remote record", extra={"user_id": user_id})
                continue
            self.store.merge_remote(user_id, doc)
            merged += 1

        SYNC_OPERATIONS.labels(kind="pull", result="ok").inc()
        logger.info("Pulled %d remote records", merged, extra={"user_id": user_id})
        return merged

    async def flush(self, user_id: str) -> SyncReport:
        """Run one video sync and one aggregate sync right now."""
        report = await self.sync_videos(user_id)
        await self.sync_aggregates(user_id)
        return report

    # -- periodic jobs -------------------------------------------------------

    def start(self, user_id: str) -> None:
        if user_id in self._jobs:
            return

        async def video_tick() -> None:
            await self.sync_videos(user_id)

        async def aggregate_tick() -> None:
            await self.sync_aggregates(user_id)

        self._jobs[user_id] = [
            self.scheduler.every("video_sync", self.video_interval, video_tick),
            self.scheduler.every("aggregate_sync", self.aggregate_interval, aggregate_tick),
        ]
        logger.info("Sync jobs started", extra={"user_id": user_id})

    def stop(self, user_id: str | None = None) -> None:
        """Cancel the periodic jobs for one user, or for everyone."""
        users = [user_id] if user_id is not None else list(self._jobs)
        for uid in users:
            for job in self._jobs.pop(uid, []):
                job.cancel()

    def is_running(self, user_id: str) -> bool:
        return user_id in self._jobs


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

sync_engine = SyncEngine(progress_store, remote_store)
