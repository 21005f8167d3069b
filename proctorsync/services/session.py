"""A learner's study session.

Starting a session does, in order:

  1. the legacy migration flow (check → extract → migrate → clear on success)
  2. a pull of remote progress into the local store, so a learner who
     switched devices resumes where they left off
  3. the periodic sync jobs
  4. face monitoring, when a camera capability was given
  5. the analytics refresher, when an analytics reader was given

Ending it stops every background job, waits for in-flight alert writes
and flushes pending progress.  A failing remote store never
prevents a session from starting: the learner keeps working against
local storage and the sync jobs catch up later.  Neither does a missing
camera; the session runs without face monitoring.

PROCTORING
----------
Every session owns one ViolationPipeline.  Browser signals arrive through
``signal()`` and are routed to a TabVisibilityTracker and a ClipboardGuard
kept per (course, video), so tab-switch warnings count per video.  The face
monitor follows whichever video the learner signalled or watched last.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from proctorsync.core.clock import Clock, system_clock
from proctorsync.core.errors import CapabilityUnavailable
from proctorsync.models.alert import SessionContext, SessionSignal, ViolationEvent
from proctorsync.models.migration import DEFAULT_COURSE_IDS, MigrationResult
from proctorsync.proctoring.capabilities import FacePresenceCapability
from proctorsync.proctoring.clipboard import ClipboardGuard
from proctorsync.proctoring.face_presence import FaceMonitorState, FacePresenceMonitor
from proctorsync.proctoring.pipeline import ViolationPipeline
from proctorsync.proctoring.tab_visibility import TabVisibilityTracker
from proctorsync.services.analytics import AnalyticsRefresher, AnalyticsSnapshot, VideoAnalytics
from proctorsync.services.migration import MigrationEngine, migration_engine
from proctorsync.services.scheduler import AsyncioScheduler, Scheduler
from proctorsync.services.sync_engine import SyncEngine, SyncReport, sync_engine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class VideoDetectors:
    tabs: TabVisibilityTracker
    clipboard: ClipboardGuard


class LearningSession:
    def __init__(
        self,
        user_id: str,
        *,
        course_ids: Iterable[str] = DEFAULT_COURSE_IDS,
        migration: MigrationEngine = migration_engine,
        sync: SyncEngine = sync_engine,
        pipeline: ViolationPipeline | None = None,
        face_capability: FacePresenceCapability | None = None,
        analytics: VideoAnalytics | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self.user_id = user_id
        self.course_ids = list(course_ids)
        self.migration = migration
        self.sync = sync
        self.pipeline = pipeline or ViolationPipeline(sync.store, migration.sink)
        self.face_capability = face_capability
        self.analytics = analytics
        self.scheduler = scheduler
        self.clock = clock
        self.active = False
        self.migration_result: MigrationResult | None = None
        self.pulled = 0
        self.context = SessionContext(user_id)
        self.face_monitor: FacePresenceMonitor | None = None
        self.refresher: AnalyticsRefresher | None = None
        self._detectors: dict[tuple[str, str], VideoDetectors] = {}

    async def start(self) -> None:
        if self.active:
            return
        log_extra = {"user_id": self.user_id}

        self.migration_result = await self.migration.migrate_legacy_progress(
            self.user_id, self.course_ids
        )

        try:
            self.pulled = await self.sync.pull(self.user_id)
        except Exception as exc:
            logger.warning("Remote pull failed, continuing with local progress: %s", exc, extra=log_extra)

        self.sync.start(self.user_id)
        self.active = True
        if self.face_capability is not None:
            await self._start_face_monitor()
        if self.analytics is not None:
            self.refresher = AnalyticsRefresher(
                self.analytics, self.scheduler or AsyncioScheduler(), self.user_id
            )
            await self.refresher.start()
        logger.info("Learning session started", extra=log_extra)

    async def _start_face_monitor(self) -> None:
        self.face_monitor = FacePresenceMonitor(
            self.face_capability,
            self.scheduler or AsyncioScheduler(),
            self.pipeline.submit,
            self.context,
            clock=self.clock,
        )
        try:
            await self.face_monitor.start()
        except CapabilityUnavailable as exc:
            logger.warning(
                "Face monitoring off for this session: %s", exc, extra={"user_id": self.user_id}
            )

    @property
    def analytics_snapshot(self) -> AnalyticsSnapshot | None:
        return self.refresher.latest if self.refresher is not None else None

    @property
    def face_state(self) -> FaceMonitorState | None:
        return self.face_monitor.state if self.face_monitor is not None else None

    def watch(self, course_id: str, video_id: str) -> VideoDetectors:
        """Point the detectors at the video the learner is on."""
        key = (course_id, video_id)
        self.context = SessionContext(self.user_id, course_id, video_id)
        if self.face_monitor is not None:
            self.face_monitor.context = self.context
        detectors = self._detectors.get(key)
        if detectors is None:
            detectors = VideoDetectors(
                tabs=TabVisibilityTracker(self.context, self.pipeline.submit, clock=self.clock),
                clipboard=ClipboardGuard(self.context, self.pipeline.submit, clock=self.clock),
            )
            self._detectors[key] = detectors
        return detectors

    def signal(
        self, kind: SessionSignal, course_id: str, video_id: str
    ) -> list[ViolationEvent]:
        """Feed one browser signal through the detectors.  Returns the events it raised."""
        if not self.active:
            raise RuntimeError("session is not active")
        detectors = self.watch(course_id, video_id)
        if kind is SessionSignal.TAB_HIDDEN:
            return detectors.tabs.visibility_changed(True)
        if kind is SessionSignal.TAB_VISIBLE:
            return detectors.tabs.visibility_changed(False)
        if kind is SessionSignal.COPY:
            return [detectors.clipboard.copy_attempted()]
        return [detectors.clipboard.paste_attempted()]

    async def end(self) -> SyncReport | None:
        if not self.active:
            return None
        self.active = False
        if self.face_monitor is not None:
            self.face_monitor.stop()
        if self.refresher is not None:
            self.refresher.stop()
        self.sync.stop(self.user_id)
        await self.pipeline.drain()
        report = await self.sync.flush(self.user_id)
        logger.info("Learning session ended", extra={"user_id": self.user_id})
        return report

    async def __aenter__(self) -> LearningSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.end()
