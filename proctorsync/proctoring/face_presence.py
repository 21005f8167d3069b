"""Face presence monitoring with miss-count debouncing.

STATE MACHINE
-------------

    IDLE ──start()──▶ LOADING ──acquired──▶ ACTIVE ──stop()──▶ IDLE
                         │
                         └──acquire failed──▶ ERROR   (terminal)

While ACTIVE a scheduled job polls the capability every FACE_POLL_INTERVAL.

DEBOUNCING
----------
Haar cascades miss faces on single frames all the time (head turned,
motion blur, bad light).  One miss must not raise an alert, so:

  - a positive poll resets the miss counter and sets face_detected
  - a negative poll (or a detection error) increments the counter
  - face_detected only drops to False when the counter reaches
    FACE_MISS_THRESHOLD, and ``face_missing`` is emitted once per streak
  - the first positive poll after that emits ``face_restored``

STOPPING
--------
``stop()`` is synchronous.  It bumps a generation counter, cancels the
poll job and releases the camera.  A poll that was already suspended in
``detect()`` compares generations when it resumes and discards its result.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum

from proctorsync.core.clock import Clock, system_clock
from proctorsync.core.config import SETTINGS
from proctorsync.core.errors import CapabilityUnavailable
from proctorsync.core.metrics import FACE_POLLS
from proctorsync.models.alert import SessionContext, ViolationEvent, ViolationType
from proctorsync.proctoring.capabilities import FacePresenceCapability
from proctorsync.services.scheduler import ScheduledJob, Scheduler

logger = logging.getLogger(__name__)

EventCallback = Callable[[ViolationEvent], None]


class FaceMonitorState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    ACTIVE = "active"
    ERROR = "error"


class FacePresenceMonitor:
    def __init__(
        self,
        capability: FacePresenceCapability,
        scheduler: Scheduler,
        on_event: EventCallback,
        context: SessionContext,
        *,
        clock: Clock = system_clock,
        poll_interval: float = SETTINGS.face_poll_interval,
        miss_threshold: int = SETTINGS.face_miss_threshold,
    ) -> None:
        self.capability = capability
        self.scheduler = scheduler
        self.on_event = on_event
        self.context = context
        self.clock = clock
        self.poll_interval = poll_interval
        self.miss_threshold = miss_threshold

        self.state = FaceMonitorState.IDLE
        self.face_detected = False
        self.misses = 0
        self.error: str | None = None
        self._missing_reported = False
        self._generation = 0
        self._job: ScheduledJob | None = None

    async def start(self) -> None:
        if self.state is FaceMonitorState.ERROR:
            raise CapabilityUnavailable(self.error or "face detection unavailable")
        if self.state is not FaceMonitorState.IDLE:
            return

        self.state = FaceMonitorState.LOADING
        generation = self._generation
        try:
            await self.capability.acquire()
        except Exception as exc:
            self.state = FaceMonitorState.ERROR
            self.error = str(exc)
            logger.error(
                "Face detection unavailable: %s",
                exc,
                extra={"user_id": self.context.user_id},
            )
            if isinstance(exc, CapabilityUnavailable):
                raise
            raise CapabilityUnavailable(str(exc)) from exc

        if generation != self._generation:
            # stop() ran while the camera was opening
            self.capability.release()
            return

        self.state = FaceMonitorState.ACTIVE
        self._job = self.scheduler.every("face_poll", self.poll_interval, self.poll)
        logger.info("Face monitoring started", extra={"user_id": self.context.user_id})

    async def poll(self) -> None:
        if self.state is not FaceMonitorState.ACTIVE:
            return
        generation = self._generation
        try:
            present = await self.capability.detect()
            FACE_POLLS.labels(result="present" if present else "absent").inc()
        except Exception as exc:
            FACE_POLLS.labels(result="error").inc()
            logger.warning(
                "Face detection failed, counting as a miss: %s",
                exc,
                extra={"user_id": self.context.user_id},
            )
            present = False

        if generation != self._generation or self.state is not FaceMonitorState.ACTIVE:
            return
        self._observe(present)

    def _observe(self, present: bool) -> None:
        if present:
            self.misses = 0
            self.face_detected = True
            if self._missing_reported:
                self._missing_reported = False
                self._emit(ViolationType.FACE_RESTORED, "Face detected again")
            return

        self.misses += 1
        if self.misses == self.miss_threshold:
            self.face_detected = False
            self._missing_reported = True
            self._emit(
                ViolationType.FACE_MISSING,
                "Face not detected - please stay in front of the camera",
            )

    def _emit(self, kind: ViolationType, message: str) -> None:
        self.on_event(
            ViolationEvent(
                type=kind,
                message=message,
                context=self.context,
                occurred_at=self.clock.time(),
                details={"misses": self.misses},
            )
        )

    def stop(self) -> None:
        self._generation += 1
        if self._job is not None:
            self._job.cancel()
            self._job = None
        if self.state is FaceMonitorState.ACTIVE:
            self.capability.release()
            logger.info("Face monitoring stopped", extra={"user_id": self.context.user_id})
        if self.state is not FaceMonitorState.ERROR:
            self.state = FaceMonitorState.IDLE
        self.misses = 0
        self._missing_reported = False

    async def __aenter__(self) -> FacePresenceMonitor:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.stop()
