"""Detectors → counters → cooldown filter → alert sink.

Detectors call ``submit()`` synchronously from wherever they run.  The
pipeline then:

  1. bumps the matching VideoProgress counter (every event counts, even
     the ones the cooldown drops; counters measure behaviour, alerts
     notify people)
  2. asks the cooldown filter whether an alert may go out
  3. hands survivors to the alert sink as a background task, so a slow
     remote store never stalls a detector

``drain()`` waits for in-flight alert writes (session end, tests).
"""

from __future__ import annotations

import asyncio
import logging

from proctorsync.core.metrics import ALERTS
from proctorsync.models.alert import Alert, ViolationEvent, ViolationType
from proctorsync.models.progress import ViolationKind
from proctorsync.proctoring.cooldown import CooldownFilter
from proctorsync.services.alert_sink import AlertSink
from proctorsync.services.progress_store import ProgressStore

logger = logging.getLogger(__name__)

# A missing face also pauses the player, so it counts as an auto-pause too
COUNTERS_FOR_EVENT: dict[ViolationType, tuple[ViolationKind, ...]] = {
    ViolationType.TAB_SWITCH_DETECTED: ("tabSwitches",),
    ViolationType.FACE_MISSING: ("faceMissingEvents", "autoPauses"),
}


class ViolationPipeline:
    def __init__(
        self,
        store: ProgressStore,
        sink: AlertSink,
        cooldown: CooldownFilter | None = None,
    ) -> None:
        self.store = store
        self.sink = sink
        self.cooldown = cooldown or CooldownFilter()
        self.admitted = 0
        self.suppressed = 0
        self._inflight: set[asyncio.Task[bool]] = set()

    def submit(self, event: ViolationEvent) -> bool:
        """Process one detector event.  Returns True if an alert was queued."""
        ctx = event.context
        log_extra = {
            "user_id": ctx.user_id,
            "course_id": ctx.course_id,
            "video_id": ctx.video_id,
            "alert_type": event.type.value,
        }

        kinds = COUNTERS_FOR_EVENT.get(event.type, ())
        if ctx.course_id and ctx.video_id:
            for kind in kinds:
                try:
                    self.store.record_violation(ctx.user_id, ctx.course_id, ctx.video_id, kind)
                except Exception:
                    logger.exception("Could not record violation counter", extra=log_extra)

        if not self.cooldown.allow(event.type.value, event.occurred_at):
            self.suppressed += 1
            ALERTS.labels(result="suppressed").inc()
            logger.debug("Violation within cooldown, no alert", extra=log_extra)
            return False

        self.admitted += 1
        task = asyncio.get_running_loop().create_task(self.sink.write(Alert.from_event(event)))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return True

    @property
    def pending_writes(self) -> int:
        return len(self._inflight)

    async def drain(self) -> None:
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
