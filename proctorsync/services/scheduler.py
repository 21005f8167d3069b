"""Periodic jobs with skip-if-busy semantics.

Everything that runs on a timer (face polls, video sync, aggregate sync,
analytics refresh) is a ``ScheduledJob``.  The rules are the same for all
of them:

  1. A tick that arrives while the previous invocation is still running is
     SKIPPED, not queued.  A slow remote store must not pile up sync
     ticks behind each other.
  2. ``cancel()`` is synchronous.  Once it returns, no new invocation will
     start.  An invocation already suspended inside an await is allowed to
     finish; callers guard its side effects themselves (see the face
     monitor's generation check).
  3. Exceptions raised by the callback are logged and swallowed so the
     job keeps ticking.

Two schedulers implement the protocol:

  AsyncioScheduler   real timers on the running event loop
  ManualScheduler    virtual time for tests, driven by ``await advance()``
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from proctorsync.core.clock import ManualClock
from proctorsync.core.metrics import JOBS_SKIPPED

logger = logging.getLogger(__name__)

JobCallback = Callable[[], Awaitable[None]]


class ScheduledJob:
    def __init__(self, name: str, interval: float, callback: JobCallback) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._running = False
        self._cancelled = False
        self.runs = 0
        self.skipped = 0

    @property
    def busy(self) -> bool:
        return self._running

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def fire(self) -> bool:
        """Run the callback once.  Returns False when skipped or cancelled."""
        if self._cancelled:
            return False
        if self._running:
            self.skipped += 1
            JOBS_SKIPPED.labels(job=self.name).inc()
            logger.debug("Job %s still busy, skipping tick", self.name)
            return False

        self._running = True
        try:
            await self._callback()
            self.runs += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Job %s failed", self.name)
        finally:
            self._running = False
        return True

    def cancel(self) -> None:
        self._cancelled = True


@runtime_checkable
class Scheduler(Protocol):
    def every(self, name: str, interval: float, callback: JobCallback) -> ScheduledJob: ...


class _AsyncioJob(ScheduledJob):
    """ScheduledJob driven by a background task on the event loop."""

    def __init__(self, name: str, interval: float, callback: JobCallback) -> None:
        super().__init__(name, interval, callback)
        self._task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[bool]] = set()

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name=f"job:{self.name}"
        )

    async def _loop(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self.interval)
            if self._cancelled:
                break
            # Fire without awaiting so the timer keeps its cadence; a tick that
            # lands while this one is still running is skipped by fire()
            task = asyncio.create_task(self.fire())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    def cancel(self) -> None:
        super().cancel()
        if self._task is not None:
            self._task.cancel()
            self._task = None


class AsyncioScheduler:
    """Schedules jobs on the running event loop.  Must be used inside one."""

    def every(self, name: str, interval: float, callback: JobCallback) -> ScheduledJob:
        job = _AsyncioJob(name, interval, callback)
        job.start()
        logger.debug("Scheduled job %s every %.2fs", name, interval)
        return job


class ManualScheduler:
    """Virtual-time scheduler.

    Jobs fire only when a test calls ``await advance(seconds)``.  Each due
    job is started as its own task, so a job that is still suspended when
    its next deadline passes gets skipped exactly like on a real timer.
    """

    def __init__(self, clock: ManualClock | None = None) -> None:
        self.clock = clock or ManualClock()
        self._jobs: list[tuple[ScheduledJob, list[float]]] = []
        self._inflight: set[asyncio.Task[bool]] = set()

    def every(self, name: str, interval: float, callback: JobCallback) -> ScheduledJob:
        job = ScheduledJob(name, interval, callback)
        # next deadline kept in a one-element list so it can be updated in place
        self._jobs.append((job, [self.clock.time() + interval]))
        return job

    @property
    def jobs(self) -> list[ScheduledJob]:
        return [job for job, _ in self._jobs if not job.cancelled]

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward, firing every deadline passed on the way."""
        target = self.clock.time() + seconds
        while True:
            live = [(job, due) for job, due in self._jobs if not job.cancelled]
            pending = [(due[0], job, due) for job, due in live if due[0] <= target]
            if not pending:
                break
            when, job, due = min(pending, key=lambda item: item[0])
            self.clock.set(when)
            due[0] = when + job.interval
            task = asyncio.create_task(job.fire())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            await self._settle()
        self.clock.set(target)
        await self._settle()
        self._jobs = [(job, due) for job, due in self._jobs if not job.cancelled]

    async def _settle(self) -> None:
        # Let started jobs run until they finish or block on something
        # that virtual time can't resolve
        for _ in range(50):
            await asyncio.sleep(0)

    async def drain(self) -> None:
        """Wait for every in-flight job invocation to finish."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
