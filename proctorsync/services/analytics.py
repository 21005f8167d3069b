"""Per-user video analytics for the dashboard.

Reads the user's video records from the remote store (the copy every
device converges on) and reduces them to per-video and per-course
numbers.  ``AnalyticsRefresher`` keeps a fresh snapshot while a dashboard
is open, polling every ANALYTICS_REFRESH_INTERVAL seconds.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from proctorsync.core.clock import Clock, epoch_ms, system_clock
from proctorsync.core.config import SETTINGS
from proctorsync.models.progress import VideoProgress
from proctorsync.repos.remote_store import RemoteStore, remote_store, videos_path
from proctorsync.services.scheduler import ScheduledJob, Scheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VideoStat:
    course_id: str
    video_id: str
    progress: int
    watch_time: float
    violations: int
    completed: bool
    last_sync_time: int

    def to_record(self) -> dict[str, Any]:
        return {
            "courseId": self.course_id,
            "videoId": self.video_id,
            "progress": self.progress,
            "watchTime": self.watch_time,
            "violations": self.violations,
            "completed": self.completed,
            "lastSyncTime": self.last_sync_time,
        }


@dataclass(frozen=True, slots=True)
class CourseStat:
    course_id: str
    videos_tracked: int
    completed_videos: int
    watch_time: float
    violations: int

    def to_record(self) -> dict[str, Any]:
        return {
            "courseId": self.course_id,
            "videosTracked": self.videos_tracked,
            "completedVideos": self.completed_videos,
            "watchTime": self.watch_time,
            "violations": self.violations,
        }


@dataclass(frozen=True, slots=True)
class AnalyticsSnapshot:
    user_id: str
    videos: tuple[VideoStat, ...]
    courses: tuple[CourseStat, ...]
    generated_at: int

    @property
    def total_videos_tracked(self) -> int:
        return len(self.videos)

    @property
    def average_progress(self) -> int:
        if not self.videos:
            return 0
        return round(sum(v.progress for v in self.videos) / len(self.videos))

    @property
    def total_watch_time(self) -> float:
        return sum(v.watch_time for v in self.videos)

    @property
    def total_violations(self) -> int:
        return sum(v.violations for v in self.videos)

    @property
    def last_sync_time(self) -> int:
        return max((v.last_sync_time for v in self.videos), default=0)

    def to_record(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "totalVideosTracked": self.total_videos_tracked,
            "averageProgress": self.average_progress,
            "totalWatchTime": self.total_watch_time,
            "totalViolations": self.total_violations,
            "lastSyncTime": self.last_sync_time,
            "generatedAt": self.generated_at,
            "videos": [v.to_record() for v in self.videos],
            "courses": [c.to_record() for c in self.courses],
        }


def summarize(user_id: str, records: Iterable[VideoProgress], now_ms: int) -> AnalyticsSnapshot:
    videos = sorted(
        (
            VideoStat(
                course_id=r.course_id,
                video_id=r.video_id,
                progress=r.percent_watched,
                watch_time=r.valid_watch_time,
                violations=r.violations.total,
                completed=r.completed,
                last_sync_time=r.last_sync_time,
            )
            for r in records
        ),
        key=lambda v: (v.course_id, v.video_id),
    )

    by_course: dict[str, list[VideoStat]] = {}
    for video in videos:
        by_course.setdefault(video.course_id, []).append(video)
    courses = tuple(
        CourseStat(
            course_id=course_id,
            videos_tracked=len(stats),
            completed_videos=sum(1 for s in stats if s.completed),
            watch_time=sum(s.watch_time for s in stats),
            violations=sum(s.violations for s in stats),
        )
        for course_id, stats in by_course.items()
    )
    return AnalyticsSnapshot(
        user_id=user_id, videos=tuple(videos), courses=courses, generated_at=now_ms
    )


class VideoAnalytics:
    def __init__(self, remote: RemoteStore, clock: Clock = system_clock) -> None:
        self.remote = remote
        self.clock = clock

    async def snapshot(self, user_id: str) -> AnalyticsSnapshot:
        docs = await self.remote.children(videos_path(user_id))
        records = [VideoProgress.from_record(doc, user_id=user_id) for doc in docs.values()]
        return summarize(user_id, records, epoch_ms(self.clock))


class AnalyticsRefresher:
    """Keeps ``latest`` current while a dashboard is showing."""

    def __init__(
        self,
        analytics: VideoAnalytics,
        scheduler: Scheduler,
        user_id: str,
        *,
        interval: float = SETTINGS.analytics_refresh_interval,
    ) -> None:
        self.analytics = analytics
        self.scheduler = scheduler
        self.user_id = user_id
        self.interval = interval
        self.latest: AnalyticsSnapshot | None = None
        self._job: ScheduledJob | None = None

    async def refresh(self) -> AnalyticsSnapshot | None:
        try:
            self.latest = await self.analytics.snapshot(self.user_id)
        except Exception as exc:
            # Keep showing the previous snapshot; the next tick retries
            logger.warning("Analytics refresh failed: %s", exc, extra={"user_id": self.user_id})
        return self.latest

    async def start(self) -> None:
        if self._job is not None:
            return
        await self.refresh()
        self._job = self.scheduler.every("analytics_refresh", self.interval, self.refresh)

    def stop(self) -> None:
        if self._job is not None:
            self._job.cancel()
            self._job = None


video_analytics = VideoAnalytics(remote_store)
