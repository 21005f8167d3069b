"""Progress records and the pure merge/aggregation rules around them.

The store, the sync engine and the migration engine all funnel through
``apply_patch`` and ``merge_records`` so the monotonic guarantees live in
exactly one place:

  - validWatchTime and the four violation counters only go up (max wins)
  - completed only goes from False to True, and only at or above
    COMPLETION_THRESHOLD of the duration
  - lastPosition follows the most recent writer
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Literal

COMPLETION_THRESHOLD = 0.9
REPLAY_TOLERANCE = 1.5
QUIZ_UNLOCK_PROGRESS = 80
SKIP_THRESHOLD = 5.0  # seconds of forward movement playback cannot explain

ViolationKind = Literal["tabSwitches", "faceMissingEvents", "autoPauses", "skipCount"]

VIOLATION_KINDS: tuple[ViolationKind, ...] = (
    "tabSwitches",
    "faceMissingEvents",
    "autoPauses",
    "skipCount",
)


@dataclass(frozen=True, slots=True)
class ViolationCounts:
    tab_switches: int = 0
    face_missing_events: int = 0
    auto_pauses: int = 0
    skip_count: int = 0

    def get(self, kind: ViolationKind) -> int:
        return self.to_record()[kind]

    def merged(self, other: ViolationCounts) -> ViolationCounts:
        return ViolationCounts(
            tab_switches=max(self.tab_switches, other.tab_switches),
            face_missing_events=max(self.face_missing_events, other.face_missing_events),
            auto_pauses=max(self.auto_pauses, other.auto_pauses),
            skip_count=max(self.skip_count, other.skip_count),
        )

    def incremented(self, kind: ViolationKind, count: int = 1) -> ViolationCounts:
        values = self.to_record()
        values[kind] += count
        return ViolationCounts.from_record(values)

    @property
    def total(self) -> int:
        return (
            self.tab_switches
            + self.face_missing_events
            + self.auto_pauses
            + self.skip_count
        )

    def to_record(self) -> dict[str, int]:
        return {
            "tabSwitches": self.tab_switches,
            "faceMissingEvents": self.face_missing_events,
            "autoPauses": self.auto_pauses,
            "skipCount": self.skip_count,
        }

    @staticmethod
    def from_record(data: Mapping[str, Any] | None) -> ViolationCounts:
        data = data or {}
        return ViolationCounts(
            tab_switches=int(data.get("tabSwitches", 0) or 0),
            face_missing_events=int(data.get("faceMissingEvents", 0) or 0),
            auto_pauses=int(data.get("autoPauses", 0) or 0),
            skip_count=int(data.get("skipCount", 0) or 0),
        )


@dataclass(frozen=True, slots=True)
class VideoProgress:
    """One learner's progress on one video.

    revision and dirty are local bookkeeping for the sync engine and are
    never written to the remote store.
    """

    user_id: str
    course_id: str
    video_id: str
    total_duration: float
    last_position: float = 0.0
    valid_watch_time: float = 0.0
    completed: bool = False
    violations: ViolationCounts = field(default_factory=ViolationCounts)
    last_sync_time: int = 0
    updated_at: int = 0
    revision: int = 0
    dirty: bool = False

    @property
    def remote_key(self) -> str:
        return f"{self.course_id}_{self.video_id}"

    @property
    def recency(self) -> int:
        return self.updated_at or self.last_sync_time

    @property
    def percent_watched(self) -> int:
        if self.completed:
            return 100
        if self.total_duration <= 0:
            return 0
        return min(99, round(self.valid_watch_time / self.total_duration * 100))

    def to_remote(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "courseId": self.course_id,
            "videoId": self.video_id,
            "lastPosition": self.last_position,
            "totalDuration": self.total_duration,
            "validWatchTime": self.valid_watch_time,
            "completed": self.completed,
            "violations": self.violations.to_record(),
            "lastSyncTime": self.last_sync_time,
            "updatedAt": self.updated_at,
        }

    def to_local(self) -> dict[str, Any]:
        record = self.to_remote()
        record["revision"] = self.revision
        record["dirty"] = self.dirty
        return record

    @staticmethod
    def from_record(
        data: Mapping[str, Any],
        *,
        user_id: str | None = None,
        course_id: str | None = None,
        video_id: str | None = None,
    ) -> VideoProgress:
        """Build from a local or remote record.

        Ids passed by the caller come from the key or path the record was
        read from and win over the ids stored inside the document.

        Remote records written by older clients use ``duration`` /
        ``watchTime`` / ``currentTime``; those names are accepted too.
        """
        duration = data.get("totalDuration", data.get("duration", 0)) or 0
        watch = data.get("validWatchTime", data.get("watchTime", 0)) or 0
        position = data.get("lastPosition", data.get("currentTime", 0)) or 0
        return VideoProgress(
            user_id=str(user_id or data.get("userId") or ""),
            course_id=str(course_id or data.get("courseId") or ""),
            video_id=str(video_id or data.get("videoId") or ""),
            total_duration=float(duration),
            last_position=float(position),
            valid_watch_time=float(watch),
            completed=bool(data.get("completed", False)),
            violations=ViolationCounts.from_record(data.get("violations")),
            last_sync_time=int(data.get("lastSyncTime", 0) or 0),
            updated_at=int(data.get("updatedAt", 0) or 0),
            revision=int(data.get("revision", 0) or 0),
            dirty=bool(data.get("dirty", False)),
        )


@dataclass(frozen=True, slots=True)
class ProgressPatch:
    """Partial update reported by the player.  None means "not reported"."""

    last_position: float | None = None
    total_duration: float | None = None
    valid_watch_time: float | None = None
    completed: bool | None = None
    violations: Mapping[str, int] | None = None
    last_sync_time: int | None = None

    def validate(self) -> list[str]:
        problems: list[str] = []
        for name in ("last_position", "valid_watch_time"):
            value = getattr(self, name)
            if value is not None and (not math.isfinite(value) or value < 0):
                problems.append(f"{name} must be a finite number >= 0")
        if self.total_duration is not None and (
            not math.isfinite(self.total_duration) or self.total_duration <= 0
        ):
            problems.append("total_duration must be a finite number > 0")
        for kind, count in (self.violations or {}).items():
            if kind not in VIOLATION_KINDS:
                problems.append(f"unknown violation counter {kind!r}")
            elif count < 0:
                problems.append(f"violation counter {kind} must be >= 0")
        return problems


def completion_reached(valid_watch_time: float, total_duration: float) -> bool:
    return total_duration > 0 and valid_watch_time >= total_duration * COMPLETION_THRESHOLD


def _clamp_watch_time(valid_watch_time: float, total_duration: float) -> float:
    return min(valid_watch_time, total_duration * REPLAY_TOLERANCE)


def _clamp_position(position: float, total_duration: float) -> float:
    return min(max(position, 0.0), total_duration)


def skip_detected(existing: VideoProgress, position: float, now_ms: int) -> bool:
    """True when the position moved further ahead than real time allows.

    A brand-new record (updated_at == 0) has no reference point and never
    counts as a skip; neither does seeking backwards.
    """
    if existing.updated_at <= 0:
        return False
    elapsed = max(0.0, (now_ms - existing.updated_at) / 1000)
    return position - existing.last_position - elapsed > SKIP_THRESHOLD


def apply_patch(
    existing: VideoProgress | None,
    patch: ProgressPatch,
    *,
    user_id: str,
    course_id: str,
    video_id: str,
    now_ms: int,
) -> VideoProgress:
    """Merge a player patch into the current record (or create one).

    Caller must have validated the patch.  Raises ValueError when a new
    record is created without a duration.
    """
    if existing is None:
        if patch.total_duration is None:
            raise ValueError("total_duration is required for the first save of a video")
        existing = VideoProgress(
            user_id=user_id,
            course_id=course_id,
            video_id=video_id,
            total_duration=patch.total_duration,
        )

    duration = patch.total_duration if patch.total_duration is not None else existing.total_duration
    watch = existing.valid_watch_time
    if patch.valid_watch_time is not None:
        watch = max(watch, patch.valid_watch_time)
    watch = max(existing.valid_watch_time, _clamp_watch_time(watch, duration))

    position = existing.last_position if patch.last_position is None else patch.last_position
    position = _clamp_position(position, duration)
    violations = existing.violations
    if patch.last_position is not None and skip_detected(existing, position, now_ms):
        violations = violations.incremented("skipCount")
    if patch.violations:
        violations = violations.merged(ViolationCounts.from_record(patch.violations))

    return replace(
        existing,
        total_duration=duration,
        last_position=position,
        valid_watch_time=watch,
        completed=existing.completed or completion_reached(watch, duration),
        violations=violations,
        last_sync_time=(
            existing.last_sync_time if patch.last_sync_time is None else patch.last_sync_time
        ),
        updated_at=now_ms,
        revision=existing.revision + 1,
        dirty=True,
    )


def merge_records(local: VideoProgress, remote: VideoProgress) -> VideoProgress:
    """Field-level reconciliation of two copies of the same video record.

    Durations, watch time and counters: max.  Position: the copy with the
    later updatedAt (falling back to lastSyncTime) wins; ties keep local.
    Local bookkeeping (revision, dirty) is preserved from ``local``.
    """
    duration = max(local.total_duration, remote.total_duration)
    watch = _clamp_watch_time(max(local.valid_watch_time, remote.valid_watch_time), duration)
    newer = remote if remote.recency > local.recency else local
    return replace(
        local,
        total_duration=duration,
        last_position=_clamp_position(newer.last_position, duration),
        valid_watch_time=watch,
        completed=local.completed or remote.completed or completion_reached(watch, duration),
        violations=local.violations.merged(remote.violations),
        last_sync_time=max(local.last_sync_time, remote.last_sync_time),
        updated_at=max(local.updated_at, remote.updated_at),
    )


def same_content(a: VideoProgress, b: VideoProgress) -> bool:
    return a.to_remote() == b.to_remote()


@dataclass(frozen=True, slots=True)
class CourseProgress:
    """Derived per-course aggregate.  Recomputed, never edited by hand."""

    course_id: str
    total_videos: int = 0
    completed_videos: int = 0
    progress: int = 0
    quiz_unlocked: bool = False
    total_watch_time: float = 0.0
    last_updated: int = 0

    def to_record(self) -> dict[str, Any]:
        return {
            "courseId": self.course_id,
            "totalVideos": self.total_videos,
            "completedVideos": self.completed_videos,
            "progress": self.progress,
            "quizUnlocked": self.quiz_unlocked,
            "totalWatchTime": self.total_watch_time,
            "lastUpdated": self.last_updated,
        }


@dataclass(frozen=True, slots=True)
class OverallProgress:
    overall_progress: int = 0
    total_courses: int = 0
    completed_courses: int = 0
    total_videos: int = 0
    completed_videos: int = 0
    last_updated: int = 0

    def to_record(self) -> dict[str, Any]:
        return {
            "overallProgress": self.overall_progress,
            "totalCourses": self.total_courses,
            "completedCourses": self.completed_courses,
            "totalVideos": self.total_videos,
            "completedVideos": self.completed_videos,
            "lastUpdated": self.last_updated,
        }


@dataclass(frozen=True, slots=True)
class ContinueLearning:
    course_id: str
    video_id: str
    last_position: float

    def to_record(self) -> dict[str, Any]:
        return {
            "courseId": self.course_id,
            "videoId": self.video_id,
            "lastPosition": self.last_position,
        }


def percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return min(100, max(0, round(part / whole * 100)))


def compute_course_progress(
    course_id: str,
    records: Iterable[VideoProgress],
    *,
    total_videos: int | None = None,
    now_ms: int = 0,
) -> CourseProgress:
    videos = list(records)
    completed = sum(1 for v in videos if v.completed)
    total = max(len(videos), total_videos or 0)
    progress = percent(completed, total)
    return CourseProgress(
        course_id=course_id,
        total_videos=total,
        completed_videos=completed,
        progress=progress,
        quiz_unlocked=progress >= QUIZ_UNLOCK_PROGRESS,
        total_watch_time=sum(v.valid_watch_time for v in videos),
        last_updated=now_ms,
    )


def compute_overall_progress(
    courses: Iterable[CourseProgress], *, now_ms: int = 0
) -> OverallProgress:
    course_list = list(courses)
    total_videos = sum(c.total_videos for c in course_list)
    completed_videos = sum(c.completed_videos for c in course_list)
    return OverallProgress(
        overall_progress=percent(completed_videos, total_videos),
        total_courses=len(course_list),
        completed_courses=sum(1 for c in course_list if c.progress == 100),
        total_videos=total_videos,
        completed_videos=completed_videos,
        last_updated=now_ms,
    )
