"""One-time migration of the legacy per-course progress format.

Before per-video tracking existed, progress lived in local storage as one
flat record per course:

    course_progress_{courseId} → {"completedVideos": 3 | [...], "totalVideos": 10}

Migration turns each of those into ``video-1 .. video-N`` records (the
first ``completedVideos`` of them complete, durations assumed to be
MIGRATED_VIDEO_DURATION) and writes them to the remote store and the local
progress store, followed by the course and overall aggregates.

IDEMPOTENCE
-----------
Each synthesized record goes through ``merge_records`` against whatever
already exists locally and remotely.  Watch time, counters and completion
only ever go up, and synthesized records carry updatedAt = 0 so they never
win a position tie-break.  Running the migration twice, or after the
learner already made progress on the new system, loses nothing.

The caller clears the legacy keys only after ``success`` is True.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

from proctorsync.core.clock import Clock, epoch_ms, system_clock
from proctorsync.core.errors import MalformedLegacyData
from proctorsync.core.metrics import MIGRATIONS
from proctorsync.models.alert import Alert, ViolationType
from proctorsync.models.migration import (
    DEFAULT_COURSE_IDS,
    DEFAULT_LEGACY_TOTAL_VIDEOS,
    LEGACY_KEY_PREFIX,
    MAX_LEGACY_TOTAL_VIDEOS,
    MIGRATED_VIDEO_DURATION,
    MigrationResult,
    OldCourseProgress,
)
from proctorsync.models.progress import VideoProgress, merge_records
from proctorsync.repos.local_storage import LocalStorage, local_storage
from proctorsync.repos.remote_store import (
    RemoteStore,
    courses_path,
    overall_path,
    remote_store,
    video_path,
)
from proctorsync.services.alert_sink import AlertSink, alert_sink
from proctorsync.services.progress_store import ProgressStore, progress_store

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    # json.loads turns Infinity, NaN and 1e400 into floats int() cannot take
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def parse_legacy_record(course_id: str, data: Any) -> OldCourseProgress:
    """Parse one legacy record (JSON text or an already-decoded mapping).

    completedVideos may be a count or the array of completed video ids.
    totalVideos defaults to DEFAULT_LEGACY_TOTAL_VIDEOS when missing or 0.
    Raises MalformedLegacyData for anything else.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise MalformedLegacyData(course_id, f"invalid JSON ({exc.msg})") from exc
    if not isinstance(data, Mapping):
        raise MalformedLegacyData(course_id, "expected an object")

    raw_completed = data.get("completedVideos")
    if isinstance(raw_completed, list):
        completed = len(raw_completed)
    elif raw_completed is None:
        completed = 0
    elif _is_number(raw_completed) and raw_completed >= 0:
        completed = int(raw_completed)
    else:
        raise MalformedLegacyData(course_id, "completedVideos must be a count or a list")

    raw_total = data.get("totalVideos")
    if raw_total is None or raw_total == 0:
        total = DEFAULT_LEGACY_TOTAL_VIDEOS
    elif _is_number(raw_total) and raw_total > 0:
        total = int(raw_total)
    else:
        raise MalformedLegacyData(course_id, "totalVideos must be a positive number")
    if total > MAX_LEGACY_TOTAL_VIDEOS:
        raise MalformedLegacyData(
            course_id, f"totalVideos must not exceed {MAX_LEGACY_TOTAL_VIDEOS}"
        )

    completed = min(completed, total)
    return OldCourseProgress(
        progress=completed / total * 100,
        completed_videos=completed,
        total_videos=total,
    )


def parse_course_map(course_map: Any) -> dict[str, OldCourseProgress]:
    """Strict variant for request bodies: the first bad entry raises."""
    if not isinstance(course_map, Mapping):
        raise MalformedLegacyData("*", "courseProgressMap must be an object")
    return {str(cid): parse_legacy_record(str(cid), entry) for cid, entry in course_map.items()}


class MigrationEngine:
    def __init__(
        self,
        store: ProgressStore,
        remote: RemoteStore,
        storage: LocalStorage,
        sink: AlertSink,
        clock: Clock = system_clock,
    ) -> None:
        self.store = store
        self.remote = remote
        self.storage = storage
        self.sink = sink
        self.clock = clock

    def is_migration_needed(self, user_id: str) -> bool:
        # Legacy records predate per-user keys; any of them means "migrate"
        return bool(self.storage.keys(LEGACY_KEY_PREFIX))

    def get_old_local_storage_data(
        self, course_ids: Iterable[str] = DEFAULT_COURSE_IDS
    ) -> dict[str, OldCourseProgress]:
        result: dict[str, OldCourseProgress] = {}
        for course_id in course_ids:
            raw = self.storage.get_item(f"{LEGACY_KEY_PREFIX}{course_id}")
            if raw is None:
                continue
            try:
                result[course_id] = parse_legacy_record(course_id, raw)
            except MalformedLegacyData as exc:
                logger.warning("Skipping legacy record: %s", exc, extra={"course_id": course_id})
        return result

    async def migrate_old_data(
        self, user_id: str, course_map: Mapping[str, OldCourseProgress]
    ) -> MigrationResult:
        now = epoch_ms(self.clock)
        total_videos = completed_videos = migrated_courses = 0
        try:
            for course_id, old in course_map.items():
                total_videos += old.total_videos
                completed_videos += old.completed_videos
                for index in range(old.total_videos):
                    await self._migrate_video(user_id, course_id, index, old, now)
                migrated_courses += 1

            courses = {
                course_id: self.store.get_course_progress(
                    user_id, course_id, total_videos=old.total_videos
                ).to_record()
                for course_id, old in course_map.items()
            }
            if courses:
                await self.remote.update(courses_path(user_id), courses)
            overall = self.store.get_overall_progress(user_id)
            await self.remote.set(overall_path(user_id), overall.to_record())
        except Exception:
            MIGRATIONS.labels(result="failed").inc()
            logger.exception("Legacy migration failed", extra={"user_id": user_id})
            return MigrationResult.failed(epoch_ms(self.clock))

        result = MigrationResult(
            success=True,
            migrated_courses=migrated_courses,
            total_videos=total_videos,
            completed_videos=completed_videos,
            timestamp=now,
        )
        MIGRATIONS.labels(result="success").inc()
        logger.info(
            "Migrated %d courses with %d/%d completed videos",
            migrated_courses,
            completed_videos,
            total_videos,
            extra={"user_id": user_id},
        )
        await self.sink.write(
            Alert(
                type=ViolationType.MIGRATION_COMPLETED,
                message=(
                    f"Migrated {completed_videos}/{total_videos} videos "
                    f"from {migrated_courses} courses"
                ),
                user_id=user_id,
                course_id="",
                video_id="",
                created_at=now,
            )
        )
        return result

    async def _migrate_video(
        self, user_id: str, course_id: str, index: int, old: OldCourseProgress, now: int
    ) -> None:
        video_id = f"video-{index + 1}"
        done = index < old.completed_videos
        watched = MIGRATED_VIDEO_DURATION if done else 0.0
        record = VideoProgress(
            user_id=user_id,
            course_id=course_id,
            video_id=video_id,
            total_duration=MIGRATED_VIDEO_DURATION,
            last_position=watched,
            valid_watch_time=watched,
            completed=done,
        )

        local = self.store.get_video_progress(user_id, course_id, video_id)
        if local is not None:
            record = merge_records(local, record)

        path = video_path(user_id, course_id, video_id)
        remote_doc = await self.remote.get(path)
        if remote_doc is not None:
            record = merge_records(
                record,
                VideoProgress.from_record(
                    remote_doc, user_id=user_id, course_id=course_id, video_id=video_id
                ),
            )

        record = replace(record, last_sync_time=now)
        await self.remote.set(path, record.to_remote())
        self.store.store_synced(record, now)

    def clear_old_local_storage_data(self, course_ids: Iterable[str] = DEFAULT_COURSE_IDS) -> None:
        for course_id in course_ids:
            self.storage.remove_item(f"{LEGACY_KEY_PREFIX}{course_id}")
        logger.info("Legacy progress records cleared")

    async def migrate_legacy_progress(
        self, user_id: str, course_ids: Iterable[str] = DEFAULT_COURSE_IDS
    ) -> MigrationResult | None:
        """Session-start flow.  Returns None when there was nothing to migrate."""
        course_ids = list(course_ids)
        if not self.is_migration_needed(user_id):
            return None
        old_data = self.get_old_local_storage_data(course_ids)
        if not old_data:
            logger.info("Legacy keys present but none readable", extra={"user_id": user_id})
            return None

        result = await self.migrate_old_data(user_id, old_data)
        if result.success:
            self.clear_old_local_storage_data(course_ids)
        else:
            logger.warning("Keeping legacy records after failed migration", extra={"user_id": user_id})
        return result


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

migration_engine = MigrationEngine(progress_store, remote_store, local_storage, alert_sink)
