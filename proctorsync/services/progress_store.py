"""Local, authoritative-for-reads progress store.

Every player update lands here first.  A save is:

  read the whole record → merge the patch (apply_patch) → write it back

as one synchronous step, flushed to durable local storage before the call
returns.  Nothing in here touches the network; the sync engine picks up
dirty records on its own schedule.

Storage keys:

  video_progress:{user}:{course}:{video}     one VideoProgress (JSON)
  progress_cache:course:{user}:{course}      cached CourseProgress
  progress_cache:overall:{user}              cached OverallProgress

Each {part} is percent-encoded, so ids may contain ":" safely.

The cache keys deliberately avoid the ``course_progress_`` prefix, which
belongs to the legacy format the migration engine looks for.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote, unquote

from proctorsync.core.clock import Clock, epoch_ms, system_clock
from proctorsync.core.errors import InvalidProgressPatch
from proctorsync.models.progress import (
    ContinueLearning,
    CourseProgress,
    OverallProgress,
    ProgressPatch,
    VideoProgress,
    ViolationKind,
    apply_patch,
    compute_course_progress,
    compute_overall_progress,
    merge_records,
    same_content,
)
from proctorsync.repos.local_storage import LocalStorage, local_storage

logger = logging.getLogger(__name__)

VIDEO_PREFIX = "video_progress:"
COURSE_CACHE_PREFIX = "progress_cache:course:"
OVERALL_CACHE_PREFIX = "progress_cache:overall:"


def _part(value: str) -> str:
    # ":" separates key parts, so it must never appear inside one
    return quote(value, safe="")


def video_key(user_id: str, course_id: str, video_id: str) -> str:
    return f"{VIDEO_PREFIX}{_part(user_id)}:{_part(course_id)}:{_part(video_id)}"


def _video_prefix(user_id: str) -> str:
    return f"{VIDEO_PREFIX}{_part(user_id)}:"


def _course_cache_key(user_id: str, course_id: str) -> str:
    return f"{COURSE_CACHE_PREFIX}{_part(user_id)}:{_part(course_id)}"


def _overall_cache_key(user_id: str) -> str:
    return f"{OVERALL_CACHE_PREFIX}{_part(user_id)}"


class ProgressStore:
    def __init__(self, storage: LocalStorage, clock: Clock = system_clock) -> None:
        self._storage = storage
        self.clock = clock

    # -- reads --------------------------------------------------------------

    def get_video_progress(
        self, user_id: str, course_id: str, video_id: str
    ) -> VideoProgress | None:
        raw = self._storage.get_item(video_key(user_id, course_id, video_id))
        if raw is None:
            return None
        return VideoProgress.from_record(
            json.loads(raw), user_id=user_id, course_id=course_id, video_id=video_id
        )

    def list_video_progress(
        self, user_id: str, course_id: str | None = None
    ) -> list[VideoProgress]:
        records = []
        prefix = _video_prefix(user_id)
        for key in self._storage.keys(prefix):
            raw_course, _, raw_video = key[len(prefix):].partition(":")
            if course_id is not None and unquote(raw_course) != course_id:
                continue
            raw = self._storage.get_item(key)
            if raw is None:
                continue
            records.append(
                VideoProgress.from_record(
                    json.loads(raw),
                    user_id=user_id,
                    course_id=unquote(raw_course),
                    video_id=unquote(raw_video),
                )
            )
        return records

    def list_dirty(self, user_id: str) -> list[VideoProgress]:
        return [r for r in self.list_video_progress(user_id) if r.dirty]

    def list_courses(self, user_id: str) -> list[str]:
        return sorted({r.course_id for r in self.list_video_progress(user_id)})

    def get_course_progress(
        self, user_id: str, course_id: str, total_videos: int | None = None
    ) -> CourseProgress:
        """Recompute the aggregate from the video records.

        ``total_videos`` is the catalog size when the caller knows it.  The
        largest total ever seen is remembered in the cache, so a course keeps
        its denominator even when only some of its videos have records.
        """
        cached = self._read_json(_course_cache_key(user_id, course_id))
        known_total = max(total_videos or 0, int((cached or {}).get("totalVideos", 0) or 0))
        course = compute_course_progress(
            course_id,
            self.list_video_progress(user_id, course_id),
            total_videos=known_total,
            now_ms=epoch_ms(self.clock),
        )
        self._write_json(_course_cache_key(user_id, course_id), course.to_record())
        return course

    def get_overall_progress(self, user_id: str) -> OverallProgress:
        courses = [self.get_course_progress(user_id, c) for c in self.list_courses(user_id)]
        overall = compute_overall_progress(courses, now_ms=epoch_ms(self.clock))
        self._write_json(_overall_cache_key(user_id), overall.to_record())
        return overall

    def get_continue_learning_data(self, user_id: str) -> ContinueLearning | None:
        candidates = [r for r in self.list_video_progress(user_id) if not r.completed]
        if not candidates:
            return None
        latest = max(candidates, key=lambda r: r.recency)
        return ContinueLearning(
            course_id=latest.course_id,
            video_id=latest.video_id,
            last_position=latest.last_position,
        )

    # -- writes -------------------------------------------------------------

    def save_video_progress(
        self, user_id: str, course_id: str, video_id: str, patch: ProgressPatch
    ) -> VideoProgress:
        problems = patch.validate()
        if problems:
            raise InvalidProgressPatch("; ".join(problems))

        existing = self.get_video_progress(user_id, course_id, video_id)
        try:
            updated = apply_patch(
                existing,
                patch,
                user_id=user_id,
                course_id=course_id,
                video_id=video_id,
                now_ms=epoch_ms(self.clock),
            )
        except ValueError as exc:
            raise InvalidProgressPatch(str(exc)) from exc

        if patch.completed and not updated.completed:
            logger.warning(
                "Ignoring completed=true below threshold (%.1fs of %.1fs)",
                updated.valid_watch_time,
                updated.total_duration,
                extra={"user_id": user_id, "course_id": course_id, "video_id": video_id},
            )

        self._put(updated)
        return updated

    def record_violation(
        self,
        user_id: str,
        course_id: str,
        video_id: str,
        kind: ViolationKind,
        count: int = 1,
    ) -> VideoProgress | None:
        """Increment one violation counter on an existing record.

        Returns None when the video has no record yet (nothing to attach the
        counter to until the player has reported a duration).

        updatedAt is left alone: it dates the last position report, which
        position tie-breaks and skip detection both rely on.
        """
        existing = self.get_video_progress(user_id, course_id, video_id)
        if existing is None:
            logger.debug(
                "No progress record for violation %s",
                kind,
                extra={"user_id": user_id, "course_id": course_id, "video_id": video_id},
            )
            return None
        updated = replace(
            existing,
            violations=existing.violations.incremented(kind, count),
            revision=existing.revision + 1,
            dirty=True,
        )
        self._put(updated)
        return updated

    def mark_synced(self, record: VideoProgress, sync_time: int) -> bool:
        """Store the reconciled copy of ``record`` after a remote write.

        Returns True when the local record is now clean.  If a save landed
        while the remote write was in flight, the stored revision has moved
        on: the reconciled values are merged in, but the record stays dirty
        so the newer save is pushed on the next tick.

        Returns False without writing when the record was cleared while the
        remote write was in flight.
        """
        stored = self.get_video_progress(record.user_id, record.course_id, record.video_id)
        if stored is None:
            logger.info(
                "Record cleared during sync, not restoring it",
                extra={
                    "user_id": record.user_id,
                    "course_id": record.course_id,
                    "video_id": record.video_id,
                },
            )
            return False
        if stored.revision != record.revision:
            merged = merge_records(stored, record)
            self._put(replace(merged, last_sync_time=sync_time, dirty=True))
            return False

        self._put(replace(record, last_sync_time=sync_time, dirty=False))
        return True

    def merge_remote(self, user_id: str, remote_record: Mapping[str, Any]) -> VideoProgress:
        """Fold a remote copy into the local cache (session-start pull)."""
        remote = VideoProgress.from_record(remote_record, user_id=user_id)
        local = self.get_video_progress(user_id, remote.course_id, remote.video_id)
        if local is None:
            merged = replace(remote, revision=1, dirty=False)
        else:
            merged = merge_records(local, remote)
            if same_content(merged, local) and not local.dirty:
                return local
            merged = replace(
                merged,
                revision=local.revision + 1,
                dirty=not same_content(merged, remote),
            )
        self._put(merged)
        return merged

    def store_synced(self, record: VideoProgress, sync_time: int) -> VideoProgress:
        """Write a record that is already in the remote store (migration)."""
        existing = self.get_video_progress(record.user_id, record.course_id, record.video_id)
        revision = existing.revision + 1 if existing is not None else 1
        stored = replace(record, last_sync_time=sync_time, revision=revision, dirty=False)
        self._put(stored)
        return stored

    def clear_all_progress(self, user_id: str) -> int:
        """Delete every record and cached aggregate for a user.  Returns the count."""
        removed = 0
        for prefix in (_video_prefix(user_id), f"{COURSE_CACHE_PREFIX}{_part(user_id)}:"):
            for key in self._storage.keys(prefix):
                self._storage.remove_item(key)
                removed += 1
        overall_key = _overall_cache_key(user_id)
        if self._storage.get_item(overall_key) is not None:
            self._storage.remove_item(overall_key)
            removed += 1
        logger.warning("Cleared all progress", extra={"user_id": user_id})
        return removed

    # -- internals ----------------------------------------------------------

    def _put(self, record: VideoProgress) -> None:
        self._write_json(
            video_key(record.user_id, record.course_id, record.video_id),
            record.to_local(),
        )
        self.get_course_progress(record.user_id, record.course_id)

    def _read_json(self, key: str) -> dict[str, Any] | None:
        raw = self._storage.get_item(key)
        return None if raw is None else json.loads(raw)

    def _write_json(self, key: str, value: dict[str, Any]) -> None:
        self._storage.set_item(key, json.dumps(value))


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

progress_store = ProgressStore(local_storage)
