from __future__ import annotations

from dataclasses import dataclass
from typing import Any

MIGRATED_VIDEO_DURATION = 1200.0  # legacy data has no durations; assume 20 min
DEFAULT_LEGACY_TOTAL_VIDEOS = 10
MAX_LEGACY_TOTAL_VIDEOS = 500  # one remote write per synthesized video
LEGACY_KEY_PREFIX = "course_progress_"

# Courses that existed when progress was still stored per course
DEFAULT_COURSE_IDS = ("web-development", "app-development", "game-development")


@dataclass(frozen=True, slots=True)
class OldCourseProgress:
    """Flat per-course record from the pre-per-video format."""

    progress: float
    completed_videos: int
    total_videos: int

    def to_record(self) -> dict[str, Any]:
        return {
            "progress": self.progress,
            "completedVideos": self.completed_videos,
            "totalVideos": self.total_videos,
        }


@dataclass(frozen=True, slots=True)
class MigrationResult:
    success: bool
    migrated_courses: int
    total_videos: int
    completed_videos: int
    timestamp: int

    @staticmethod
    def failed(timestamp: int) -> MigrationResult:
        return MigrationResult(
            success=False,
            migrated_courses=0,
            total_videos=0,
            completed_videos=0,
            timestamp=timestamp,
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "migratedCourses": self.migrated_courses,
            "totalVideos": self.total_videos,
            "completedVideos": self.completed_videos,
            "timestamp": self.timestamp,
        }
