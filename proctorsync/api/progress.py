"""Progress endpoints.

Reads are answered from the local progress store.  PUT saves go through
``ProgressStore.save_video_progress`` (validate, merge, flush locally) and
return immediately; the sync engine pushes them to the remote store on its
next tick, or right away via POST /sync.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from proctorsync.core.config import SETTINGS
from proctorsync.core.errors import InvalidProgressPatch
from proctorsync.models.progress import ProgressPatch, VideoProgress
from proctorsync.services.progress_store import progress_store
from proctorsync.services.sync_engine import sync_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/progress", tags=["progress"])


class ProgressPatchIn(BaseModel):
    """Player update.  Every field is optional; omitted means "unchanged"."""

    model_config = ConfigDict(populate_by_name=True)

    last_position: float | None = Field(default=None, alias="lastPosition")
    total_duration: float | None = Field(default=None, alias="totalDuration")
    valid_watch_time: float | None = Field(default=None, alias="validWatchTime")
    completed: bool | None = None
    violations: dict[str, int] | None = None

    def to_patch(self) -> ProgressPatch:
        return ProgressPatch(
            last_position=self.last_position,
            total_duration=self.total_duration,
            valid_watch_time=self.valid_watch_time,
            completed=self.completed,
            violations=self.violations,
        )


def _video_out(record: VideoProgress) -> dict:
    out = record.to_remote()
    out["percentWatched"] = record.percent_watched
    out["dirty"] = record.dirty
    return out


@router.get("/{user_id}/videos/{course_id}/{video_id}")
async def get_video_progress(user_id: str, course_id: str, video_id: str) -> dict:
    record = progress_store.get_video_progress(user_id, course_id, video_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No progress recorded")
    return _video_out(record)


@router.put("/{user_id}/videos/{course_id}/{video_id}")
async def save_video_progress(
    user_id: str, course_id: str, video_id: str, body: ProgressPatchIn
) -> dict:
    try:
        record = progress_store.save_video_progress(
            user_id, course_id, video_id, body.to_patch()
        )
    except InvalidProgressPatch as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    return _video_out(record)


@router.get("/{user_id}/courses/{course_id}")
async def get_course_progress(
    user_id: str,
    course_id: str,
    total_videos: Annotated[int | None, Query(alias="totalVideos", ge=0)] = None,
) -> dict:
    return progress_store.get_course_progress(user_id, course_id, total_videos).to_record()


@router.get("/{user_id}/overall")
async def get_overall_progress(user_id: str) -> dict:
    return progress_store.get_overall_progress(user_id).to_record()


@router.get("/{user_id}/continue")
async def get_continue_learning(user_id: str) -> dict:
    data = progress_store.get_continue_learning_data(user_id)
    if data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Nothing to continue")
    return data.to_record()


@router.post("/{user_id}/sync")
async def sync_now(user_id: str) -> dict:
    report = await sync_engine.flush(user_id)
    return report.to_record()


@router.delete("/{user_id}")
async def clear_progress(user_id: str) -> dict:
    # Destructive debug tool: never available in production
    if SETTINGS.is_prod:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Clearing progress is disabled in production",
        )
    removed = progress_store.clear_all_progress(user_id)
    sync_engine.outbox.discard_user(user_id)
    return {"userId": user_id, "removed": removed}
