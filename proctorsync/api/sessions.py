"""Learning session lifecycle and proctoring signals.

POST   /v1/sessions/{user_id}           start: legacy migration, remote pull, sync jobs
POST   /v1/sessions/{user_id}/signals   tab_hidden | tab_visible | copy | paste
DELETE /v1/sessions/{user_id}           end: flush pending writes, stop sync jobs

Active sessions live in ``_SESSIONS`` for the life of the process; the
application lifespan ends whatever is still open on shutdown so pending
progress is flushed before the process exits.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field

from proctorsync.core.config import SETTINGS
from proctorsync.models.alert import SessionSignal
from proctorsync.models.migration import DEFAULT_COURSE_IDS
from proctorsync.proctoring.capabilities import FacePresenceCapability, OpenCVFaceCapability
from proctorsync.services.analytics import video_analytics
from proctorsync.services.session import LearningSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])

_SESSIONS: dict[str, LearningSession] = {}


class SessionStartIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_ids: list[str] | None = Field(default=None, alias="courseIds")


class SignalIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    signal: SessionSignal
    course_id: str = Field(alias="courseId", min_length=1)
    video_id: str = Field(alias="videoId", min_length=1)


def _face_capability() -> FacePresenceCapability | None:
    if not SETTINGS.face_monitoring:
        return None
    return OpenCVFaceCapability(SETTINGS.camera_index)


def _session_out(session: LearningSession) -> dict:
    migration = session.migration_result
    face_state = session.face_state
    return {
        "userId": session.user_id,
        "active": session.active,
        "migration": migration.to_record() if migration is not None else None,
        "pulledRecords": session.pulled,
        "faceMonitoring": face_state.value if face_state is not None else None,
    }


def active_session(user_id: str) -> LearningSession | None:
    session = _SESSIONS.get(user_id)
    return session if session is not None and session.active else None


def _require_session(user_id: str) -> LearningSession:
    session = active_session(user_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active session")
    return session


@router.post("/{user_id}")
async def start_session(
    user_id: str, response: Response, body: SessionStartIn | None = None
) -> dict:
    existing = _SESSIONS.get(user_id)
    if existing is not None and existing.active:
        response.status_code = status.HTTP_200_OK
        return _session_out(existing)

    course_ids = (body.course_ids if body else None) or list(DEFAULT_COURSE_IDS)
    session = LearningSession(
        user_id,
        course_ids=course_ids,
        face_capability=_face_capability(),
        analytics=video_analytics,
    )
    await session.start()
    _SESSIONS[user_id] = session
    response.status_code = status.HTTP_201_CREATED
    return _session_out(session)


@router.post("/{user_id}/signals")
async def report_signal(user_id: str, body: SignalIn) -> dict:
    session = _require_session(user_id)
    events = session.signal(body.signal, body.course_id, body.video_id)
    return {
        "userId": user_id,
        "signal": body.signal.value,
        "events": [{"type": e.type.value, "message": e.message} for e in events],
    }


@router.delete("/{user_id}")
async def end_session(user_id: str) -> dict:
    session = _SESSIONS.pop(user_id, None)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active session")
    report = await session.end()
    return {
        "userId": user_id,
        "active": False,
        "sync": report.to_record() if report is not None else None,
    }


async def end_all_sessions() -> None:
    """Flush and stop every open session (application shutdown)."""
    while _SESSIONS:
        user_id, session = _SESSIONS.popitem()
        try:
            await session.end()
        except Exception:
            logger.exception("Failed to end session on shutdown", extra={"user_id": user_id})
