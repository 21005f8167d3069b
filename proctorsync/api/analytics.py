from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from proctorsync.api.sessions import active_session
from proctorsync.core.errors import RemoteStoreUnavailable
from proctorsync.services.analytics import video_analytics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/analytics", tags=["analytics"])


@router.get("/{user_id}")
async def get_video_analytics(user_id: str) -> dict:
    """Dashboard snapshot built from the learner's synced video records.

    While the remote store is down, a learner with an open session gets the
    last snapshot their session refreshed instead of an error.
    """
    try:
        snapshot = await video_analytics.snapshot(user_id)
    except RemoteStoreUnavailable as exc:
        session = active_session(user_id)
        cached = session.analytics_snapshot if session is not None else None
        if cached is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Remote store unavailable",
            ) from exc
        logger.warning("Serving last refreshed analytics: %s", exc, extra={"user_id": user_id})
        return cached.to_record()
    return snapshot.to_record()
