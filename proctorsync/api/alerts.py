from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from proctorsync.core.errors import RemoteStoreUnavailable
from proctorsync.services.alert_sink import alert_sink

router = APIRouter(prefix="/v1/alerts", tags=["alerts"])


@router.get("/{user_id}")
async def list_alerts(
    user_id: str,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[dict]:
    """Alerts for one learner, newest first."""
    try:
        return await alert_sink.recent(user_id, limit)
    except RemoteStoreUnavailable as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Alert store unavailable",
        ) from exc
