"""Best-effort writer for the append-only alerts collection.

An alert that can't be written is logged, counted and dropped.  Alerts
are advisory records for instructors; retrying them would only delay the
detector that raised them.
"""

from __future__ import annotations

import logging
from typing import Any

from proctorsync.core.metrics import ALERTS
from proctorsync.models.alert import Alert
from proctorsync.repos.remote_store import RemoteStore, remote_store

logger = logging.getLogger(__name__)


class AlertSink:
    def __init__(self, remote: RemoteStore) -> None:
        self.remote = remote

    async def write(self, alert: Alert) -> bool:
        log_extra = {
            "user_id": alert.user_id,
            "course_id": alert.course_id,
            "video_id": alert.video_id,
            "alert_type": alert.type.value,
        }
        try:
            await self.remote.push_alert(alert.to_remote())
        except Exception:
            ALERTS.labels(result="failed").inc()
            logger.exception("Alert write failed, dropping it", extra=log_extra)
            return False

        ALERTS.labels(result="written").inc()
        logger.info("Alert recorded: %s", alert.message, extra=log_extra)
        return True

    async def recent(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        return await self.remote.alerts_for_user(user_id, limit)


alert_sink = AlertSink(remote_store)
