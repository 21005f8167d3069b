"""Health and readiness endpoints.

  /health (liveness):  "is this process alive?"  Always 200; the body
                       reports per-dependency status, and ``degraded``
                       means "alive but impaired".
  /ready (readiness):  "can this instance take traffic?"  Both stores have
                       in-memory fallbacks and an unreachable remote store
                       only delays sync, so the answer is yes whenever the
                       process can respond.

Checks:
  remote_store   ping (Redis) or ``not_configured`` (in-memory)
  local_storage  ``sql`` or ``in_memory``
  sync_outbox    number of records waiting for an acknowledged remote write
"""

from __future__ import annotations

from fastapi import APIRouter, Response

from proctorsync.db.engine import session_factory
from proctorsync.db.redis import redis_pool
from proctorsync.repos.remote_store import remote_store
from proctorsync.services.sync_engine import sync_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    checks: dict[str, str | int] = {}
    overall = "ok"

    if redis_pool is not None:
        if await remote_store.ping():
            checks["remote_store"] = "ok"
        else:
            checks["remote_store"] = "degraded"
            overall = "degraded"
    else:
        checks["remote_store"] = "not_configured"

    checks["local_storage"] = "sql" if session_factory is not None else "in_memory"
    checks["sync_outbox"] = len(sync_engine.outbox)

    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    return Response(status_code=200)
