"""Redis connection management for the remote store.

The remote progress store is a hierarchical key-value database.  Redis
gives us the same model (one JSON document per path) plus sorted sets for
the append-only alerts collection.

When REDIS_URL is not set, ``redis_pool`` is None and every consumer falls
back to the in-memory remote store, so local dev and tests need no server.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from proctorsync.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Verify connectivity on startup and release the pool on shutdown.

    An unreachable remote store is not fatal: progress keeps landing in
    local storage and the sync engine retries on its next tick.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured, remote store is in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Remote store connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Remote store unreachable on startup; sync will retry")

    try:
        yield
    finally:
        await redis_pool.aclose()
        logger.info("Redis connection pool closed")
