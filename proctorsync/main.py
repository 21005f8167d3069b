from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from proctorsync.api.alerts import router as alerts_router
from proctorsync.api.analytics import router as analytics_router
from proctorsync.api.health import router as health_router
from proctorsync.api.metrics_endpoint import router as metrics_router
from proctorsync.api.migrate import router as migrate_router
from proctorsync.api.progress import router as progress_router
from proctorsync.api.sessions import end_all_sessions
from proctorsync.api.sessions import router as sessions_router
from proctorsync.core.config import SETTINGS
from proctorsync.core.logging import setup_logging
from proctorsync.db.engine import lifespan_db
from proctorsync.db.redis import lifespan_redis
from proctorsync.middleware.metrics import MetricsMiddleware
from proctorsync.middleware.request_context import RequestContextMiddleware
from proctorsync.services.sync_engine import sync_engine

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Teardown runs in reverse: sessions flush into the stores before
    # the Redis pool and the local storage engine are closed.
    async with lifespan_db():
        async with lifespan_redis():
            try:
                yield
            finally:
                await end_all_sessions()
                sync_engine.stop()


app = FastAPI(
    title="proctorsync",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last-added runs first: RequestContext (outermost) → Metrics → CORS → route
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(migrate_router)
app.include_router(progress_router)
app.include_router(alerts_router)
app.include_router(analytics_router)
app.include_router(sessions_router)

logger.info(
    "proctorsync started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
