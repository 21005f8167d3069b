"""SQLAlchemy engine for durable local storage.

When LOCAL_STORAGE_URL is configured (e.g. ``sqlite:///./proctorsync.db``),
provides a synchronous engine and session factory.  The progress store is
synchronous by contract ("no write is acknowledged before it is flushed"),
so this is deliberately not the async engine.

When LOCAL_STORAGE_URL is None, all exports are None and the app falls
back to the in-memory local storage.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from proctorsync.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all table models."""


if SETTINGS.local_storage_url:
    engine = create_engine(
        SETTINGS.local_storage_url,
        echo=False,
        # SQLite connections are used from the event loop thread and from
        # worker threads (camera polls run in threads)
        connect_args=(
            {"check_same_thread": False}
            if SETTINGS.local_storage_url.startswith("sqlite")
            else {}
        ),
    )
    session_factory: sessionmaker[Session] | None = sessionmaker(
        engine, expire_on_commit=False
    )
else:
    engine = None
    session_factory = None


def create_tables() -> None:
    if engine is None:
        return
    import proctorsync.db.tables  # noqa: F401

    Base.metadata.create_all(engine)


@asynccontextmanager
async def lifespan_db() -> AsyncGenerator[None, None]:
    """Startup/shutdown hook for the local storage engine."""
    if engine is None:
        logger.info("No LOCAL_STORAGE_URL configured, using in-memory local storage")
        yield
        return

    create_tables()
    logger.info("Local storage ready: %s", engine.url)
    yield
    engine.dispose()
    logger.info("Local storage engine disposed")
