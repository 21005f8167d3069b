"""Durable local key-value storage.

Same shape as the browser's localStorage the engine grew out of: string
keys, JSON string values.  Every ``set_item`` is committed before it
returns, which is what lets the progress store acknowledge a save only
after it is durable.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from proctorsync.db.engine import session_factory
from proctorsync.db.tables import LocalStorageRow

logger = logging.getLogger(__name__)


class LocalStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...
    def set_item(self, key: str, value: str) -> None: ...
    def remove_item(self, key: str) -> None: ...
    def keys(self, prefix: str = "") -> list[str]: ...


class InMemoryLocalStorage:
    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._items if k.startswith(prefix))

    def clear(self) -> None:
        self._items.clear()


class SqlLocalStorage:
    """Satisfies LocalStorage with one SQLAlchemy row per key."""

    def __init__(self, factory: sessionmaker[Session]) -> None:
        self._factory = factory

    def get_item(self, key: str) -> str | None:
        with self._factory() as session:
            row = session.get(LocalStorageRow, key)
            return None if row is None else row.value

    def set_item(self, key: str, value: str) -> None:
        with self._factory.begin() as session:
            row = session.get(LocalStorageRow, key)
            now = int(time.time() * 1000)
            if row is None:
                session.add(LocalStorageRow(key=key, value=value, updated_at=now))
            else:
                row.value = value
                row.updated_at = now

    def remove_item(self, key: str) -> None:
        with self._factory.begin() as session:
            session.execute(delete(LocalStorageRow).where(LocalStorageRow.key == key))

    def keys(self, prefix: str = "") -> list[str]:
        stmt = select(LocalStorageRow.key).order_by(LocalStorageRow.key)
        if prefix:
            # startswith() escapes % and _ so course ids are matched literally
            stmt = stmt.where(LocalStorageRow.key.startswith(prefix, autoescape=True))
        with self._factory() as session:
            return list(session.execute(stmt).scalars())


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if session_factory is not None:
    local_storage: LocalStorage = SqlLocalStorage(session_factory)
else:
    local_storage = InMemoryLocalStorage()
