"""Remote hierarchical key-value store.

Layout (paths are relative to the store root):

  users/{uid}/videos/{courseId}_{videoId}   one video record
  users/{uid}/courses                       map courseId → course aggregate
  users/{uid}/overall                       overall aggregate
  alerts/{alertId}                          append-only alert records

Every document is a JSON object.  ``set`` replaces a document, ``update``
merges top-level fields into it (creating it when absent), which is what
lets two writers touch different courses under ``users/{uid}/courses``
without clobbering each other.

All operations suspend.  None of them applies a timeout; callers that need
one wrap the call themselves.
"""

from __future__ import annotations

import functools
import json
import re
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, Protocol, TypeVar, runtime_checkable
from urllib.parse import quote

from redis.exceptions import RedisError

from proctorsync.core.errors import RemoteStoreUnavailable
from proctorsync.db.redis import redis_pool

P = ParamSpec("P")
T = TypeVar("T")


def _segment(value: str) -> str:
    # Ids are opaque; "/" inside one must not open a new path level
    return quote(value, safe="")


def video_path(user_id: str, course_id: str, video_id: str) -> str:
    return f"{videos_path(user_id)}/{_segment(course_id)}_{_segment(video_id)}"


def videos_path(user_id: str) -> str:
    return f"users/{_segment(user_id)}/videos"


def courses_path(user_id: str) -> str:
    return f"users/{_segment(user_id)}/courses"


def overall_path(user_id: str) -> str:
    return f"users/{_segment(user_id)}/overall"


def _glob_escape(value: str) -> str:
    return re.sub(r"([*?\[\]\\])", r"\\\1", value)


@runtime_checkable
class RemoteStore(Protocol):
    async def get(self, path: str) -> dict[str, Any] | None: ...
    async def set(self, path: str, value: dict[str, Any]) -> None: ...
    async def update(self, path: str, fields: dict[str, Any]) -> None: ...
    async def remove(self, path: str) -> None: ...
    async def children(self, path: str) -> dict[str, dict[str, Any]]: ...
    async def push_alert(self, record: dict[str, Any]) -> str: ...
    async def alerts_for_user(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]: ...
    async def ping(self) -> bool: ...


class InMemoryRemoteStore:
    """In-memory remote store for dev and tests; no Redis needed."""

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        self._alerts: list[dict[str, Any]] = []

    async def get(self, path: str) -> dict[str, Any] | None:
        doc = self._docs.get(path)
        # Deep copy through JSON so callers can't mutate stored state
        return None if doc is None else json.loads(json.dumps(doc))

    async def set(self, path: str, value: dict[str, Any]) -> None:
        self._docs[path] = json.loads(json.dumps(value))

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        doc = self._docs.setdefault(path, {})
        doc.update(json.loads(json.dumps(fields)))

    async def remove(self, path: str) -> None:
        prefix = f"{path}/"
        for key in [k for k in self._docs if k == path or k.startswith(prefix)]:
            del self._docs[key]

    async def children(self, path: str) -> dict[str, dict[str, Any]]:
        prefix = f"{path}/"
        result: dict[str, dict[str, Any]] = {}
        for key, doc in self._docs.items():
            if key.startswith(prefix) and "/" not in key[len(prefix):]:
                result[key[len(prefix):]] = json.loads(json.dumps(doc))
        return result

    async def push_alert(self, record: dict[str, Any]) -> str:
        alert_id = str(uuid.uuid4())
        self._alerts.append({"id": alert_id, **record})
        return alert_id

    async def alerts_for_user(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        mine = [a for a in self._alerts if a.get("user_id") == user_id]
        # Stable sort keeps insertion order for equal timestamps; reverse it
        mine = list(reversed(mine))
        mine.sort(key=lambda a: a.get("timestamp", 0), reverse=True)
        return [dict(a) for a in mine[:limit]]

    async def ping(self) -> bool:
        return True

    def clear(self) -> None:
        self._docs.clear()
        self._alerts.clear()


def _translate_errors(
    func: Callable[P, Awaitable[T]],
) -> Callable[P, Awaitable[T]]:
    """Surface Redis failures as RemoteStoreUnavailable."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except RedisError as exc:
            raise RemoteStoreUnavailable(str(exc)) from exc

    return wrapper


class RedisRemoteStore:
    """Redis-backed remote store: one JSON string per path.

    Alerts are stored as documents plus a per-user sorted set scored by
    timestamp, so "newest alerts for user X" is one ZREVRANGE.
    """

    _PREFIX = "rtdb:"

    # Field-merge must be atomic: two sync ticks (or a sync tick and a
    # migration) updating different courses under users/{uid}/courses would
    # otherwise race on read-modify-write.  Lua runs atomically in Redis.
    _UPDATE_SCRIPT = """
    local current = redis.call('GET', KEYS[1])
    local doc = {}
    if current then
        doc = cjson.decode(current)
    end
    local fields = cjson.decode(ARGV[1])
    for k, v in pairs(fields) do
        doc[k] = v
    end
    redis.call('SET', KEYS[1], cjson.encode(doc))
    return 1
    """

    def __init__(self, redis_client) -> None:
        self._redis = redis_client
        self._update_script = None

    def _key(self, path: str) -> str:
        return f"{self._PREFIX}{path}"

    @_translate_errors
    async def get(self, path: str) -> dict[str, Any] | None:
        raw = await self._redis.get(self._key(path))
        return None if raw is None else json.loads(raw)

    @_translate_errors
    async def set(self, path: str, value: dict[str, Any]) -> None:
        await self._redis.set(self._key(path), json.dumps(value))

    @_translate_errors
    async def update(self, path: str, fields: dict[str, Any]) -> None:
        if self._update_script is None:
            self._update_script = self._redis.register_script(self._UPDATE_SCRIPT)
        await self._update_script(keys=[self._key(path)], args=[json.dumps(fields)])

    @_translate_errors
    async def remove(self, path: str) -> None:
        await self._redis.delete(self._key(path))
        pattern = f"{_glob_escape(self._key(path))}/*"
        keys = [k async for k in self._redis.scan_iter(match=pattern, count=100)]
        if keys:
            await self._redis.delete(*keys)

    @_translate_errors
    async def children(self, path: str) -> dict[str, dict[str, Any]]:
        prefix = f"{self._key(path)}/"
        # SCAN, not KEYS: KEYS blocks the server while it walks every key
        keys = [
            k
            async for k in self._redis.scan_iter(match=f"{_glob_escape(prefix)}*", count=100)
            if "/" not in k[len(prefix):]
        ]
        if not keys:
            return {}
        values = await self._redis.mget(keys)
        return {
            key[len(prefix):]: json.loads(raw)
            for key, raw in zip(keys, values, strict=True)
            if raw is not None
        }

    @_translate_errors
    async def push_alert(self, record: dict[str, Any]) -> str:
        alert_id = str(uuid.uuid4())
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._key(f"alerts/{alert_id}"), json.dumps(record))
            pipe.zadd(
                f"{self._PREFIX}alerts:by_user:{record.get('user_id', '')}",
                {alert_id: record.get("timestamp", 0)},
            )
            await pipe.execute()
        return alert_id

    @_translate_errors
    async def alerts_for_user(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        ids = await self._redis.zrevrange(
            f"{self._PREFIX}alerts:by_user:{user_id}", 0, limit - 1
        )
        if not ids:
            return []
        values = await self._redis.mget([self._key(f"alerts/{i}") for i in ids])
        return [
            {"id": alert_id, **json.loads(raw)}
            for alert_id, raw in zip(ids, values, strict=True)
            if raw is not None
        ]

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    remote_store: RemoteStore = RedisRemoteStore(redis_pool)
else:
    remote_store = InMemoryRemoteStore()
