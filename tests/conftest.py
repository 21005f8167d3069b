from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import proctorsync` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from proctorsync.api.sessions import _SESSIONS  # noqa: E402
from proctorsync.core.clock import ManualClock  # noqa: E402
from proctorsync.core.errors import RemoteStoreUnavailable  # noqa: E402
from proctorsync.main import app  # noqa: E402
from proctorsync.repos.local_storage import InMemoryLocalStorage, local_storage  # noqa: E402
from proctorsync.repos.remote_store import InMemoryRemoteStore, remote_store  # noqa: E402
from proctorsync.services.alert_sink import AlertSink  # noqa: E402
from proctorsync.services.progress_store import ProgressStore  # noqa: E402
from proctorsync.services.scheduler import ManualScheduler  # noqa: E402
from proctorsync.services.sync_engine import sync_engine  # noqa: E402


class FlakyRemoteStore(InMemoryRemoteStore):
    """In-memory remote store whose reads, writes or alert pushes can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False
        self.fail_alerts = False
        self.on_set = None
        self.set_calls = 0

    async def get(self, path):
        if self.fail_reads:
            raise RemoteStoreUnavailable("read refused")
        return await super().get(path)

    async def children(self, path):
        if self.fail_reads:
            raise RemoteStoreUnavailable("read refused")
        return await super().children(path)

    async def set(self, path, value):
        if self.fail_writes:
            raise RemoteStoreUnavailable("write refused")
        self.set_calls += 1
        if self.on_set is not None:
            self.on_set(path, value)
        await super().set(path, value)

    async def update(self, path, fields):
        if self.fail_writes:
            raise RemoteStoreUnavailable("write refused")
        await super().update(path, fields)

    async def push_alert(self, record):
        if self.fail_alerts:
            raise RemoteStoreUnavailable("alerts refused")
        return await super().push_alert(record)


# ---------------------------------------------------------------------------
# Reset module-level singletons between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_local_storage() -> None:
    if hasattr(local_storage, "clear"):
        local_storage.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_remote_store() -> None:
    if hasattr(remote_store, "clear"):
        remote_store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_sync_engine() -> None:
    sync_engine.stop()
    sync_engine.outbox._entries.clear()


@pytest.fixture(autouse=True)
def reset_sessions() -> None:
    _SESSIONS.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


# ---------------------------------------------------------------------------
# Isolated engine parts for service-level tests
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def storage() -> InMemoryLocalStorage:
    return InMemoryLocalStorage()


@pytest.fixture
def store(storage: InMemoryLocalStorage, clock: ManualClock) -> ProgressStore:
    return ProgressStore(storage, clock)


@pytest.fixture
def remote() -> FlakyRemoteStore:
    return FlakyRemoteStore()


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def sink(remote: FlakyRemoteStore) -> AlertSink:
    return AlertSink(remote)
