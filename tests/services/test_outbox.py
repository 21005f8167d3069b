from __future__ import annotations

from prometheus_client import REGISTRY

from proctorsync.services.outbox import Outbox


def test_enqueue_is_idempotent() -> None:
    outbox = Outbox(base_interval=5, max_backoff=300)
    first = outbox.enqueue("u1", "c1", "v1")
    first.attempts = 2
    again = outbox.enqueue("u1", "c1", "v1")
    assert again is first
    assert len(outbox) == 1


def test_backoff_doubles_and_caps() -> None:
    outbox = Outbox(base_interval=5, max_backoff=30)
    assert [outbox.backoff_for(n) for n in (1, 2, 3, 4, 5)] == [5, 10, 20, 30, 30]


def test_failed_entry_is_not_due_until_backoff_passes() -> None:
    outbox = Outbox(base_interval=5, max_backoff=300)
    entry = outbox.enqueue("u1", "c1", "v1")
    assert outbox.due(100.0) == [entry]

    delay = outbox.record_failure(entry, now=100.0, error="boom")
    assert delay == 5
    assert entry.last_error == "boom"
    assert outbox.due(104.9) == []
    assert outbox.due(105.0) == [entry]

    outbox.record_failure(entry, now=105.0, error="boom")
    assert entry.next_attempt_at == 115.0


def test_success_removes_entry_and_updates_gauge() -> None:
    outbox = Outbox(base_interval=5, max_backoff=300)
    entry = outbox.enqueue("u1", "c1", "v1")
    outbox.enqueue("u1", "c1", "v2")
    assert REGISTRY.get_sample_value("sync_outbox_depth") == 2

    outbox.record_success(entry)
    assert len(outbox) == 1
    assert REGISTRY.get_sample_value("sync_outbox_depth") == 1


def test_due_and_pending_filter_by_user() -> None:
    outbox = Outbox(base_interval=5, max_backoff=300)
    outbox.enqueue("u1", "c1", "v1")
    outbox.enqueue("u2", "c1", "v1")
    assert len(outbox.pending("u1")) == 1
    assert len(outbox.due(0, "u2")) == 1

    outbox.discard_user("u1")
    assert outbox.pending("u1") == []
    assert len(outbox) == 1
