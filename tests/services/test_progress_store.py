from __future__ import annotations

import json
import logging
from dataclasses import replace

import pytest

from proctorsync.core.clock import ManualClock
from proctorsync.core.errors import InvalidProgressPatch
from proctorsync.models.progress import ProgressPatch
from proctorsync.repos.local_storage import InMemoryLocalStorage
from proctorsync.services.progress_store import ProgressStore, video_key


def _save(store: ProgressStore, video: str = "v1", course: str = "c1", user: str = "u1", **patch):
    patch.setdefault("total_duration", 100)
    return store.save_video_progress(user, course, video, ProgressPatch(**patch))


def test_save_is_written_through_to_storage(
    store: ProgressStore, storage: InMemoryLocalStorage, clock: ManualClock
) -> None:
    record = _save(store, last_position=12, valid_watch_time=12)
    raw = json.loads(storage.get_item(video_key("u1", "c1", "v1")))
    assert raw["lastPosition"] == 12
    assert raw["dirty"] is True
    assert raw["revision"] == 1
    assert record.updated_at == int(clock.time() * 1000)


def test_save_bumps_revision_every_time(store: ProgressStore) -> None:
    _save(store, valid_watch_time=10)
    record = _save(store, valid_watch_time=20)
    assert record.revision == 2
    assert store.get_video_progress("u1", "c1", "v1").valid_watch_time == 20


def test_invalid_patch_writes_nothing(store: ProgressStore, storage: InMemoryLocalStorage) -> None:
    with pytest.raises(InvalidProgressPatch):
        _save(store, last_position=-5)
    assert storage.keys() == []


def test_first_save_without_duration_is_invalid(store: ProgressStore) -> None:
    with pytest.raises(InvalidProgressPatch, match="total_duration"):
        store.save_video_progress("u1", "c1", "v1", ProgressPatch(last_position=3))


def test_completed_flag_below_threshold_is_ignored(
    store: ProgressStore, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING):
        record = _save(store, valid_watch_time=30, completed=True)
    assert record.completed is False
    assert "below threshold" in caplog.text


def test_record_violation_increments_counter(store: ProgressStore) -> None:
    _save(store)
    store.record_violation("u1", "c1", "v1", "tabSwitches")
    record = store.record_violation("u1", "c1", "v1", "tabSwitches")
    assert record is not None
    assert record.violations.tab_switches == 2
    assert record.dirty is True


def test_record_violation_without_record_is_a_no_op(store: ProgressStore) -> None:
    assert store.record_violation("u1", "c1", "v1", "faceMissingEvents") is None
    assert store.get_video_progress("u1", "c1", "v1") is None


def test_mark_synced_clears_dirty_when_revision_unchanged(store: ProgressStore) -> None:
    record = _save(store, valid_watch_time=10)
    assert store.mark_synced(record, sync_time=555) is True
    stored = store.get_video_progress("u1", "c1", "v1")
    assert stored.dirty is False
    assert stored.last_sync_time == 555
    assert store.list_dirty("u1") == []


def test_mark_synced_keeps_dirty_after_concurrent_save(store: ProgressStore) -> None:
    snapshot = _save(store, valid_watch_time=10)
    _save(store, valid_watch_time=40)  # lands while the sync is in flight
    assert store.mark_synced(snapshot, sync_time=555) is False
    stored = store.get_video_progress("u1", "c1", "v1")
    assert stored.dirty is True
    assert stored.valid_watch_time == 40
    assert stored.last_sync_time == 555


def test_merge_remote_creates_clean_record(store: ProgressStore) -> None:
    merged = store.merge_remote(
        "u1",
        {"courseId": "c1", "videoId": "v9", "totalDuration": 300, "validWatchTime": 120},
    )
    assert merged.dirty is False
    assert store.get_video_progress("u1", "c1", "v9").valid_watch_time == 120


def test_merge_remote_stays_dirty_when_local_is_ahead(store: ProgressStore) -> None:
    _save(store, valid_watch_time=80)
    merged = store.merge_remote(
        "u1",
        {
            "courseId": "c1",
            "videoId": "v1",
            "totalDuration": 100,
            "validWatchTime": 20,
            "violations": {"autoPauses": 2},
        },
    )
    assert merged.valid_watch_time == 80
    assert merged.violations.auto_pauses == 2
    assert merged.dirty is True


def test_merge_remote_equal_to_remote_is_clean(store: ProgressStore) -> None:
    record = _save(store, valid_watch_time=20)
    remote = replace(record, valid_watch_time=60).to_remote()
    remote["updatedAt"] = record.updated_at + 1
    merged = store.merge_remote("u1", remote)
    assert merged.valid_watch_time == 60
    assert merged.dirty is False


def test_continue_learning_picks_latest_incomplete(store: ProgressStore, clock: ManualClock) -> None:
    _save(store, video="v1", last_position=5)
    clock.advance(10)
    _save(store, video="v2", last_position=42)
    clock.advance(10)
    _save(store, video="v3", valid_watch_time=100)  # completed, not a candidate

    data = store.get_continue_learning_data("u1")
    assert data is not None
    assert (data.course_id, data.video_id, data.last_position) == ("c1", "v2", 42)


def test_continue_learning_none_without_records(store: ProgressStore) -> None:
    assert store.get_continue_learning_data("u1") is None


def test_course_progress_remembers_catalog_size(store: ProgressStore) -> None:
    _save(store, video="v1", valid_watch_time=95)
    first = store.get_course_progress("u1", "c1", total_videos=4)
    assert (first.completed_videos, first.total_videos, first.progress) == (1, 4, 25)
    # Later reads without the catalog size keep the denominator
    assert store.get_course_progress("u1", "c1").total_videos == 4


def test_overall_progress_spans_courses(store: ProgressStore) -> None:
    _save(store, course="a", video="v1", valid_watch_time=100)
    _save(store, course="a", video="v2", valid_watch_time=10)
    _save(store, course="b", video="v1", valid_watch_time=10)
    _save(store, course="b", video="v2", valid_watch_time=10)

    overall = store.get_overall_progress("u1")
    assert overall.total_courses == 2
    assert overall.total_videos == 4
    assert overall.completed_videos == 1
    assert overall.overall_progress == 25


def test_list_video_progress_filters_by_user_and_course(store: ProgressStore) -> None:
    _save(store, user="u1", course="a")
    _save(store, user="u1", course="b")
    _save(store, user="u2", course="a")
    assert len(store.list_video_progress("u1")) == 2
    assert [r.course_id for r in store.list_video_progress("u1", "b")] == ["b"]


def test_clear_all_progress_only_touches_one_user(store: ProgressStore) -> None:
    _save(store, user="u1")
    _save(store, user="u2")
    store.get_overall_progress("u1")

    removed = store.clear_all_progress("u1")
    assert removed >= 2
    assert store.list_video_progress("u1") == []
    assert len(store.list_video_progress("u2")) == 1


def test_store_works_with_fresh_clock() -> None:
    store = ProgressStore(InMemoryLocalStorage(), ManualClock(start=0))
    record = _save(store)
    assert record.updated_at == 0


def test_mark_synced_does_not_restore_cleared_record(store: ProgressStore) -> None:
    in_flight = _save(store, valid_watch_time=10)
    store.clear_all_progress("u1")  # lands while the sync is in flight
    assert store.mark_synced(in_flight, sync_time=555) is False
    assert store.get_video_progress("u1", "c1", "v1") is None


def test_ids_containing_separator_do_not_collide(store: ProgressStore) -> None:
    _save(store, user="a:b", course="x", video="y", valid_watch_time=95)

    assert store.get_video_progress("a", "b:x", "y") is None
    assert store.list_video_progress("a") == []

    _save(store, user="a", course="b:x", video="y", valid_watch_time=10)
    theirs = store.get_video_progress("a:b", "x", "y")
    mine = store.get_video_progress("a", "b:x", "y")
    assert (theirs.user_id, theirs.completed) == ("a:b", True)
    assert (mine.user_id, mine.course_id, mine.completed) == ("a", "b:x", False)
    assert [r.course_id for r in store.list_video_progress("a")] == ["b:x"]


def test_stored_ids_come_from_the_key(store: ProgressStore, storage: InMemoryLocalStorage) -> None:
    record = _save(store)
    doc = record.to_local()
    doc["userId"] = "someone-else"
    storage.set_item(video_key("u1", "c1", "v1"), json.dumps(doc))

    assert store.get_video_progress("u1", "c1", "v1").user_id == "u1"
    assert [r.user_id for r in store.list_video_progress("u1")] == ["u1"]


def test_merge_remote_keeps_records_under_the_pulling_user(store: ProgressStore) -> None:
    store.merge_remote(
        "u1",
        {"userId": "u2", "courseId": "c1", "videoId": "v1", "totalDuration": 100},
    )
    assert store.get_video_progress("u1", "c1", "v1") is not None
    assert store.get_video_progress("u2", "c1", "v1") is None


def test_skip_is_measured_from_the_last_position_report(
    store: ProgressStore, clock: ManualClock
) -> None:
    _save(store, last_position=10)
    clock.advance(10)
    store.record_violation("u1", "c1", "v1", "tabSwitches")
    assert _save(store, last_position=20).violations.skip_count == 0

    clock.advance(2)
    record = _save(store, last_position=60)
    assert record.violations.skip_count == 1
    assert record.violations.tab_switches == 1
