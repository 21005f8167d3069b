from __future__ import annotations

from proctorsync.core.clock import ManualClock
from proctorsync.models.alert import SessionContext, ViolationEvent, ViolationType
from proctorsync.proctoring.tab_visibility import (
    TabVisibilityState,
    TabVisibilityTracker,
    on_visibility_change,
)

CTX = SessionContext(user_id="u1", course_id="c1", video_id="v1")


def test_hidden_emits_numbered_warning() -> None:
    state, events = on_visibility_change(TabVisibilityState(max_warnings=3), True, CTX, 10.0)
    assert state.switch_count == 1
    assert [(e.type, e.message) for e in events] == [
        (ViolationType.TAB_SWITCH_DETECTED, "Tab switched - Warning 1/3")
    ]
    assert events[0].occurred_at == 10.0


def test_repeated_signal_is_not_a_transition() -> None:
    state, _ = on_visibility_change(TabVisibilityState(max_warnings=3), True, CTX, 0)
    again, events = on_visibility_change(state, True, CTX, 1)
    assert again is state
    assert events == []


def test_first_visible_signal_without_switch_is_silent() -> None:
    _, events = on_visibility_change(TabVisibilityState(max_warnings=3, hidden=True), False, CTX, 0)
    assert events == []


def test_max_reached_is_emitted_once() -> None:
    clock = ManualClock()
    seen: list[ViolationEvent] = []
    tracker = TabVisibilityTracker(CTX, seen.append, clock=clock, max_warnings=3)

    for _ in range(5):
        tracker.visibility_changed(True)
        tracker.visibility_changed(False)

    types = [e.type for e in seen]
    assert types.count(ViolationType.TAB_SWITCH_DETECTED) == 3
    assert types.count(ViolationType.MAX_WARNINGS_REACHED) == 1
    assert types.count(ViolationType.TAB_FOCUS_RESTORED) == 5
    assert tracker.switch_count == 5

    max_event = next(e for e in seen if e.type is ViolationType.MAX_WARNINGS_REACHED)
    assert max_event.message == "Maximum tab switch warnings reached (3)"
    # Emitted right after the last numbered warning
    assert seen[seen.index(max_event) - 1].message == "Tab switched - Warning 3/3"


def test_tracker_returns_events_it_emitted() -> None:
    seen: list[ViolationEvent] = []
    tracker = TabVisibilityTracker(CTX, seen.append, clock=ManualClock(), max_warnings=1)
    events = tracker.visibility_changed(True)
    assert events == seen
    assert [e.type for e in events] == [
        ViolationType.TAB_SWITCH_DETECTED,
        ViolationType.MAX_WARNINGS_REACHED,
    ]
