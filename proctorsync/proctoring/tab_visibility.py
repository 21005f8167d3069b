"""Tab visibility tracking.

The transition rules are a pure function so they can be tested without a
browser, a clock or a pipeline:

    on_visibility_change(state, hidden, context, now) -> (state, events)

Rules:
  - hidden while visible: switch count + 1.  While the count is within the
    limit a ``tab_switch_detected`` warning is emitted ("Warning n/max").
    The first time the count reaches the limit, ``max_warnings_reached``
    is emitted too, exactly once.
  - visible while hidden, after at least one switch: ``tab_focus_restored``.
  - a repeated signal (hidden while hidden) is not a transition.

The switch count never resets for the lifetime of the tracker.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace

from proctorsync.core.clock import Clock, system_clock
from proctorsync.core.config import SETTINGS
from proctorsync.models.alert import SessionContext, ViolationEvent, ViolationType


@dataclass(frozen=True, slots=True)
class TabVisibilityState:
    max_warnings: int
    hidden: bool = False
    switch_count: int = 0
    max_reached: bool = False


def on_visibility_change(
    state: TabVisibilityState,
    hidden: bool,
    context: SessionContext,
    now: float,
) -> tuple[TabVisibilityState, list[ViolationEvent]]:
    if hidden == state.hidden:
        return state, []

    events: list[ViolationEvent] = []
    if not hidden:
        if state.switch_count > 0:
            events.append(
                ViolationEvent(
                    type=ViolationType.TAB_FOCUS_RESTORED,
                    message="Returned to the learning tab",
                    context=context,
                    occurred_at=now,
                    details={"switchCount": state.switch_count},
                )
            )
        return replace(state, hidden=False), events

    count = state.switch_count + 1
    limit = state.max_warnings
    if count <= limit:
        events.append(
            ViolationEvent(
                type=ViolationType.TAB_SWITCH_DETECTED,
                message=f"Tab switched - Warning {count}/{limit}",
                context=context,
                occurred_at=now,
                details={"switchCount": count},
            )
        )
    max_reached = state.max_reached
    if count >= limit and not max_reached:
        max_reached = True
        events.append(
            ViolationEvent(
                type=ViolationType.MAX_WARNINGS_REACHED,
                message=f"Maximum tab switch warnings reached ({limit})",
                context=context,
                occurred_at=now,
                details={"switchCount": count},
            )
        )
    return replace(state, hidden=True, switch_count=count, max_reached=max_reached), events


class TabVisibilityTracker:
    """Stateful wrapper that feeds browser visibility signals through the rules."""

    def __init__(
        self,
        context: SessionContext,
        on_event: Callable[[ViolationEvent], None],
        *,
        clock: Clock = system_clock,
        max_warnings: int = SETTINGS.max_tab_warnings,
    ) -> None:
        self.context = context
        self.on_event = on_event
        self.clock = clock
        self.state = TabVisibilityState(max_warnings=max_warnings)

    @property
    def switch_count(self) -> int:
        return self.state.switch_count

    def visibility_changed(self, hidden: bool) -> list[ViolationEvent]:
        self.state, events = on_visibility_change(
            self.state, hidden, self.context, self.clock.time()
        )
        for event in events:
            self.on_event(event)
        return events
