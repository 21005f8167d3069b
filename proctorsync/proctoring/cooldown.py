"""Per-type cooldown for violation events.

One event of each type per window.  An event arriving within
VIOLATION_COOLDOWN seconds of the last ADMITTED event of the same type is
dropped.  Dropped events do not extend the window, so a steady stream of
violations still produces one alert per window instead of going silent.

``admit`` is pure; ``CooldownFilter`` holds the state for one session.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from proctorsync.core.config import SETTINGS


@dataclass(frozen=True, slots=True)
class CooldownState:
    last_admitted: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))


def admit(
    state: CooldownState, event_type: str, now: float, cooldown: float
) -> tuple[CooldownState, bool]:
    last = state.last_admitted.get(event_type)
    if last is not None and now - last < cooldown:
        return state, False
    updated = dict(state.last_admitted)
    updated[event_type] = now
    return CooldownState(MappingProxyType(updated)), True


class CooldownFilter:
    def __init__(self, cooldown: float = SETTINGS.violation_cooldown) -> None:
        self.cooldown = cooldown
        self.state = CooldownState()

    def allow(self, event_type: str, now: float) -> bool:
        self.state, allowed = admit(self.state, event_type, now, self.cooldown)
        return allowed
