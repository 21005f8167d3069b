from __future__ import annotations

from collections.abc import Callable

from proctorsync.core.clock import Clock, system_clock
from proctorsync.models.alert import SessionContext, ViolationEvent, ViolationType

_MESSAGES = {
    ViolationType.COPY_ATTEMPTED: "Copy attempt blocked",
    ViolationType.PASTE_ATTEMPTED: "Paste attempt blocked",
}


class ClipboardGuard:
    """Reports blocked copy/paste attempts as violation events."""

    def __init__(
        self,
        context: SessionContext,
        on_event: Callable[[ViolationEvent], None],
        *,
        clock: Clock = system_clock,
    ) -> None:
        self.context = context
        self.on_event = on_event
        self.clock = clock
        self.attempts = 0

    def copy_attempted(self) -> ViolationEvent:
        return self._report(ViolationType.COPY_ATTEMPTED)

    def paste_attempted(self) -> ViolationEvent:
        return self._report(ViolationType.PASTE_ATTEMPTED)

    def _report(self, kind: ViolationType) -> ViolationEvent:
        self.attempts += 1
        event = ViolationEvent(
            type=kind,
            message=_MESSAGES[kind],
            context=self.context,
            occurred_at=self.clock.time(),
        )
        self.on_event(event)
        return event
