from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ViolationType(StrEnum):
    TAB_SWITCH_DETECTED = "tab_switch_detected"
    MAX_WARNINGS_REACHED = "max_warnings_reached"
    TAB_FOCUS_RESTORED = "tab_focus_restored"
    FACE_MISSING = "face_missing"
    FACE_RESTORED = "face_restored"
    COPY_ATTEMPTED = "copy_attempted"
    PASTE_ATTEMPTED = "paste_attempted"
    MIGRATION_COMPLETED = "migration_completed"


class SessionSignal(StrEnum):
    """Browser-side signals a client reports during a session."""

    TAB_HIDDEN = "tab_hidden"
    TAB_VISIBLE = "tab_visible"
    COPY = "copy"
    PASTE = "paste"


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Who is being watched and on which video."""

    user_id: str
    course_id: str = ""
    video_id: str = ""


@dataclass(frozen=True, slots=True)
class ViolationEvent:
    """Raw output of a detector, before the cooldown filter sees it."""

    type: ViolationType
    message: str
    context: SessionContext
    occurred_at: float  # epoch seconds
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Alert:
    """Append-only alert record.  Only ``resolved`` may change later."""

    type: ViolationType
    message: str
    user_id: str
    course_id: str
    video_id: str
    created_at: int  # epoch ms
    resolved: bool = False

    @staticmethod
    def from_event(event: ViolationEvent) -> Alert:
        return Alert(
            type=event.type,
            message=event.message,
            user_id=event.context.user_id,
            course_id=event.context.course_id,
            video_id=event.context.video_id,
            created_at=int(event.occurred_at * 1000),
        )

    def to_remote(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "type": self.type.value,
            "message": self.message,
            "course_id": self.course_id,
            "video_id": self.video_id,
            "resolved": self.resolved,
            "timestamp": self.created_at,
        }
