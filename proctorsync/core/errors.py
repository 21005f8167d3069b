"""Failure kinds raised inside the engine.

Each background path converts whatever it catches into one of these (or
logs and drops it), so callers only ever reason about four outcomes.
"""

from __future__ import annotations


class CapabilityUnavailable(RuntimeError):
    """Camera denied, device busy, or detection model failed to load.

    Terminal for the current session: nothing retries it automatically.
    """


class RemoteStoreUnavailable(RuntimeError):
    """The remote store could not be read or written right now."""


class MalformedLegacyData(ValueError):
    """A legacy per-course record could not be parsed."""

    def __init__(self, course_id: str, reason: str) -> None:
        super().__init__(f"legacy progress for {course_id!r} is malformed: {reason}")
        self.course_id = course_id
        self.reason = reason


class InvalidProgressPatch(ValueError):
    """A progress patch failed validation; nothing was written."""
