"""Pending remote writes, with per-entry exponential backoff.

A record enters the outbox when the sync engine finds it dirty and leaves
it only after the remote store acknowledged the merged write.  A failed
attempt pushes the entry's next try out by

    interval × 2^(attempts − 1)      capped at SYNC_MAX_BACKOFF

so a remote outage costs one attempt per entry per backoff window instead
of one per tick.
"""

from __future__ import annotations

from dataclasses import dataclass

from proctorsync.core.metrics import SYNC_OUTBOX_DEPTH


@dataclass(slots=True)
class OutboxEntry:
    user_id: str
    course_id: str
    video_id: str
    attempts: int = 0
    next_attempt_at: float = 0.0
    last_error: str | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.user_id, self.course_id, self.video_id)


class Outbox:
    def __init__(self, base_interval: float, max_backoff: float) -> None:
        self.base_interval = base_interval
        self.max_backoff = max_backoff
        self._entries: dict[tuple[str, str, str], OutboxEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: tuple[str, str, str]) -> bool:
        return key in self._entries

    def enqueue(self, user_id: str, course_id: str, video_id: str) -> OutboxEntry:
        """Add an entry, or return the existing one untouched (keeps its backoff)."""
        key = (user_id, course_id, video_id)
        entry = self._entries.get(key)
        if entry is None:
            entry = OutboxEntry(user_id, course_id, video_id)
            self._entries[key] = entry
            self._publish()
        return entry

    def due(self, now: float, user_id: str | None = None) -> list[OutboxEntry]:
        return [
            e
            for e in self._entries.values()
            if e.next_attempt_at <= now and (user_id is None or e.user_id == user_id)
        ]

    def pending(self, user_id: str | None = None) -> list[OutboxEntry]:
        return [e for e in self._entries.values() if user_id is None or e.user_id == user_id]

    def backoff_for(self, attempts: int) -> float:
        return min(self.base_interval * 2 ** max(attempts - 1, 0), self.max_backoff)

    def record_failure(self, entry: OutboxEntry, now: float, error: str) -> float:
        """Reschedule after a failed attempt.  Returns the delay applied."""
        entry.attempts += 1
        entry.last_error = error
        delay = self.backoff_for(entry.attempts)
        entry.next_attempt_at = now + delay
        return delay

    def record_success(self, entry: OutboxEntry) -> None:
        self._entries.pop(entry.key, None)
        self._publish()

    def discard_user(self, user_id: str) -> None:
        for key in [k for k in self._entries if k[0] == user_id]:
            del self._entries[key]
        self._publish()

    def _publish(self) -> None:
        SYNC_OUTBOX_DEPTH.set(len(self._entries))
