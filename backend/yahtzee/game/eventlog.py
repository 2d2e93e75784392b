from __future__ import annotations

from threading import Lock
from typing import Any

from .models import GameEvent


class EventLog:
    """Append-only per-room history. Ids start at 1 and never skip."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._events: list[GameEvent] = []

    def append(self, event_type: str, payload: dict[str, Any]) -> GameEvent:
        with self._lock:
            event = GameEvent(id=len(self._events) + 1, type=event_type, payload=dict(payload))
            self._events.append(event)
            return event

    def history(self) -> list[GameEvent]:
        with self._lock:
            return list(self._events)

    @property
    def last_id(self) -> int:
        with self._lock:
            return len(self._events)

    def __len__(self) -> int:
        return self.last_id
