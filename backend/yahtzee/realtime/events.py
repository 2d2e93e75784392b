from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

# Server -> client
PLAYER_JOINED = "PLAYER_JOINED"
PLAYER_LEFT = "PLAYER_LEFT"
PLAYER_READY = "PLAYER_READY"
GAME_STARTED = "GAME_STARTED"
ROLL_RESULT = "ROLL_RESULT"
SCORE_UPDATE = "SCORE_UPDATE"
TURN_CHANGED = "TURN_CHANGED"
GAME_END = "GAME_END"
CHAT_MESSAGE = "CHAT_MESSAGE"
ROOM_ENDED = "ROOM_ENDED"
VIEWER_MODE = "VIEWER_MODE"
GAME_STATE = "GAME_STATE"

# Client -> server
GAME_START = "GAME_START"
START_GAME = "START_GAME"
REQUEST_ROLL = "REQUEST_ROLL"
CATEGORY_CHOSEN = "CATEGORY_CHOSEN"
REQUEST_END_TURN = "REQUEST_END_TURN"

# Generic wrapper: {"type": "event", "event": {...}}
ENVELOPE = "event"

ROOM_ENDED_HOST = "host_disconnected"
ROOM_ENDED_INSUFFICIENT = "insufficient_players"
ROOM_ENDED_IDLE = "idle_timeout"


class MalformedMessage(ValueError):
    pass


@dataclass(frozen=True)
class InboundEvent:
    """A decoded client message.

    ``fields`` carries everything except ``type`` and ``player_id`` so that
    unknown keys pass through untouched (chat text and the like).
    """

    type: str
    player_id: str
    fields: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    def as_payload(self) -> dict[str, Any]:
        payload = dict(self.fields)
        payload["player_id"] = self.player_id
        return payload


def decode_message(raw: Any, player_id: str) -> InboundEvent:
    """Parse one inbound frame, unwrapping the generic envelope.

    The player id always comes from the authenticated connection; whatever
    the client put there is discarded.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedMessage("message is not utf-8") from exc

    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise MalformedMessage("message is not valid json") from exc
    else:
        data = raw

    if not isinstance(data, dict):
        raise MalformedMessage("message is not an object")

    event_type = data.get("type")
    if event_type == ENVELOPE and isinstance(data.get("event"), dict):
        data = data["event"]
        event_type = data.get("type")

    if not isinstance(event_type, str) or not event_type:
        raise MalformedMessage("message has no type")

    fields = {k: v for k, v in data.items() if k not in ("type", "player_id")}
    return InboundEvent(type=event_type, player_id=player_id, fields=fields)
