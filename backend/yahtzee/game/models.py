from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from .broadcast import Connection


RoomState = Literal["lobby", "in_progress", "ended"]

CATEGORIES: tuple[str, ...] = (
    "ones",
    "twos",
    "threes",
    "fours",
    "fives",
    "sixes",
    "three_of_a_kind",
    "four_of_a_kind",
    "full_house",
    "small_straight",
    "large_straight",
    "yahtzee",
)
UPPER_CATEGORIES: tuple[str, ...] = CATEGORIES[:6]
UPPER_BONUS_THRESHOLD = 63
UPPER_BONUS = 35

DICE_COUNT = 5
ROLLS_PER_TURN = 3
MAX_PLAYERS = 6

# Dice shown when a game starts vs. after a turn change (nothing rolled yet).
STARTING_DICE: tuple[int, ...] = (1,) * DICE_COUNT
UNROLLED_DICE: tuple[int, ...] = (0,) * DICE_COUNT


# Room codes avoid look-alike characters (no I, O, 0, 1).
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 6


def now_ms() -> int:
    return int(time.time() * 1000)


def new_room_code() -> str:
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def new_player_id() -> str:
    return secrets.token_hex(16)


def new_token() -> str:
    return secrets.token_hex(32)


@dataclass
class Player:
    id: str
    name: str
    token: str = field(repr=False)
    scores: dict[str, int] = field(default_factory=dict)
    ready: bool = False
    viewer: bool = False
    last_seen_ms: int = field(default_factory=now_ms)
    connection: Connection | None = field(default=None, repr=False, compare=False)

    @property
    def total_score(self) -> int:
        return sum(self.scores.values())

    @property
    def connected(self) -> bool:
        return self.connection is not None

    def public(self) -> dict[str, Any]:
        # Never expose the token.
        return {
            "player_id": self.id,
            "name": self.name,
            "ready": self.ready,
            "total_score": self.total_score,
            "scores": dict(self.scores),
            "is_viewer": self.viewer,
        }


@dataclass(frozen=True)
class GameEvent:
    id: int
    type: str
    payload: dict[str, Any]

    def to_wire(self) -> dict[str, Any]:
        data = dict(self.payload)
        data["type"] = self.type
        data["event_id"] = self.id
        return data


@dataclass(frozen=True)
class JoinResult:
    room_code: str
    player_id: str
    token: str
    is_viewer: bool
    last_event_id: int

    def as_response(self) -> dict[str, Any]:
        return {
            "room_code": self.room_code,
            "player_id": self.player_id,
            "token": self.token,
            "is_viewer": self.is_viewer,
            "last_event_id": self.last_event_id,
        }
