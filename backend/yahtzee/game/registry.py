from __future__ import annotations

import logging
import random
from threading import RLock
from typing import Callable

from ..realtime import events as ev
from .errors import RoomNotFound
from .models import JoinResult, Player, new_player_id, new_room_code, new_token, now_ms
from .room import Room

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SEC = 5 * 60


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


class RoomRegistry:
    """Directory of live rooms keyed by room code.

    The registry lock only guards the code -> room mapping. It is never held
    while a room does its own work, so one room never blocks another.
    """

    def __init__(
        self,
        rng_factory: Callable[[], random.Random] | None = None,
        code_factory: Callable[[], str] = new_room_code,
    ) -> None:
        self._lock = RLock()
        self._rooms: dict[str, Room] = {}
        self._rng_factory = rng_factory or random.Random
        self._code_factory = code_factory

    def create_room(self, name: str) -> tuple[Room, JoinResult]:
        host = Player(id=new_player_id(), name=name, token=new_token())
        with self._lock:
            code = self._code_factory()
            while code in self._rooms:
                code = self._code_factory()

            room = Room(
                code=code,
                host=host,
                rng=self._rng_factory(),
                on_teardown=self.delete_room,
            )
            self._rooms[code] = room

        logger.info(f"[room-created] room={code} player={host.id}")
        result = JoinResult(
            room_code=code,
            player_id=host.id,
            token=host.token,
            is_viewer=False,
            last_event_id=0,
        )
        return room, result

    def join_room(
        self,
        code: str,
        name: str,
        player_id: str | None = None,
        token: str | None = None,
    ) -> tuple[Room, JoinResult]:
        room = self.get_room(code)
        return room, room.join(name, player_id=player_id, token=token)

    def get_room(self, code: str | None) -> Room:
        key = normalize_code(code)
        with self._lock:
            room = self._rooms.get(key)
        if room is None:
            logger.debug(f"[room-not-found] room={key}")
            raise RoomNotFound(key)
        return room

    def delete_room(self, code: str) -> bool:
        with self._lock:
            room = self._rooms.pop(code, None)
        if room is None:
            return False
        logger.info(f"[room-deleted] room={code}")
        return True

    def list_rooms(self) -> list[Room]:
        with self._lock:
            return list(self._rooms.values())

    def __contains__(self, code: str) -> bool:
        with self._lock:
            return normalize_code(code) in self._rooms

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def sweep(self, idle_timeout_sec: float, at_ms: int | None = None) -> list[str]:
        """Evict rooms idle for longer than ``idle_timeout_sec``."""
        now = at_ms if at_ms is not None else now_ms()
        limit_ms = idle_timeout_sec * 1000
        with self._lock:
            stale = [room for room in self._rooms.values() if room.idle_ms(now) > limit_ms]
            for room in stale:
                del self._rooms[room.code]

        # Connections are closed outside the registry lock; their disconnect
        # handlers find the room already closed.
        for room in stale:
            closed = room.shutdown(ev.ROOM_ENDED_IDLE)
            logger.info(f"[room-expired] room={room.code} closed_connections={closed}")
        return [room.code for room in stale]

    def run_sweeper(
        self,
        sleep: Callable[[float], object],
        idle_timeout_sec: float,
        interval_sec: float = SWEEP_INTERVAL_SEC,
    ) -> None:
        while True:
            sleep(interval_sec)
            try:
                self.sweep(idle_timeout_sec)
            except Exception:
                logger.exception("[sweep-failed]")
