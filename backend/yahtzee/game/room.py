from __future__ import annotations

import hmac
import logging
import random
from threading import RLock
from typing import Any, Callable

from ..realtime import events as ev
from . import engine
from .broadcast import Connection, broadcast
from .errors import RoomFull, RoomNotFound, Unauthorized
from .eventlog import EventLog
from .models import (
    MAX_PLAYERS,
    ROLLS_PER_TURN,
    STARTING_DICE,
    UNROLLED_DICE,
    JoinResult,
    Player,
    RoomState,
    new_player_id,
    new_token,
    now_ms,
)

logger = logging.getLogger(__name__)

VIEWER_NOTICE = "You are viewing this game. You cannot interact."


class Room:
    """One game: roster, turn order, dice and event log.

    All roster and turn state is guarded by ``_lock``. Events are appended and
    broadcast while that lock is held, so every observer sees a room's events
    in id order. The lock is always released before ``on_teardown`` reaches
    back into the registry.
    """

    def __init__(
        self,
        code: str,
        host: Player,
        rng: random.Random | None = None,
        on_teardown: Callable[[str], Any] | None = None,
    ) -> None:
        self.code = code
        self.host_id = host.id
        self.events = EventLog()

        self._lock = RLock()
        self._rng = rng or random.Random()
        self._on_teardown = on_teardown

        self._players: dict[str, Player] = {host.id: host}
        self._turn_order: list[str] = [host.id]
        self._current_index = 0
        self._dice: list[int] = list(STARTING_DICE)
        self._rolls_left = ROLLS_PER_TURN
        self._state: RoomState = "lobby"
        self._closed = False
        self.last_activity_ms = now_ms()

        self._handlers: dict[str, Callable[[ev.InboundEvent], None]] = {
            ev.PLAYER_READY: self._on_ready,
            ev.GAME_START: self._on_start,
            ev.START_GAME: self._on_start,
            ev.REQUEST_ROLL: self._on_roll,
            ev.CATEGORY_CHOSEN: self._on_category,
            ev.REQUEST_END_TURN: self._on_end_turn,
            ev.CHAT_MESSAGE: self._on_chat,
        }

    # --- read accessors -------------------------------------------------

    @property
    def state(self) -> RoomState:
        return self._state

    @property
    def started(self) -> bool:
        return self._state != "lobby"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def turn_order(self) -> list[str]:
        with self._lock:
            return list(self._turn_order)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_player_id(self) -> str | None:
        with self._lock:
            return self._current_player_locked()

    @property
    def dice(self) -> list[int]:
        with self._lock:
            return list(self._dice)

    @property
    def rolls_left(self) -> int:
        return self._rolls_left

    def player_ids(self) -> list[str]:
        with self._lock:
            return list(self._players)

    def player(self, player_id: str) -> dict[str, Any] | None:
        with self._lock:
            p = self._players.get(player_id)
            return p.public() if p else None

    def is_connected(self, player_id: str) -> bool:
        with self._lock:
            p = self._players.get(player_id)
            return bool(p and p.connected)

    def idle_ms(self, at_ms: int | None = None) -> int:
        return (at_ms if at_ms is not None else now_ms()) - self.last_activity_ms

    def snapshot(self) -> dict[str, Any]:
        """Full game state, as sent to a viewer connecting mid-game."""
        with self._lock:
            players = {pid: p.public() for pid, p in self._players.items()}
            player_list = [players[pid] for pid in self._turn_order if pid in players]
            return {
                "players": players,
                "player_list": player_list,
                "turn_order": list(self._turn_order),
                "current_player": self._current_player_locked() or "",
                "dice": list(self._dice),
                "rolls_left": self._rolls_left,
                "event_history": [e.to_wire() for e in self.events.history()],
            }

    # --- membership -----------------------------------------------------

    def authenticate(self, player_id: str | None, token: str | None) -> bool:
        with self._lock:
            return self._authenticated_locked(player_id, token) is not None

    def join(self, name: str, player_id: str | None = None, token: str | None = None) -> JoinResult:
        """Rejoin with valid credentials, or join fresh (as a viewer once started).

        Bad credentials are treated exactly as if none were given.
        """
        with self._lock:
            if self._closed:
                raise RoomNotFound(self.code)
            self._touch()

            existing = self._authenticated_locked(player_id, token)
            if existing is not None:
                existing.name = name
                existing.last_seen_ms = now_ms()
                in_order = existing.id in self._turn_order
                existing.viewer = self.started or not in_order
                if existing.viewer and in_order:
                    # A viewer never keeps a seat in the turn order.
                    self._drop_from_turn_order(existing.id)
                logger.info(
                    f"[player-rejoined] room={self.code} player={existing.id} viewer={existing.viewer}"
                )
                return self._join_result(existing)

            if self.started:
                player = self._new_player(name, viewer=True)
                logger.info(f"[viewer-joined] room={self.code} player={player.id}")
                return self._join_result(player)

            if len(self._players) >= MAX_PLAYERS:
                logger.debug(f"[room-full] room={self.code} players={len(self._players)}")
                raise RoomFull(self.code)

            player = self._new_player(name, viewer=False)
            self._turn_order.append(player.id)
            logger.info(f"[player-joined] room={self.code} player={player.id} players={len(self._players)}")
            return self._join_result(player)

    def attach(self, player_id: str, connection: Connection) -> None:
        """Bind a live connection to a player and send the greeting.

        Any previous connection for the same player is closed afterwards.
        """
        with self._lock:
            player = self._players.get(player_id)
            if player is None or self._closed:
                raise Unauthorized(self.code)

            previous = player.connection
            player.connection = connection
            player.last_seen_ms = now_ms()
            self._touch()
            logger.info(f"[connected] room={self.code} player={player_id} viewer={player.viewer}")

            if player.viewer:
                self._send_to(player_id, connection, {
                    "type": ev.VIEWER_MODE,
                    "player_id": player_id,
                    "message": VIEWER_NOTICE,
                })
                if self.started:
                    state = self.snapshot()
                    state["type"] = ev.GAME_STATE
                    self._send_to(player_id, connection, state)

            for other in list(self._players.values()):
                self._send_to(player_id, connection, self._joined_notice(other))

            # Viewers refreshing mid-game reconnect silently.
            if not (player.viewer and self.started):
                self._broadcast(self._joined_notice(player), exclude=player_id)

        if previous is not None and previous is not connection:
            logger.debug(f"[connection-replaced] room={self.code} player={player_id}")
            previous.close()

    def detach(self, player_id: str, connection: Connection) -> None:
        """Apply the disconnect policy for a connection that went away."""
        reason = None
        to_close: list[Connection] = []

        with self._lock:
            player = self._players.get(player_id)
            if player is None or player.connection is not connection:
                # Superseded by a newer connection, or already gone.
                return
            player.connection = None
            if self._closed:
                return

            self._touch()
            started = self.started
            is_host = player_id == self.host_id

            if started:
                player.viewer = True
            else:
                del self._players[player_id]
            was_current = self._leave_turn_order(player_id)

            self._broadcast({
                "type": ev.PLAYER_LEFT,
                "player_id": player_id,
                "player_name": player.name,
                "is_host": is_host,
            }, exclude=player_id)

            if was_current and self._state == "in_progress" and self._turn_order:
                self._start_turn()

            if started and is_host:
                reason = ev.ROOM_ENDED_HOST
            elif started and self._connected_active_count() == 1:
                reason = ev.ROOM_ENDED_INSUFFICIENT

            if reason is not None:
                self._broadcast({"type": ev.ROOM_ENDED, "reason": reason})
                to_close = self._close_locked()
                logger.info(f"[room-ended] room={self.code} reason={reason}")
            else:
                logger.info(
                    f"[disconnected] room={self.code} player={player_id} "
                    f"remaining={self._connected_active_count()}"
                )

        for conn in to_close:
            conn.close()
        if reason is not None and self._on_teardown is not None:
            self._on_teardown(self.code)

    def shutdown(self, reason: str | None = None) -> int:
        """Close every live connection and mark the room dead.

        With a ``reason``, connected clients are told why first.
        """
        with self._lock:
            if self._closed:
                return 0
            if reason is not None:
                self._broadcast({"type": ev.ROOM_ENDED, "reason": reason})
            to_close = self._close_locked()
        for conn in to_close:
            conn.close()
        return len(to_close)

    # --- inbound events -------------------------------------------------

    def handle_event(self, event: ev.InboundEvent) -> None:
        with self._lock:
            if self._closed:
                return
            player = self._players.get(event.player_id)
            if player is None:
                return
            self._touch()
            player.last_seen_ms = now_ms()

            if player.viewer:
                logger.debug(f"[viewer-ignored] room={self.code} player={player.id} type={event.type}")
                return

            handler = self._handlers.get(event.type)
            if handler is None:
                logger.debug(f"[unknown-event] room={self.code} player={player.id} type={event.type}")
                return
            handler(event)

    def _on_ready(self, event: ev.InboundEvent) -> None:
        if self.started:
            return
        ready = event.get("ready") is True
        self._players[event.player_id].ready = ready
        payload = event.as_payload()
        payload["ready"] = ready
        self._add_event(ev.PLAYER_READY, payload)

    def _on_start(self, event: ev.InboundEvent) -> None:
        if self.started:
            return
        if event.player_id != self.host_id:
            logger.warning(f"[start-denied] room={self.code} player={event.player_id}")
            return

        order = [pid for pid in self._turn_order if not self._players[pid].viewer]
        self._rng.shuffle(order)
        self._turn_order = order
        self._current_index = 0
        self._rolls_left = ROLLS_PER_TURN
        self._dice = list(STARTING_DICE)
        self._state = "in_progress"

        for p in self._players.values():
            p.scores = {}

        players = {pid: p.public() for pid, p in self._players.items()}
        self._add_event(ev.GAME_STARTED, {
            "players": players,
            "player_list": [players[pid] for pid in order],
            "turn_order": list(order),
            "current_player": order[0] if order else "",
            "dice": list(self._dice),
            "rolls_left": self._rolls_left,
        })
        logger.info(f"[game-started] room={self.code} players={len(order)}")

    def _on_roll(self, event: ev.InboundEvent) -> None:
        if not self._is_turn_of(event.player_id, "roll"):
            return
        if self._rolls_left <= 0:
            logger.debug(f"[no-rolls-left] room={self.code} player={event.player_id}")
            return

        held = engine.held_positions(event.get("held_indices"))
        self._dice = engine.roll_dice(self._dice, held, self._rng)
        self._rolls_left -= 1
        self._add_event(ev.ROLL_RESULT, {
            "player_id": event.player_id,
            "dice": list(self._dice),
            "rolls_left": self._rolls_left,
        })

    def _on_category(self, event: ev.InboundEvent) -> None:
        if not self._is_turn_of(event.player_id, "score"):
            return

        category = event.get("category")
        score = engine.coerce_score(event.get("score"))
        if not engine.is_category(category) or score is None:
            logger.debug(f"[bad-score] room={self.code} player={event.player_id} category={category!r}")
            return

        player = self._players[event.player_id]
        if category in player.scores:
            logger.debug(f"[category-taken] room={self.code} player={player.id} category={category}")
            return

        player.scores[category] = score
        self._add_event(ev.SCORE_UPDATE, {
            "player_id": player.id,
            "category": category,
            "score": score,
            "total_score": player.total_score,
        })
        self._advance_turn()
        self._finish_if_over()

    def _on_end_turn(self, event: ev.InboundEvent) -> None:
        if not self._is_turn_of(event.player_id, "end turn"):
            return
        self._advance_turn()

    def _on_chat(self, event: ev.InboundEvent) -> None:
        payload = event.as_payload()
        payload.setdefault("name", self._players[event.player_id].name)
        self._add_event(ev.CHAT_MESSAGE, payload)

    # --- turn bookkeeping (lock held) -----------------------------------

    def _current_player_locked(self) -> str | None:
        if not self._turn_order:
            return None
        return self._turn_order[self._current_index]

    def _is_turn_of(self, player_id: str, action: str) -> bool:
        if self._state == "in_progress" and self._current_player_locked() == player_id:
            return True
        logger.debug(
            f"[out-of-turn] room={self.code} player={player_id} action={action} "
            f"expected={self._current_player_locked()} state={self._state}"
        )
        return False

    def _start_turn(self) -> None:
        self._rolls_left = ROLLS_PER_TURN
        self._dice = list(UNROLLED_DICE)
        self._add_event(ev.TURN_CHANGED, {
            "current_player": self._current_player_locked(),
            "rolls_left": self._rolls_left,
        })

    def _advance_turn(self) -> None:
        self._current_index = engine.next_index(self._current_index, len(self._turn_order))
        self._start_turn()

    def _leave_turn_order(self, player_id: str) -> bool:
        """Remove a player from the turn order; True if it was their turn."""
        if player_id not in self._turn_order:
            return False
        removed_at = self._turn_order.index(player_id)
        was_current = removed_at == self._current_index
        self._turn_order.pop(removed_at)
        self._current_index = engine.index_after_removal(
            self._current_index, removed_at, len(self._turn_order)
        )
        return was_current

    def _drop_from_turn_order(self, player_id: str) -> None:
        if self._leave_turn_order(player_id) and self._state == "in_progress" and self._turn_order:
            self._start_turn()

    def _finish_if_over(self) -> None:
        if not engine.is_game_over(self._players.values()):
            return
        result = engine.tally(self._display_order())
        self._state = "ended"
        self._add_event(ev.GAME_END, result.as_payload())
        logger.info(
            f"[game-ended] room={self.code} winner={result.winner_id} draw={result.is_draw}"
        )

    def _display_order(self) -> list[Player]:
        ordered = [self._players[pid] for pid in self._turn_order]
        ordered.extend(p for pid, p in self._players.items() if pid not in self._turn_order)
        return ordered

    def _connected_active_count(self) -> int:
        return sum(1 for pid in self._turn_order if self._players[pid].connected)

    # --- helpers (lock held) --------------------------------------------

    def _touch(self) -> None:
        self.last_activity_ms = now_ms()

    def _authenticated_locked(self, player_id: str | None, token: str | None) -> Player | None:
        if not player_id or not token:
            return None
        player = self._players.get(player_id)
        if player is None or not hmac.compare_digest(player.token, token):
            return None
        return player

    def _new_player(self, name: str, viewer: bool) -> Player:
        player = Player(id=new_player_id(), name=name, token=new_token(), viewer=viewer)
        self._players[player.id] = player
        return player

    def _join_result(self, player: Player) -> JoinResult:
        return JoinResult(
            room_code=self.code,
            player_id=player.id,
            token=player.token,
            is_viewer=player.viewer,
            last_event_id=self.events.last_id,
        )

    def _joined_notice(self, player: Player) -> dict[str, Any]:
        return {
            "type": ev.PLAYER_JOINED,
            "player_id": player.id,
            "name": player.name,
            "is_host": player.id == self.host_id,
            "is_viewer": player.viewer,
        }

    def _live_targets(self) -> list[tuple[str, Connection]]:
        return [(pid, p.connection) for pid, p in self._players.items() if p.connection is not None]

    def _broadcast(self, payload: dict[str, Any], exclude: str | None = None) -> None:
        broadcast(self._live_targets(), payload, exclude=exclude)

    def _send_to(self, player_id: str, connection: Connection, payload: dict[str, Any]) -> None:
        broadcast([(player_id, connection)], payload)

    def _add_event(self, event_type: str, payload: dict[str, Any]) -> None:
        event = self.events.append(event_type, payload)
        self._broadcast(event.to_wire())

    def _close_locked(self) -> list[Connection]:
        self._closed = True
        conns = []
        for p in self._players.values():
            if p.connection is not None:
                conns.append(p.connection)
                p.connection = None
        return conns
