from __future__ import annotations

import logging
from threading import Lock
from typing import Any

from flask import request
from flask_socketio import ConnectionRefusedError, SocketIO

from ..game.errors import RoomNotFound, Unauthorized
from ..game.registry import RoomRegistry
from .session import PlayerSession, SocketIOConnection

logger = logging.getLogger(__name__)


def _credentials(auth: Any) -> tuple[str, str, str]:
    source = auth if isinstance(auth, dict) else {}

    def pick(key: str) -> str:
        value = source.get(key) or request.args.get(key, "")
        return str(value).strip()

    return pick("room_code"), pick("player_id"), pick("token")


def register_socketio_handlers(socketio: SocketIO, registry: RoomRegistry) -> None:
    sessions: dict[str, PlayerSession] = {}
    sessions_lock = Lock()

    @socketio.on("connect")
    def on_connect(auth=None):
        room_code, player_id, token = _credentials(auth)

        try:
            room = registry.get_room(room_code)
        except RoomNotFound:
            raise ConnectionRefusedError({"status": RoomNotFound.status, "error": RoomNotFound.error})

        if not room.authenticate(player_id, token):
            logger.warning(f"[connect-unauthorized] room={room.code} player={player_id}")
            raise ConnectionRefusedError({"status": Unauthorized.status, "error": Unauthorized.error})

        session = PlayerSession(room, player_id, SocketIOConnection(socketio, request.sid))
        with sessions_lock:
            sessions[request.sid] = session

        try:
            session.open()
        except Unauthorized:
            # Room was torn down between authentication and attach.
            with sessions_lock:
                sessions.pop(request.sid, None)
            raise ConnectionRefusedError({"status": Unauthorized.status, "error": Unauthorized.error})

    @socketio.on("message")
    def on_message(data):
        with sessions_lock:
            session = sessions.get(request.sid)
        if session is None:
            return
        session.receive(data)

    @socketio.on("disconnect")
    def on_disconnect(reason=None):
        with sessions_lock:
            session = sessions.pop(request.sid, None)
        if session is None:
            return
        session.finish()
