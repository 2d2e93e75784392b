from __future__ import annotations

import logging
from threading import Lock
from typing import Any

from flask_socketio import SocketIO

from ..game.broadcast import Connection
from ..game.room import Room
from .events import MalformedMessage, decode_message

logger = logging.getLogger(__name__)


class SocketIOConnection(Connection):
    def __init__(self, socketio: SocketIO, sid: str, namespace: str = "/") -> None:
        super().__init__()
        self.socketio = socketio
        self.sid = sid
        self.namespace = namespace

    def _write(self, data: str) -> None:
        self.socketio.send(data, to=self.sid, namespace=self.namespace)

    def _close(self) -> None:
        self.socketio.server.disconnect(self.sid, namespace=self.namespace)


class PlayerSession:
    """An authenticated connection's lifetime inside one room.

    ``open`` runs once after authentication, ``receive`` once per inbound
    frame, and ``finish`` when the transport goes away for any reason. The
    disconnect policy runs at most once per session.
    """

    def __init__(self, room: Room, player_id: str, connection: Connection) -> None:
        self.room = room
        self.player_id = player_id
        self.connection = connection
        self._finish_lock = Lock()
        self._finished = False

    def open(self) -> None:
        self.room.attach(self.player_id, self.connection)

    def receive(self, raw: Any) -> None:
        if self._finished:
            return
        try:
            event = decode_message(raw, self.player_id)
        except MalformedMessage as exc:
            logger.warning(f"[bad-message] room={self.room.code} player={self.player_id} error={exc}")
            return
        self.room.handle_event(event)

    def finish(self) -> None:
        with self._finish_lock:
            if self._finished:
                return
            self._finished = True
        self.connection.mark_closed()
        logger.info(f"[session-closed] room={self.room.code} player={self.player_id}")
        self.room.detach(self.player_id, self.connection)
