import json
import os
import random
import sys

import pytest

# Ensure the backend root (containing the `yahtzee` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from yahtzee.game.broadcast import Connection
from yahtzee.game.registry import RoomRegistry
from yahtzee.realtime.events import InboundEvent
from yahtzee.realtime.session import PlayerSession
from yahtzee.server import create_app


class TestConfig:
    TESTING = True
    SECRET_KEY = 'test-secret'
    CORS_ORIGINS = '*'
    TRUST_PROXY_HEADERS = False
    SOCKETIO_ASYNC_MODE = 'threading'
    ROOM_IDLE_TIMEOUT_SEC = 1800


class RecordingConnection(Connection):
    """In-memory connection that keeps every frame it was sent."""

    def __init__(self):
        super().__init__()
        self.frames = []
        self.on_close = None

    def _write(self, data):
        self.frames.append(json.loads(data))

    def _close(self):
        # A real transport reports its own disconnect back to the session.
        if self.on_close is not None:
            self.on_close()

    def of_type(self, event_type):
        return [f for f in self.frames if f.get('type') == event_type]

    def types(self):
        return [f.get('type') for f in self.frames]


@pytest.fixture()
def registry():
    seeds = iter(range(1000))
    return RoomRegistry(rng_factory=lambda: random.Random(next(seeds)))


@pytest.fixture()
def open_session():
    def _open(room, player_id):
        conn = RecordingConnection()
        session = PlayerSession(room, player_id, conn)
        conn.on_close = session.finish
        session.open()
        return session
    return _open


@pytest.fixture()
def act():
    def _act(room, player_id, event_type, **fields):
        room.handle_event(InboundEvent(type=event_type, player_id=player_id, fields=fields))
    return _act


@pytest.fixture()
def flask_app():
    application, _ = create_app(TestConfig)
    yield application


@pytest.fixture()
def socketio(flask_app):
    return flask_app.extensions['socketio']


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()
