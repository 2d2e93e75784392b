from __future__ import annotations

import logging
import sys

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import Config
from .game.registry import RoomRegistry
from .realtime.handlers import register_socketio_handlers
from .routes.health import bp as health_bp
from .routes.rooms import bp as rooms_bp

logger = logging.getLogger(__name__)


def _async_mode(configured: str) -> str:
    if configured:
        return configured
    # eventlet does not run on Windows or CPython 3.13+.
    if sys.platform.startswith("win") or sys.version_info >= (3, 13):
        return "threading"
    return "eventlet"


def create_app(config_class=Config) -> tuple[Flask, SocketIO]:
    app = Flask(__name__)
    app.config.from_object(config_class)

    if app.config.get("TRUST_PROXY_HEADERS", False):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    CORS(app, resources={r"/api/*": {"origins": cors_origins}})

    socketio = SocketIO(
        app,
        cors_allowed_origins=cors_origins,
        async_mode=_async_mode(app.config.get("SOCKETIO_ASYNC_MODE", "")),
    )

    registry = RoomRegistry()
    app.extensions["yahtzee"] = registry

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(rooms_bp, url_prefix="/api")

    register_socketio_handlers(socketio, registry)

    # Tests call registry.sweep() directly.
    if not app.config.get("TESTING", False):
        idle_timeout = int(app.config.get("ROOM_IDLE_TIMEOUT_SEC", 1800))
        socketio.start_background_task(registry.run_sweeper, socketio.sleep, idle_timeout)
        logger.info(f"[sweeper-started] idle_timeout={idle_timeout}s")

    return app, socketio
