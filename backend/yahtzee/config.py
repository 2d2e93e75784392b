import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev")

    # CORS
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    # Reverse proxy / IP headers
    TRUST_PROXY_HEADERS = os.environ.get("TRUST_PROXY_HEADERS", "1") == "1"

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "info")

    # Socket.IO (empty = pick per platform)
    SOCKETIO_ASYNC_MODE = os.environ.get("SOCKETIO_ASYNC_MODE", "").strip()

    # Rooms
    ROOM_IDLE_TIMEOUT_SEC = int(os.environ.get("ROOM_IDLE_TIMEOUT_SEC", "1800"))
