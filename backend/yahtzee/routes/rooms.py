from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..game.errors import RoomError
from ..game.registry import RoomRegistry

bp = Blueprint("rooms", __name__)

DEFAULT_PLAYER_NAME = "Player"


class InvalidBody(RoomError):
    status = 400
    error = "invalid_body"


def _registry() -> RoomRegistry:
    return current_app.extensions["yahtzee"]


def _body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidBody()
    return data


def _text(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidBody()
    return value.strip()


@bp.errorhandler(RoomError)
def room_error(exc: RoomError):
    return jsonify({"error": exc.error}), exc.status


@bp.post("/rooms")
def create_room():
    data = _body()
    name = _text(data, "player_name") or DEFAULT_PLAYER_NAME

    _, result = _registry().create_room(name)
    return jsonify(result.as_response())


@bp.post("/rooms/join")
def join_room():
    data = _body()
    name = _text(data, "player_name") or DEFAULT_PLAYER_NAME

    _, result = _registry().join_room(
        _text(data, "room_code"),
        name,
        player_id=_text(data, "player_id") or None,
        token=_text(data, "token") or None,
    )
    return jsonify(result.as_response())
