from __future__ import annotations


class RoomError(Exception):
    """Request validation fault surfaced to the caller with a status code."""

    status = 400
    error = "bad_request"

    def __init__(self, room_code: str = "") -> None:
        super().__init__(f"{self.error}: {room_code}" if room_code else self.error)
        self.room_code = room_code


class RoomNotFound(RoomError):
    status = 404
    error = "room_not_found"


class RoomFull(RoomError):
    status = 403
    error = "room_full"


class Unauthorized(RoomError):
    status = 401
    error = "unauthorized"
