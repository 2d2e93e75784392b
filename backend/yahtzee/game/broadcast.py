from __future__ import annotations

import json
import logging
from threading import Lock
from typing import Any, Iterable

logger = logging.getLogger(__name__)


def encode(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


class Connection:
    """One live transport handle.

    Writes are serialized by a per-connection lock so a broadcast and a
    direct send never interleave on the same socket. Subclasses provide the
    actual ``_write`` and ``_close``.
    """

    def __init__(self) -> None:
        self._write_lock = Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, data: str) -> None:
        with self._write_lock:
            if self._closed:
                return
            self._write(data)

    def send_json(self, payload: dict[str, Any]) -> None:
        self.send(encode(payload))

    def close(self) -> None:
        """Close the transport. Safe to call more than once."""
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
        self._close()

    def mark_closed(self) -> None:
        """Record that the transport already went away on its own."""
        with self._write_lock:
            self._closed = True

    def _write(self, data: str) -> None:
        raise NotImplementedError

    def _close(self) -> None:
        raise NotImplementedError


def broadcast(
    targets: Iterable[tuple[str, Connection]],
    payload: dict[str, Any],
    exclude: str | None = None,
) -> int:
    """Serialize ``payload`` once and write it to every target but ``exclude``.

    A failing peer is logged and skipped. Returns the number of successful
    writes.
    """
    data = encode(payload)
    delivered = 0
    for player_id, conn in targets:
        if exclude is not None and player_id == exclude:
            continue
        try:
            conn.send(data)
        except Exception:
            logger.warning(
                f"[send-failed] player={player_id} type={payload.get('type')}",
                exc_info=True,
            )
            continue
        delivered += 1
    return delivered
