"""A websocket connection whose writes may come from several threads."""

from __future__ import annotations

import json
import threading
from datetime import datetime
from typing import Any

from websocket import ABNF, WebSocketConnectionClosedException


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.astimezone()
        return value.isoformat()
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


class SafeConn:
    """Serialise writes on a websocket-client connection with a lock.

    Reads are left unlocked; a single reader is expected.
    """

    def __init__(self, conn: Any) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    @property
    def conn(self) -> Any:
        with self._lock:
            return self._conn

    def send_text(self, data: str | bytes) -> None:
        with self._lock:
            self._conn.send(data, opcode=ABNF.OPCODE_TEXT)

    def send_binary(self, data: bytes) -> None:
        with self._lock:
            self._conn.send(data, opcode=ABNF.OPCODE_BINARY)

    def ping(self) -> None:
        with self._lock:
            self._conn.ping()

    def write_json(self, value: Any) -> None:
        """Encode ``value`` as JSON and send it as a text message."""
        text = json.dumps(value, default=_json_default, separators=(",", ":"))
        self.send_text(text)

    def read_message(self) -> tuple[int, bytes | str]:
        """Return the next (opcode, payload); raise once the peer closes."""
        opcode, data = self._conn.recv_data()
        if opcode == ABNF.OPCODE_CLOSE:
            raise WebSocketConnectionClosedException("connection closed by peer")
        return opcode, data

    def settimeout(self, timeout: float | None) -> None:
        self._conn.settimeout(timeout)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SafeConn":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()