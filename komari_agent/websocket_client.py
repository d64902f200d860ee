"""The reporting websocket: periodic reports and commands from the server."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

import websocket
from websocket import WebSocketException

from komari_agent.config import AgentConfig
from komari_agent.report import generate_report
from komari_agent.safe_conn import SafeConn
from komari_agent.tasks import run_ping_task, run_task
from komari_agent.terminal import start_terminal

log = logging.getLogger(__name__)

HANDSHAKE_TIMEOUT = 5.0
HEARTBEAT_INTERVAL = 30.0

_STRING_FIELDS = (
    "message",
    "request_id",
    "command",
    "task_id",
    "ping_type",
    "ping_target",
)


@dataclass
class IncomingMessage:
    """A command sent by the server over the reporting connection."""

    message: str = ""
    request_id: str = ""
    command: str = ""
    task_id: str = ""
    ping_task_id: int = 0
    ping_type: str = ""
    ping_target: str = ""


def parse_message(raw: str | bytes) -> IncomingMessage:
    """Decode a server message; raise ValueError when it is malformed."""
    try:
        document = json.loads(raw)
    except ValueError as exc:
        raise ValueError(f"invalid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise ValueError("message is not a JSON object")

    values: dict[str, Any] = {}
    for name in _STRING_FIELDS:
        value = document.get(name)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValueError(f"field {name!r} must be a string")
        values[name] = value

    ping_task_id = document.get("ping_task_id")
    if ping_task_id is not None:
        if (
            isinstance(ping_task_id, bool)
            or not isinstance(ping_task_id, int)
            or ping_task_id < 0
        ):
            raise ValueError("field 'ping_task_id' must be a non-negative integer")
        values["ping_task_id"] = ping_task_id
    return IncomingMessage(**values)


def _to_ws(url: str) -> str:
    return "ws" + url.removeprefix("http")


def report_url(config: AgentConfig) -> str:
    """Return the websocket URL that reports are sent to."""
    return _to_ws(config.api_url("/api/clients/report"))


def terminal_url(config: AgentConfig, request_id: str) -> str:
    """Return the websocket URL of the terminal session ``request_id``."""
    return _to_ws(config.api_url("/api/clients/terminal") + "&id=" + request_id)


def connect_websocket(url: str) -> SafeConn:
    """Open a websocket; a rejected handshake raises ConnectionError."""
    try:
        conn = websocket.create_connection(url, timeout=HANDSHAKE_TIMEOUT)
    except WebSocketException as exc:
        raise ConnectionError(str(exc)) from exc
    conn.settimeout(None)
    return SafeConn(conn)


def dispatch_message(
    conn: Any, config: AgentConfig, message: IncomingMessage
) -> threading.Thread | None:
    """Start a worker thread for the message; None if it asks for nothing."""
    if message.message == "terminal" or message.request_id:
        target, args = establish_terminal_connection, (config, message.request_id)
    elif message.message == "exec":
        target, args = run_task, (config, message.task_id, message.command)
    elif (
        message.message == "ping"
        or message.ping_task_id
        or message.ping_type
        or message.ping_target
    ):
        target, args = run_ping_task, (
            conn,
            message.ping_task_id,
            message.ping_type,
            message.ping_target,
        )
    else:
        return None
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


def handle_messages(conn: Any, config: AgentConfig) -> list[threading.Thread]:
    """Read and dispatch messages until the connection fails.

    Returns the worker threads that were started.
    """
    workers = []
    while True:
        try:
            _, raw = conn.read_message()
        except Exception as exc:  # noqa: BLE001 - any read failure ends the loop
            log.warning("WebSocket read error: %s", exc)
            return workers
        try:
            message = parse_message(raw)
        except ValueError as exc:
            log.warning("Bad ws message: %s", exc)
            continue
        worker = dispatch_message(conn, config, message)
        if worker is not None:
            workers.append(worker)


def _connect_with_retries(url: str, config: AgentConfig) -> SafeConn | None:
    log.info("Attempting to connect to WebSocket...")
    for attempt in range(config.max_retries + 1):
        if attempt:
            log.info("Retrying websocket connection, attempt: %d", attempt)
        try:
            conn = connect_websocket(url)
        except OSError as exc:
            log.warning("Failed to connect to WebSocket: %s", exc)
        else:
            log.info("WebSocket connected")
            threading.Thread(
                target=handle_messages, args=(conn, config), daemon=True
            ).start()
            return conn
        time.sleep(config.reconnect_interval)
    log.warning("Max retries reached.")
    return None


def _close_quietly(conn: SafeConn) -> None:
    try:
        conn.close()
    except Exception:  # noqa: BLE001 - the connection is being discarded
        pass


def establish_connection(config: AgentConfig) -> None:
    """Send reports and heartbeats until connecting fails too often."""
    url = report_url(config)
    interval = 1.0 if config.interval <= 1 else config.interval - 1
    conn: SafeConn | None = None
    start = time.monotonic()
    next_report = start + interval
    next_heartbeat = start + HEARTBEAT_INTERVAL
    try:
        while True:
            time.sleep(max(0.0, min(next_report, next_heartbeat) - time.monotonic()))
            now = time.monotonic()

            if now >= next_report:
                while next_report <= now:
                    next_report += interval
                if conn is None:
                    conn = _connect_with_retries(url, config)
                    if conn is None:
                        return
                try:
                    conn.send_text(generate_report(config))
                except Exception as exc:  # noqa: BLE001
                    log.warning("Failed to send WebSocket message: %s", exc)
                    _close_quietly(conn)
                    conn = None
                    continue

            if now >= next_heartbeat:
                while next_heartbeat <= now:
                    next_heartbeat += HEARTBEAT_INTERVAL
                if conn is not None:
                    try:
                        conn.ping()
                    except Exception as exc:  # noqa: BLE001
                        log.warning("Failed to send heartbeat: %s", exc)
                        _close_quietly(conn)
                        conn = None
    finally:
        if conn is not None:
            _close_quietly(conn)


def establish_terminal_connection(config: AgentConfig, request_id: str) -> None:
    """Open the terminal websocket for ``request_id`` and run a shell on it."""
    url = terminal_url(config, request_id)
    try:
        conn = websocket.create_connection(url, timeout=HANDSHAKE_TIMEOUT)
    except (OSError, WebSocketException) as exc:
        log.warning("Failed to establish terminal connection: %s", exc)
        return
    conn.settimeout(None)
    try:
        start_terminal(conn, config)
    finally:
        try:
            conn.close()
        except Exception:  # noqa: BLE001
            pass