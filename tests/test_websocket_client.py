import json
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import responses

from komari_agent.config import AgentConfig
from komari_agent.websocket_client import (
    IncomingMessage,
    connect_websocket,
    dispatch_message,
    establish_connection,
    handle_messages,
    parse_message,
    report_url,
    terminal_url,
)


class FakeConn:
    def __init__(self, messages=()):
        self.messages = list(messages)
        self.sent = []

    def read_message(self):
        if not self.messages:
            raise ConnectionError("closed")
        return 1, self.messages.pop(0)

    def write_json(self, value):
        self.sent.append(value)


def closed_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class _Forbidden(BaseHTTPRequestHandler):
    def do_GET(self):
        self.send_response(403)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, *args):
        pass


@pytest.fixture
def forbidden_port():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Forbidden)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address[1]
    server.shutdown()
    server.server_close()


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


def test_parse_message_reads_all_fields():
    raw = json.dumps(
        {
            "message": "ping",
            "request_id": "r1",
            "command": "ls",
            "task_id": "t1",
            "ping_task_id": 12,
            "ping_type": "tcp",
            "ping_target": "host:22",
        }
    )
    assert parse_message(raw) == IncomingMessage(
        message="ping",
        request_id="r1",
        command="ls",
        task_id="t1",
        ping_task_id=12,
        ping_type="tcp",
        ping_target="host:22",
    )


def test_parse_message_defaults_and_nulls():
    assert parse_message(b'{"message": "exec", "command": null}') == IncomingMessage(
        message="exec"
    )


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"message": 5}',
        '{"ping_task_id": 1.5}',
        '{"ping_task_id": -1}',
        '{"ping_task_id": true}',
    ],
)
def test_parse_message_rejects_malformed(raw):
    with pytest.raises(ValueError):
        parse_message(raw)


def test_report_url_switches_scheme():
    config = AgentConfig(token="token", endpoint="http://example.com/")
    assert report_url(config) == "ws://example.com/api/clients/report?token=token"
    secure = AgentConfig(token="token", endpoint="https://example.com")
    assert report_url(secure).startswith("wss://example.com/")


def test_terminal_url_carries_request_id():
    config = AgentConfig(token="token", endpoint="https://example.com")
    url = terminal_url(config, "abc")
    assert url.startswith("wss://example.com/api/clients/terminal?token=token")
    assert url.endswith("&id=abc")


def test_connect_refused():
    with pytest.raises(OSError):
        connect_websocket(f"ws://127.0.0.1:{closed_port()}/")


def test_connect_rejected_handshake(forbidden_port):
    with pytest.raises(ConnectionError, match="403"):
        connect_websocket(f"ws://127.0.0.1:{forbidden_port}/")


def test_dispatch_ignores_plain_message():
    assert dispatch_message(FakeConn(), AgentConfig(), IncomingMessage("hello")) is None


def test_dispatch_unsupported_ping_sends_nothing():
    conn = FakeConn()
    thread = dispatch_message(
        conn, AgentConfig(), IncomingMessage(ping_task_id=5, ping_type="udp")
    )
    thread.join(5)
    assert conn.sent == []


def test_dispatch_tcp_ping_writes_result():
    with socket.create_server(("127.0.0.1", 0)) as server:
        port = server.getsockname()[1]
        conn = FakeConn()
        message = IncomingMessage(
            message="ping",
            ping_task_id=3,
            ping_type="tcp",
            ping_target=f"127.0.0.1:{port}",
        )
        thread = dispatch_message(conn, AgentConfig(), message)
        thread.join(10)
    assert len(conn.sent) == 1
    payload = conn.sent[0]
    assert payload["type"] == "ping_result"
    assert payload["task_id"] == 3
    assert payload["ping_type"] == "tcp"
    assert payload["value"] >= 0


def test_handle_messages_dispatches_exec(mocked):
    url = "http://example.com/api/clients/task/result?token=token"
    mocked.add(responses.POST, url, status=200)
    config = AgentConfig(
        token="token", endpoint="http://example.com", disable_web_ssh=True
    )
    conn = FakeConn(
        [
            b"not json",
            '{"message": "exec", "task_id": "7", "command": "echo hi"}',
            '{"message": "hello"}',
        ]
    )
    workers = handle_messages(conn, config)
    assert len(workers) == 1
    workers[0].join(10)
    assert conn.messages == []
    assert len(mocked.calls) == 1
    body = json.loads(mocked.calls[0].request.body)
    assert body["task_id"] == "7"
    assert body["result"] == "Remote control is disabled."
    assert body["exit_code"] == -1


def test_establish_connection_gives_up_after_retries():
    config = AgentConfig(
        token="token",
        endpoint=f"http://127.0.0.1:{closed_port()}",
        interval=1.0,
        max_retries=0,
        reconnect_interval=0,
    )
    start = time.monotonic()
    result = establish_connection(config)
    assert result is None
    assert time.monotonic() - start >= 1.0