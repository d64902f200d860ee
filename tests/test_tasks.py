import json
import socket
import threading
from datetime import datetime

import pytest
import responses

from komari_agent.config import AgentConfig
from komari_agent.tasks import (
    build_command,
    http_ping,
    resolve_ip,
    run_ping_task,
    run_task,
    split_host_port,
    tcp_ping,
    upload_task_result,
)

RESULT_URL = "http://server.example.com/api/clients/task/result"


def make_config(**kwargs):
    return AgentConfig(
        token="token",
        endpoint="http://server.example.com",
        max_retries=0,
        **kwargs,
    )


class FakeConn:
    def __init__(self):
        self.sent = []

    def write_json(self, value):
        self.sent.append(value)


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def listener():
    server = socket.socket()
    server.bind(("127.0.0.1", 0))
    server.listen(5)
    stop = threading.Event()

    def accept():
        server.settimeout(0.2)
        while not stop.is_set():
            try:
                client, _ = server.accept()
                client.close()
            except OSError:
                continue

    thread = threading.Thread(target=accept, daemon=True)
    thread.start()
    yield server.getsockname()[1]
    stop.set()
    thread.join()
    server.close()


def test_build_command_unix():
    assert build_command("ls", "linux") == ["sh", "-c", "ls"]


def test_build_command_windows():
    argv = build_command("dir", "win32")
    assert argv[0] == "powershell"
    assert argv[-1].endswith("; dir")


@pytest.mark.parametrize(
    "target,expected",
    [
        ("[2409:8c1e:8f80:2:6a::]:80", ("2409:8c1e:8f80:2:6a::", "80")),
        ("117.185.125.154:80", ("117.185.125.154", "80")),
    ],
)
def test_split_host_port(target, expected):
    assert split_host_port(target) == expected


@pytest.mark.parametrize(
    "target", ["v6-sh-cm.oojj.de", "2409:8c1e:8f80:2:6a::", "117.185.125.154"]
)
def test_split_host_port_without_port(target):
    with pytest.raises(ValueError):
        split_host_port(target)


@pytest.mark.parametrize("ip", ["117.185.125.154", "2409:8c1e:8f80:2:6a::"])
def test_resolve_ip_literal(ip):
    assert resolve_ip(ip) == ip


def test_resolve_localhost():
    assert resolve_ip("localhost") in ("127.0.0.1", "::1")


def test_upload_task_result_body(mocked):
    mocked.add(responses.POST, RESULT_URL, status=200)
    ok = upload_task_result(make_config(), "t1", "out", 3, datetime(2024, 1, 2))
    assert ok is True
    body = json.loads(mocked.calls[0].request.body)
    assert body["task_id"] == "t1"
    assert body["exit_code"] == 3
    assert body["finished_at"].startswith("2024-01-02T00:00:00")
    assert "token=token" in mocked.calls[0].request.url


def test_upload_task_result_failure(mocked):
    mocked.add(responses.POST, RESULT_URL, status=500)
    assert upload_task_result(make_config(), "t1", "", 0, datetime.now()) is False


def test_run_task_runs_command(mocked):
    mocked.add(responses.POST, RESULT_URL, status=200)
    result = run_task(make_config(), "t2", "echo hello; echo oops 1>&2; exit 4")
    assert result is None
    assert len(mocked.calls) == 1
    body = json.loads(mocked.calls[0].request.body)
    assert body["result"] == "hello\n\noops\n"
    assert body["exit_code"] == 4


def test_run_task_disabled(mocked):
    mocked.add(responses.POST, RESULT_URL, status=200)
    result = run_task(make_config(disable_web_ssh=True), "t3", "echo hi")
    assert result is None
    assert len(mocked.calls) == 1
    body = json.loads(mocked.calls[0].request.body)
    assert body["result"] == "Remote control is disabled."
    assert body["exit_code"] == -1


def test_run_task_empty_command(mocked):
    mocked.add(responses.POST, RESULT_URL, status=200)
    result = run_task(make_config(), "t4", "")
    assert result is None
    assert len(mocked.calls) == 1
    body = json.loads(mocked.calls[0].request.body)
    assert body["result"] == "No command provided"
    assert body["exit_code"] == 0


def test_run_task_without_id_sends_nothing(mocked):
    result = run_task(make_config(), "", "echo hi")
    assert result is None
    assert len(mocked.calls) == 0


def test_tcp_ping_local(listener):
    assert tcp_ping(f"127.0.0.1:{listener}", 3) >= 0


def test_tcp_ping_refused():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    with pytest.raises(OSError):
        tcp_ping(f"127.0.0.1:{port}", 1)


def test_http_ping_ok(mocked):
    mocked.add(responses.GET, "http://example.com/", status=200)
    assert http_ping("example.com", 3) >= 0
    assert mocked.calls[0].request.url == "http://example.com/"


def test_http_ping_bad_status(mocked):
    mocked.add(responses.GET, "http://example.com/", status=500)
    with pytest.raises(OSError, match="http status not ok"):
        http_ping("example.com", 3)


def test_http_ping_wraps_ipv6(mocked):
    mocked.add(responses.GET, "http://[::1]/", status=204)
    assert http_ping("::1", 3) >= 0


def test_run_ping_task_tcp(listener):
    conn = FakeConn()
    run_ping_task(conn, 7, "tcp", f"127.0.0.1:{listener}")
    assert len(conn.sent) == 1
    assert conn.sent[0]["type"] == "ping_result"
    assert conn.sent[0]["task_id"] == 7
    assert conn.sent[0]["value"] >= 0


def test_run_ping_task_unsupported_type():
    conn = FakeConn()
    run_ping_task(conn, 7, "udp", "127.0.0.1")
    assert conn.sent == []


def test_run_ping_task_zero_id(listener):
    conn = FakeConn()
    run_ping_task(conn, 0, "tcp", f"127.0.0.1:{listener}")
    assert conn.sent == []