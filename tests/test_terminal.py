import json
import os

import pytest
from websocket import ABNF

from komari_agent.config import AgentConfig
from komari_agent.terminal import Terminal, find_shell, handle_input, start_terminal

USER_DB = (
    "root:x:0:0:root:/root:/bin/bash\n"
    "alice:x:1000:1000::/home/alice:/usr/bin/fish\n"
    "bob:x:1001:1001::/home/bob:\n"
)


class FakeTerm:
    def __init__(self):
        self.written = []
        self.sizes = []

    def write(self, data):
        self.written.append(data)
        return len(data)

    def resize(self, cols, rows):
        self.sizes.append((cols, rows))


class FakeConn:
    def __init__(self):
        self.sent = []
        self.closed = False

    def send(self, data, opcode):
        self.sent.append((opcode, data))

    def close(self):
        self.closed = True


def which_of(*available):
    return lambda name: f"/bin/{name}" if name in available else None


def test_find_shell_from_user_db():
    shell = find_shell(USER_DB, "/home/alice", which_of("/usr/bin/fish", "sh"))
    assert shell == "/usr/bin/fish"


def test_find_shell_falls_back_when_missing():
    assert find_shell(USER_DB, "/home/alice", which_of("bash", "sh")) == "bash"


def test_find_shell_empty_field_falls_back():
    assert find_shell(USER_DB, "/home/bob", which_of("zsh", "sh")) == "zsh"


def test_find_shell_no_user_db():
    assert find_shell(None, None, which_of("sh")) == "sh"


def test_find_shell_none_available():
    with pytest.raises(RuntimeError, match="no supported shell"):
        find_shell(USER_DB, "/home/alice", which_of())


def test_handle_input_resize():
    term = FakeTerm()
    handle_input(term, ABNF.OPCODE_TEXT, json.dumps({"type": "resize", "cols": 120, "rows": 40}))
    assert term.sizes == [(120, 40)]


def test_handle_input_resize_ignores_zero():
    term = FakeTerm()
    handle_input(term, ABNF.OPCODE_TEXT, json.dumps({"type": "resize", "cols": 0, "rows": 40}))
    assert term.sizes == []


def test_handle_input_input_message():
    term = FakeTerm()
    handle_input(term, ABNF.OPCODE_TEXT, json.dumps({"type": "input", "input": "ls\r"}))
    assert term.written == [b"ls\r"]


def test_handle_input_raw_text():
    term = FakeTerm()
    handle_input(term, ABNF.OPCODE_TEXT, "not json")
    assert term.written == [b"not json"]


def test_handle_input_binary():
    term = FakeTerm()
    handle_input(term, ABNF.OPCODE_BINARY, b"\x03")
    assert term.written == [b"\x03"]


def test_start_terminal_disabled():
    conn = FakeConn()
    start_terminal(conn, AgentConfig(disable_web_ssh=True))
    assert conn.closed is True
    assert "Web SSH is disabled" in conn.sent[0][1]


def test_terminal_runs_command():
    term = Terminal(["sh", "-c", "echo hello-pty"], dict(os.environ))
    output = b""
    try:
        while True:
            output += term.read()
    except EOFError:
        pass
    assert term.wait() == 0
    term.close()
    assert b"hello-pty" in output


def test_terminal_close_stops_process():
    term = Terminal(["sh", "-c", "sleep 30"], dict(os.environ))
    term.close()
    assert term.wait() != 0
    with pytest.raises(EOFError):
        term.read()