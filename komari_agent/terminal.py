"""Interactive shell on a pseudo terminal, bridged to a websocket."""

from __future__ import annotations

import errno
import fcntl
import json
import logging
import os
import queue
import shutil
import signal
import struct
import subprocess
import termios
import threading
from typing import Any, Callable

from websocket import ABNF

from komari_agent.config import AgentConfig

log = logging.getLogger(__name__)

DEFAULT_SHELLS = ("zsh", "bash", "sh")
_TERM_ENV = {"TERM": "xterm-256color", "LANG": "C.UTF-8", "LC_ALL": "C.UTF-8"}
_CLOSE_GRACE = 5.0
_READ_SIZE = 4096


class Terminal:
    """A process running on a pseudo terminal in its own session."""

    def __init__(self, argv: list[str], env: dict[str, str] | None = None) -> None:
        master, slave = os.openpty()
        try:
            self._process = subprocess.Popen(
                argv,
                stdin=slave,
                stdout=slave,
                stderr=slave,
                env=env,
                start_new_session=True,
                close_fds=True,
            )
        except BaseException:
            os.close(master)
            raise
        finally:
            os.close(slave)
        self._fd = master
        self._closed = False
        self.argv = argv
        self.resize(80, 24)

    @property
    def pid(self) -> int:
        return self._process.pid

    def read(self, size: int = _READ_SIZE) -> bytes:
        """Read output; raise EOFError once the terminal has hung up."""
        try:
            data = os.read(self._fd, size)
        except OSError as exc:
            if exc.errno in (errno.EIO, errno.EBADF):
                raise EOFError("terminal closed") from exc
            raise
        if not data:
            raise EOFError("terminal closed")
        return data

    def write(self, data: bytes) -> int:
        return os.write(self._fd, data)

    def resize(self, cols: int, rows: int) -> None:
        fcntl.ioctl(
            self._fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0)
        )

    def wait(self) -> int:
        """Wait for the process and return its exit code."""
        return self._process.wait()

    def close(self) -> None:
        """Terminate the process group, killing it after five seconds."""
        if self._closed:
            return
        self._closed = True
        try:
            pgid = os.getpgid(self._process.pid)
        except OSError:
            pgid = self._process.pid
        try:
            os.killpg(pgid, signal.SIGTERM)
        except OSError:
            pass
        try:
            self._process.wait(timeout=_CLOSE_GRACE)
        except subprocess.TimeoutExpired:
            try:
                os.killpg(pgid, signal.SIGKILL)
            except OSError:
                pass
            self._process.wait()
        finally:
            try:
                os.close(self._fd)
            except OSError:
                pass

    def __enter__(self) -> "Terminal":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def find_shell(
    passwd_text: str | None,
    home: str | None,
    which: Callable[[str], str | None] = shutil.which,
) -> str:
    """Pick the user's login shell from passwd, else the first common shell."""
    shell = ""
    if passwd_text is not None and home:
        for line in passwd_text.split("\n"):
            if home in line:
                parts = line.split(":")
                if len(parts) >= 7 and parts[6]:
                    shell = parts[6]
                    break
    if shell and which(shell) is None:
        log.info("Shell %r from /etc/passwd not found, falling back.", shell)
        shell = ""
    if not shell:
        for candidate in DEFAULT_SHELLS:
            if which(candidate) is not None:
                return candidate
        raise RuntimeError(f"no supported shell found among {list(DEFAULT_SHELLS)}")
    return shell


def open_terminal() -> Terminal:
    """Start the user's shell on a new pseudo terminal, interactive if possible."""
    home = os.path.expanduser("~")
    try:
        with open("/etc/passwd", encoding="utf-8", errors="replace") as file:
            passwd_text: str | None = file.read()
    except OSError as exc:
        log.warning("Error reading /etc/passwd: %s", exc)
        passwd_text = None
    shell = find_shell(passwd_text, home if home != "~" else None)
    env = {**os.environ, **_TERM_ENV}
    try:
        return Terminal([shell, "-i"], env)
    except OSError as exc:
        log.info("Failed to start %s -i: %s. Retrying without -i.", shell, exc)
    try:
        return Terminal([shell], env)
    except OSError as exc:
        raise RuntimeError(f"failed to start pty with or without -i: {exc}") from exc


def handle_input(term: Any, opcode: int, payload: bytes | str) -> None:
    """Apply one websocket message to the terminal."""
    data = payload.encode("utf-8") if isinstance(payload, str) else payload
    if opcode == ABNF.OPCODE_BINARY:
        term.write(data)
        return
    if opcode != ABNF.OPCODE_TEXT:
        return
    try:
        command = json.loads(data)
    except ValueError:
        command = None
    if not isinstance(command, dict):
        term.write(data)
        return
    kind = command.get("type")
    if kind == "resize":
        cols, rows = command.get("cols"), command.get("rows")
        if isinstance(cols, int) and isinstance(rows, int) and cols > 0 and rows > 0:
            term.resize(cols, rows)
    elif kind == "input":
        text = command.get("input")
        if isinstance(text, str) and text:
            term.write(text.encode("utf-8"))


def start_terminal(conn: Any, config: AgentConfig) -> None:
    """Bridge a websocket-client connection to a new shell until it ends."""
    lock = threading.Lock()

    def send(data: bytes | str, opcode: int) -> None:
        with lock:
            conn.send(data, opcode=opcode)

    def send_text_quietly(text: str) -> None:
        try:
            send(text, ABNF.OPCODE_TEXT)
        except Exception:  # noqa: BLE001 - the connection may already be gone
            pass

    if config.disable_web_ssh:
        send_text_quietly(
            "\n\nWeb SSH is disabled. Enable it by running without the "
            "--disable-web-ssh flag."
        )
        conn.close()
        return

    try:
        term = open_terminal()
    except (RuntimeError, OSError) as exc:
        send_text_quietly(f"Error: {exc}\r\n")
        return

    errors: queue.Queue[BaseException] = queue.Queue(maxsize=1)

    def report(exc: BaseException) -> None:
        try:
            errors.put_nowait(exc)
        except queue.Full:
            pass

    def pump_input() -> None:
        while True:
            try:
                opcode, payload = conn.recv_data()
                if opcode == ABNF.OPCODE_CLOSE:
                    raise EOFError("websocket closed")
                handle_input(term, opcode, payload)
            except Exception as exc:  # noqa: BLE001
                report(exc)
                return

    def pump_output() -> None:
        while True:
            try:
                send(term.read(_READ_SIZE), ABNF.OPCODE_BINARY)
            except Exception as exc:  # noqa: BLE001
                report(exc)
                return

    def cleanup() -> None:
        exc = errors.get()
        send_text_quietly(f"Error: {exc}\r\n")
        try:
            conn.close()
        except Exception:  # noqa: BLE001
            pass
        term.close()

    for target in (pump_input, pump_output, cleanup):
        threading.Thread(target=target, daemon=True).start()

    try:
        code = term.wait()
        if code != 0:
            try:
                errors.put_nowait(RuntimeError(f"exit status {code}"))
            except queue.Full:
                send_text_quietly(f"Terminal exited with error: exit status {code}\r\n")
    finally:
        term.close()