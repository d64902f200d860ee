"""Remote command execution and latency probes requested by the server."""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import socket
import struct
import subprocess
import sys
import time
from datetime import datetime
from typing import Any

import requests

from komari_agent.config import AgentConfig

log = logging.getLogger(__name__)

PING_TIMEOUT = 3.0
_RETRY_DELAY = 2
_UPLOAD_TIMEOUT = 30


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.astimezone()
        return value.isoformat()
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def build_command(command: str, system: str | None = None) -> list[str]:
    """Return the argv that runs ``command`` through the platform shell."""
    if system is None:
        system = sys.platform
    if system.startswith("win"):
        return [
            "powershell",
            "-NoProfile",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            "[Console]::OutputEncoding = [System.Text.Encoding]::UTF8; " + command,
        ]
    return ["sh", "-c", command]


def upload_task_result(
    config: AgentConfig,
    task_id: str,
    result: str,
    exit_code: int,
    finished_at: datetime,
) -> bool:
    """Post a task result, retrying up to ``max_retries`` times.

    Returns True once the server accepted it.
    """
    payload = json.dumps(
        {
            "task_id": task_id,
            "result": result,
            "exit_code": exit_code,
            "finished_at": finished_at,
        },
        default=_json_default,
    )
    endpoint = f"{config.endpoint}/api/clients/task/result?token={config.token}"

    def post() -> requests.Response | None:
        try:
            return requests.post(
                endpoint,
                data=payload,
                headers={"Content-Type": "application/json"},
                timeout=_UPLOAD_TIMEOUT,
            )
        except requests.RequestException as exc:
            log.warning("Failed to upload task result: %s", exc)
            return None

    response = post()
    for attempt in range(config.max_retries):
        if response is not None and response.status_code == 200:
            break
        log.info(
            "Failed to upload task result, retrying %d/%d",
            attempt + 1,
            config.max_retries,
        )
        time.sleep(_RETRY_DELAY)
        response = post()

    if response is None:
        return False
    if response.status_code != 200:
        log.warning(
            "Failed to upload task result: %s %s",
            response.status_code,
            response.reason,
        )
        return False
    return True


def run_task(config: AgentConfig, task_id: str, command: str) -> None:
    """Run a remote command and upload its output and exit code."""
    if not task_id:
        return
    if not command:
        upload_task_result(config, task_id, "No command provided", 0, datetime.now())
        return
    if config.disable_web_ssh:
        upload_task_result(
            config, task_id, "Remote control is disabled.", -1, datetime.now()
        )
        return

    log.info("Executing task %s with command: %s", task_id, command)
    exit_code = 0
    stdout = stderr = ""
    try:
        completed = subprocess.run(build_command(command), capture_output=True)
    except OSError as exc:
        stderr = str(exc)
    else:
        stdout = completed.stdout.decode("utf-8", errors="replace")
        stderr = completed.stderr.decode("utf-8", errors="replace")
        exit_code = completed.returncode
    finished_at = datetime.now()

    result = stdout
    if stderr:
        result += "\n" + stderr
    result = result.replace("\r\n", "\n")
    upload_task_result(config, task_id, result, exit_code, finished_at)


def resolve_ip(target: str) -> str:
    """Return ``target`` if it is an IP address, else its first resolved address."""
    try:
        ipaddress.ip_address(target)
    except ValueError:
        pass
    else:
        return target
    try:
        infos = socket.getaddrinfo(target, None)
    except (OSError, UnicodeError) as exc:
        raise OSError("failed to resolve target") from exc
    if not infos:
        raise OSError("failed to resolve target")
    return str(infos[0][4][0])


def split_host_port(target: str) -> tuple[str, str]:
    """Split ``host:port`` or ``[v6]:port``; raise ValueError without a port."""
    if target.startswith("["):
        end = target.find("]")
        if end < 0:
            raise ValueError(f"address {target}: missing ']' in address")
        rest = target[end + 1:]
        if not rest.startswith(":"):
            raise ValueError(f"address {target}: missing port in address")
        host, port = target[1:end], rest[1:]
        if ":" in port:
            raise ValueError(f"address {target}: too many colons in address")
        return host, port
    host, sep, port = target.rpartition(":")
    if not sep:
        raise ValueError(f"address {target}: missing port in address")
    if ":" in host:
        raise ValueError(f"address {target}: too many colons in address")
    return host, port


def _checksum(data: bytes) -> int:
    if len(data) % 2:
        data += b"\0"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    total = (total >> 16) + (total & 0xFFFF)
    total += total >> 16
    return ~total & 0xFFFF


def icmp_ping(target: str, timeout: float = PING_TIMEOUT) -> int:
    """Send one ICMP echo and return the round trip in milliseconds."""
    try:
        host, _ = split_host_port(target)
    except ValueError:
        host = target
    host = host.strip("[]")
    ip = resolve_ip(host)

    if ipaddress.ip_address(ip).version == 6:
        family, proto, echo, reply = socket.AF_INET6, socket.IPPROTO_ICMPV6, 128, 129
    else:
        family, proto, echo, reply = socket.AF_INET, socket.IPPROTO_ICMP, 8, 0

    ident = os.getpid() & 0xFFFF
    seq = 1
    body = b"komari-ping"
    header = struct.pack("!BBHHH", echo, 0, 0, ident, seq)
    if family == socket.AF_INET:
        header = struct.pack(
            "!BBHHH", echo, 0, _checksum(header + body), ident, seq
        )
    packet = header + body

    with socket.socket(family, socket.SOCK_RAW, proto) as sock:
        deadline = time.monotonic() + timeout
        start = time.monotonic()
        sock.sendto(packet, (ip, 0))
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("no packets received")
            sock.settimeout(remaining)
            try:
                data, _ = sock.recvfrom(2048)
            except socket.timeout as exc:
                raise TimeoutError("no packets received") from exc
            if family == socket.AF_INET:
                data = data[(data[0] & 0x0F) * 4:]
            if len(data) < 8:
                continue
            kind, _, _, got_id, got_seq = struct.unpack("!BBHHH", data[:8])
            if kind == reply and got_id == ident and got_seq == seq:
                return int((time.monotonic() - start) * 1000)


def tcp_ping(target: str, timeout: float = PING_TIMEOUT) -> int:
    """Time a TCP connect in milliseconds; port 80 when none is given."""
    try:
        host, port = split_host_port(target)
    except ValueError:
        host, port = target, "80"
    ip = resolve_ip(host)
    try:
        port_number = int(port)
    except ValueError:
        port_number = socket.getservbyname(port, "tcp")
    start = time.monotonic()
    with socket.create_connection((ip, port_number), timeout=timeout):
        return int((time.monotonic() - start) * 1000)


def http_ping(target: str, timeout: float = PING_TIMEOUT) -> int:
    """Time an HTTP GET in milliseconds; raise unless the status is 2xx or 3xx."""
    if ":" in target and "[" not in target:
        try:
            if ipaddress.ip_address(target).version == 6:
                target = f"[{target}]"
        except ValueError:
            pass
    if not target.startswith(("http://", "https://")):
        target = "http://" + target

    start = time.monotonic()
    response = requests.get(target, timeout=timeout)
    latency = int((time.monotonic() - start) * 1000)
    response.close()
    if 200 <= response.status_code < 400:
        return latency
    raise OSError("http status not ok")


_PROBES = {"icmp": icmp_ping, "tcp": tcp_ping, "http": http_ping}


def run_ping_task(conn: Any, task_id: int, ping_type: str, target: str) -> None:
    """Run a probe and send its latency to ``conn``; failures send nothing."""
    if not task_id:
        log.warning("Invalid task ID: %s", task_id)
        return
    probe = _PROBES.get(ping_type)
    if probe is None:
        log.warning("Unsupported ping type: %s", ping_type)
        return
    try:
        latency = probe(target, PING_TIMEOUT)
    except (OSError, ValueError, requests.RequestException) as exc:
        log.warning("Ping task %s failed: %s", task_id, exc)
        return
    payload = {
        "type": "ping_result",
        "task_id": task_id,
        "ping_type": ping_type,
        "value": latency,
        "finished_at": datetime.now(),
    }
    try:
        conn.write_json(payload)
    except Exception as exc:  # noqa: BLE001 - any transport failure is logged
        log.warning("Failed to write JSON to WebSocket: %s", exc)