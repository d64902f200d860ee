"""The periodic status report sent over the websocket."""

from __future__ import annotations

import json

import psutil

from komari_agent.config import AgentConfig
from komari_agent.monitoring.cpu import cpu_info
from komari_agent.monitoring.disk import disk_usage
from komari_agent.monitoring.network import (
    NetworkSpeed,
    connections_count,
    network_speed,
)
from komari_agent.monitoring.system import (
    load_average,
    process_count,
    ram,
    swap,
    uptime,
)

_MIN_CPU_USAGE = 0.001


def generate_report(config: AgentConfig) -> bytes:
    """Collect current metrics and encode them as a JSON document."""
    message = ""

    cpu = cpu_info()
    memory = ram(config.memory_mode_available)
    swap_info = swap()
    load = load_average()
    disk = disk_usage(config.include_mountpoints)

    try:
        speed = network_speed(config)
    except RuntimeError as exc:
        speed = NetworkSpeed()
        message += f"failed to get network speed: {exc}\n"
    else:
        if speed.message:
            message += f"failed to get network speed: {speed.message}\n"

    try:
        tcp_count, udp_count = connections_count()
    except RuntimeError as exc:
        tcp_count = udp_count = 0
        message += f"failed to get connections: {exc}\n"

    try:
        seconds = uptime()
    except (OSError, psutil.Error) as exc:
        seconds = 0
        message += f"failed to get uptime: {exc}\n"

    data = {
        "cpu": {"usage": max(cpu.usage, _MIN_CPU_USAGE)},
        "ram": {"total": memory.total, "used": memory.used},
        "swap": {"total": swap_info.total, "used": swap_info.used},
        "load": {"load1": load.load1, "load5": load.load5, "load15": load.load15},
        "disk": {"total": disk.total, "used": disk.used},
        "network": {
            "up": speed.up,
            "down": speed.down,
            "totalUp": speed.total_up,
            "totalDown": speed.total_down,
        },
        "connections": {"tcp": tcp_count, "udp": udp_count},
        "uptime": seconds,
        "process": process_count(),
        "message": message,
    }
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")