"""Load, memory, uptime, process count and virtualization type."""

from __future__ import annotations

import os
import subprocess
import sys
import time
from dataclasses import dataclass

import psutil

_WINDOWS_MAX_PROCESSES = 1024


@dataclass
class LoadInfo:
    load1: float = 0.0
    load5: float = 0.0
    load15: float = 0.0


@dataclass
class MemoryInfo:
    total: int = 0
    used: int = 0


def load_average() -> LoadInfo:
    """Return the 1, 5 and 15 minute load averages, zeros on failure."""
    try:
        load1, load5, load15 = psutil.getloadavg()
    except (OSError, psutil.Error):
        return LoadInfo()
    return LoadInfo(load1, load5, load15)


def ram(memory_mode_available: bool = False) -> MemoryInfo:
    """Return total and used memory; 'used' is total minus available if asked."""
    try:
        vm = psutil.virtual_memory()
    except (OSError, psutil.Error):
        return MemoryInfo()
    if memory_mode_available:
        return MemoryInfo(vm.total, vm.total - vm.available)
    return MemoryInfo(vm.total, vm.used)


def swap() -> MemoryInfo:
    """Return total and used swap space, zeros on failure."""
    try:
        sm = psutil.swap_memory()
    except (OSError, psutil.Error):
        return MemoryInfo()
    return MemoryInfo(sm.total, sm.used)


def uptime() -> int:
    """Return seconds since boot."""
    return int(time.time() - psutil.boot_time())


def count_ps_lines(output: str) -> int:
    """Count ps output lines, less one for the header."""
    return len(output.split("\n")) - 1


def _ps_count(args: list[str]) -> int:
    try:
        result = subprocess.run(args, capture_output=True, text=True, check=True)
    except (OSError, subprocess.CalledProcessError):
        return 0
    return count_ps_lines(result.stdout)


def _proc_count() -> int:
    try:
        entries = os.listdir("/proc")
    except OSError:
        return 0
    return sum(1 for name in entries if name.isdigit())


def process_count() -> int:
    """Return the number of running processes."""
    platform = sys.platform
    if platform.startswith("win"):
        try:
            return min(len(psutil.pids()), _WINDOWS_MAX_PROCESSES)
        except (OSError, psutil.Error):
            return 0
    if platform == "darwin":
        return _ps_count(["ps", "-A"])
    if platform.startswith("freebsd"):
        return _ps_count(["ps", "-ax"])
    return _proc_count()


def virtualization() -> str:
    """Return the virtualization type reported by systemd-detect-virt."""
    if sys.platform.startswith("win"):
        return "Unknown"
    try:
        result = subprocess.run(
            ["systemd-detect-virt"], capture_output=True, text=True, check=True
        )
    except (OSError, subprocess.CalledProcessError):
        return "Unknown"
    return result.stdout.strip()