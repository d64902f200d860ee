"""Processor name, architecture, core count and usage."""

from __future__ import annotations

import platform
import subprocess
from dataclasses import dataclass

import psutil

_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "ppc64le": "ppc64le",
    "ppc64": "ppc64",
    "s390x": "s390x",
    "riscv64": "riscv64",
    "mips": "mips",
    "mips64": "mips64",
}

_PROC_PREFIXES = ("Model\t", "Hardware\t", "Processor\t")


@dataclass
class CpuInfo:
    name: str = "Unknown"
    architecture: str = ""
    cores: int = 1
    usage: float = 0.0


def _architecture() -> str:
    machine = platform.machine().lower()
    return _ARCH_NAMES.get(machine, machine)


def parse_lscpu_model_name(text: str) -> str:
    """Return the value of the ``Model name:`` line of lscpu output, or ''."""
    for line in text.splitlines():
        if line.startswith("Model name:"):
            return line.split(":", 1)[1].strip()
    return ""


def parse_proc_cpuinfo_model(text: str) -> str:
    """Return the Model/Hardware/Processor value from /proc/cpuinfo, or ''."""
    for line in text.splitlines():
        if line.startswith(_PROC_PREFIXES) and ":" in line:
            return line.split(":", 1)[1].strip()
    return ""


def _lscpu_name() -> str:
    try:
        result = subprocess.run(
            ["lscpu"], capture_output=True, text=True, check=True
        )
    except (OSError, subprocess.CalledProcessError):
        return ""
    return parse_lscpu_model_name(result.stdout)


def _proc_name() -> str:
    try:
        with open("/proc/cpuinfo", encoding="utf-8", errors="replace") as file:
            return parse_proc_cpuinfo_model(file.read())
    except OSError:
        return ""


def cpu_info() -> CpuInfo:
    """Collect processor details; usage is sampled over one second."""
    info = CpuInfo(architecture=_architecture())

    name = _lscpu_name()
    if name:
        info.name = name.strip()
    else:
        info.name = platform.processor().strip() or "Unknown"

    if info.name == "Unknown":
        name = _proc_name()
        if name:
            info.name = name.strip()

    cores = psutil.cpu_count(logical=True)
    if cores:
        info.cores = cores

    try:
        info.usage = float(psutil.cpu_percent(interval=1.0))
    except (OSError, psutil.Error):
        pass
    return info