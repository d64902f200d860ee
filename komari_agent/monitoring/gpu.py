"""Graphics adapter name for each supported platform."""

from __future__ import annotations

import subprocess
import sys

_LSPCI_ACCEPT = ("vga", "nvidia", "amd", "radeon", "render")
_WINDOWS_DISPLAY_CLASS = (
    r"SYSTEM\CurrentControlSet\Control\Class"
    r"\{4d36e968-e325-11ce-bfc1-08002be10318}"
)


def _command_output(args: list[str]) -> str | None:
    try:
        result = subprocess.run(args, capture_output=True, text=True, check=True)
    except (OSError, subprocess.CalledProcessError):
        return None
    return result.stdout


def parse_lspci(output: str) -> str:
    """Pick the first display device from lspci output, or 'None'."""
    for line in output.split("\n"):
        lowered = line.lower()
        if not any(word in lowered for word in _LSPCI_ACCEPT):
            continue
        parts = line.split(":", 3)
        if len(parts) >= 2:
            return parts[-1].strip()
    return "None"


def parse_system_profiler(output: str) -> str:
    """Return the Chipset Model from system_profiler output, or 'Unknown'."""
    for line in output.split("\n"):
        line = line.strip()
        if line.startswith("Chipset Model:"):
            return line.removeprefix("Chipset Model:").strip()
    return "Unknown"


def parse_pciconf(output: str) -> str:
    """Return the first VGA or Display line of pciconf output, or 'Unknown'."""
    for line in output.split("\n"):
        line = line.strip()
        if "VGA" in line or "Display" in line:
            return line
    return "Unknown"


def _windows_gpu_name() -> str:
    import winreg

    try:
        key = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, _WINDOWS_DISPLAY_CLASS)
    except OSError:
        return "Unknown"
    with key:
        try:
            count = winreg.QueryInfoKey(key)[0]
            subkeys = [winreg.EnumKey(key, i) for i in range(count)]
        except OSError:
            return "Unknown"

    names = []
    for subkey in subkeys:
        if not subkey.startswith("0"):
            continue
        try:
            with winreg.OpenKey(
                winreg.HKEY_LOCAL_MACHINE, _WINDOWS_DISPLAY_CLASS + "\\" + subkey
            ) as device:
                description, _ = winreg.QueryValueEx(device, "DriverDesc")
                if not description:
                    continue
                opengl, _ = winreg.QueryValueEx(device, "OpenGLVersion")
        except OSError:
            continue
        if not isinstance(opengl, int) or opengl == 0:
            continue
        names.append(str(description).strip())
    return ", ".join(names) if names else "None"


def gpu_name() -> str:
    """Return the graphics adapter name of this machine."""
    platform = sys.platform
    if platform.startswith("win"):
        return _windows_gpu_name()
    if platform == "darwin":
        output = _command_output(["system_profiler", "SPDisplaysDataType"])
        return "Unknown" if output is None else parse_system_profiler(output)
    if platform.startswith("freebsd"):
        output = _command_output(["pciconf", "-lv"])
        return "Unknown" if output is None else parse_pciconf(output)
    output = _command_output(["lspci"])
    return "None" if output is None else parse_lspci(output)