"""Operating system name and kernel version for each supported platform."""

from __future__ import annotations

import os
import shutil
import subprocess
import sys

OS_RELEASE = "/etc/os-release"
SYNOLOGY_FILES = ("/etc/synoinfo.conf", "/etc.defaults/synoinfo.conf")
SYNOLOGY_DIR = "/usr/syno"
_WINDOWS_VERSION_KEY = r"SOFTWARE\Microsoft\Windows NT\CurrentVersion"
_WINDOWS_11_FIRST_BUILD = 22000


def _command_output(args: list[str]) -> str | None:
    try:
        result = subprocess.run(args, capture_output=True, text=True, check=True)
    except (OSError, subprocess.CalledProcessError):
        return None
    return result.stdout


def _read_text(path: str) -> str | None:
    try:
        with open(path, encoding="utf-8", errors="replace") as file:
            return file.read()
    except OSError:
        return None


def parse_os_release_value(text: str, key: str) -> str | None:
    """Return the unquoted value of ``key`` in os-release text, or None."""
    prefix = key + "="
    for line in text.splitlines():
        if line.startswith(prefix):
            return line[len(prefix):].strip('"')
    return None


def parse_synology_info(text: str) -> str:
    """Build a Synology model and DSM name from synoinfo.conf, or ''."""
    unique = ""
    udc_check_state = ""
    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("unique="):
            unique = line.removeprefix("unique=").strip('"')
        elif line.startswith("udc_check_state="):
            udc_check_state = line.removeprefix("udc_check_state=").strip('"')

    if "synology_" not in unique:
        return ""
    parts = unique.split("_")
    if len(parts) < 3:
        return ""
    result = f"Synology {parts[-1].upper()} DSM"
    if udc_check_state:
        result += f" {udc_check_state}"
    return result


def parse_pveversion(output: str, codename: str = "") -> str:
    """Build a Proxmox VE name from pveversion output and a release codename."""
    version = ""
    for line in output.strip().split("\n"):
        line = line.strip()
        if line.startswith("pve-manager/"):
            version = line.split("/")[1].split("~", 1)[0]
    if not version:
        return "Proxmox VE"
    if codename:
        return f"Proxmox VE {version} ({codename})"
    return f"Proxmox VE {version}"


def windows_edition_name(
    product_name: str,
    major_version: int | None,
    current_build: str | None,
    display_version: str | None,
) -> str:
    """Correct a registry product name that still says Windows 10 on Windows 11."""
    if "Server" in product_name:
        return product_name
    if major_version is not None and major_version >= 10:
        windows11 = "Windows 11 " + product_name.replace("Windows 10 ", "", 1)
        if current_build is not None:
            try:
                build = int(current_build)
            except ValueError:
                build = None
            if build is not None and build >= _WINDOWS_11_FIRST_BUILD:
                return windows11
        if display_version is not None and display_version >= "21H2":
            return windows11
    return product_name


def _detect_proxmox() -> str:
    if shutil.which("pveversion") is None:
        return ""
    output = _command_output(["pveversion"])
    if output is None:
        return ""
    codename = ""
    text = _read_text(OS_RELEASE)
    if text is not None:
        codename = parse_os_release_value(text, "VERSION_CODENAME") or ""
    return parse_pveversion(output, codename)


def _detect_synology() -> str:
    for path in SYNOLOGY_FILES:
        if os.path.isfile(path):
            text = _read_text(path)
            if text:
                info = parse_synology_info(text)
                if info:
                    return info
    if os.path.isdir(SYNOLOGY_DIR):
        return "Synology DSM"
    return ""


def _linux_os_name() -> str:
    for detect in (_detect_proxmox, _detect_synology):
        name = detect()
        if name:
            return name
    text = _read_text(OS_RELEASE)
    if text is None:
        return "Linux"
    pretty = parse_os_release_value(text, "PRETTY_NAME")
    return "Linux" if pretty is None else pretty


def _windows_query(key, name: str):
    import winreg

    try:
        value, _ = winreg.QueryValueEx(key, name)
    except OSError:
        return None
    return value


def _windows_os_name() -> str:
    import winreg

    try:
        key = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, _WINDOWS_VERSION_KEY)
    except OSError:
        return "Microsoft Windows"
    with key:
        product_name = _windows_query(key, "ProductName")
        if not isinstance(product_name, str):
            return "Microsoft Windows"
        major = _windows_query(key, "CurrentMajorVersionNumber")
        build = _windows_query(key, "CurrentBuild")
        display = _windows_query(key, "DisplayVersion")
    return windows_edition_name(
        product_name,
        major if isinstance(major, int) else None,
        build if isinstance(build, str) else None,
        display if isinstance(display, str) else None,
    )


def _windows_kernel_version() -> str:
    import winreg

    try:
        key = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, _WINDOWS_VERSION_KEY)
    except OSError:
        return "Unknown"
    with key:
        build = _windows_query(key, "CurrentBuild")
        if not isinstance(build, str):
            return "Unknown"
        ubr = _windows_query(key, "UBR")
    if not isinstance(ubr, int):
        return build
    return f"{build}.{ubr}"


def os_name() -> str:
    """Return a human readable name of the running operating system."""
    platform = sys.platform
    if platform.startswith("win"):
        return _windows_os_name()
    if platform == "darwin":
        output = _command_output(["sw_vers", "-productName"])
        return "macOS" if output is None else output.strip()
    if platform.startswith("freebsd"):
        output = _command_output(["uname", "-sr"])
        return "FreeBSD" if output is None else output.strip()
    return _linux_os_name()


def kernel_version() -> str:
    """Return the kernel release, or the build number on Windows."""
    if sys.platform.startswith("win"):
        return _windows_kernel_version()
    output = _command_output(["uname", "-r"])
    return "Unknown" if output is None else output.strip()