"""Network traffic totals, transfer speed and connection counts."""

from __future__ import annotations

import json
import subprocess
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping

import psutil

from komari_agent.config import AgentConfig

# Interface name prefixes for loopback and virtual devices, never counted.
LOOPBACK_NAMES = (
    "br",
    "cni",
    "docker",
    "podman",
    "flannel",
    "lo",
    "veth",
    "virbr",
    "vmbr",
)


@dataclass
class TrafficEntry:
    """Daily traffic of one interface as reported by vnstat."""

    year: int
    month: int
    day: int
    rx: int = 0
    tx: int = 0


@dataclass
class VnstatInterface:
    """One interface of the vnstat database."""

    name: str
    alias: str = ""
    total_rx: int = 0
    total_tx: int = 0
    days: list[TrafficEntry] = field(default_factory=list)


@dataclass
class NetworkSpeed:
    """Traffic totals and per-second speeds in bytes.

    ``message`` describes a partial failure when the numbers are still usable.
    """

    total_up: int = 0
    total_down: int = 0
    up: int = 0
    down: int = 0
    message: str = ""


def connections_count() -> tuple[int, int]:
    """Return the number of TCP and UDP sockets on this machine."""
    counts = []
    for kind in ("tcp", "udp"):
        try:
            counts.append(len(psutil.net_connections(kind=kind)))
        except (OSError, psutil.Error) as exc:
            raise RuntimeError(
                f"failed to get {kind.upper()} connections: {exc}"
            ) from exc
    return counts[0], counts[1]


def parse_nics(nics: str) -> frozenset[str] | None:
    """Turn a comma separated interface list into a set; None when empty."""
    if not nics:
        return None
    return frozenset(nic.strip() for nic in nics.split(","))


def should_include(
    nic_name: str,
    include_nics: Iterable[str] | None,
    exclude_nics: Iterable[str] | None,
) -> bool:
    """Tell whether an interface takes part in traffic statistics."""
    if nic_name.startswith(LOOPBACK_NAMES):
        return False
    if include_nics:
        return nic_name in include_nics
    if exclude_nics and nic_name in exclude_nics:
        return False
    return True


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _parse_interface(raw: Mapping[str, Any]) -> VnstatInterface:
    traffic = raw.get("traffic") or {}
    total = traffic.get("total") or {}
    days = []
    for entry in traffic.get("day") or []:
        entry_date = entry.get("date") or {}
        days.append(
            TrafficEntry(
                year=_as_int(entry_date.get("year")),
                month=_as_int(entry_date.get("month")),
                day=_as_int(entry_date.get("day")),
                rx=_as_int(entry.get("rx")),
                tx=_as_int(entry.get("tx")),
            )
        )
    return VnstatInterface(
        name=str(raw.get("name", "")),
        alias=str(raw.get("alias", "")),
        total_rx=_as_int(total.get("rx")),
        total_tx=_as_int(total.get("tx")),
        days=days,
    )


def parse_vnstat_output(text: str) -> dict[str, VnstatInterface]:
    """Parse ``vnstat --json`` output into interfaces keyed by name."""
    document = json.loads(text)
    if not isinstance(document, dict):
        raise ValueError("vnstat output is not a JSON object")
    interfaces = {}
    for raw in document.get("interfaces") or []:
        interface = _parse_interface(raw)
        interfaces[interface.name] = interface
    return interfaces


def get_vnstat_data() -> dict[str, VnstatInterface]:
    """Run vnstat and return its interfaces keyed by name."""
    try:
        result = subprocess.run(
            ["vnstat", "--json"], capture_output=True, text=True, check=True
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise RuntimeError(f"failed to run vnstat: {exc}") from exc
    try:
        return parse_vnstat_output(result.stdout)
    except (ValueError, TypeError, AttributeError) as exc:
        raise RuntimeError(f"failed to parse vnstat output: {exc}") from exc


def _calendar_date(year: int, month: int, day: int) -> date:
    """Build a date, letting days past the month's end roll into the next."""
    return date(year, month, 1) + timedelta(days=day - 1)


def calculate_monthly_usage(
    interface: VnstatInterface,
    month_rotate_day: int,
    now: date | datetime | None = None,
) -> tuple[int, int]:
    """Sum received and sent bytes since the last monthly reset day."""
    if now is None:
        now = datetime.now()
    if now.day >= month_rotate_day:
        start_year, start_month = now.year, now.month
    elif now.month == 1:
        start_year, start_month = now.year - 1, 12
    else:
        start_year, start_month = now.year, now.month - 1
    start = _calendar_date(start_year, start_month, month_rotate_day)

    rx = tx = 0
    for entry in interface.days:
        if _calendar_date(entry.year, entry.month, entry.day) >= start:
            rx += entry.rx
            tx += entry.tx
    return rx, tx


def set_vnstat_month_rotate(day: int) -> None:
    """Configure the day of month on which vnstat starts a new month."""
    if day < 1 or day > 31:
        raise ValueError(f"invalid day: {day}, must be between 1 and 31")
    try:
        subprocess.run(
            ["vnstat", "--config", f"MonthRotate {day}"],
            capture_output=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise RuntimeError(
            f"failed to set vnstat month rotate to day {day}: {exc}"
        ) from exc


def _io_totals(
    include_nics: Iterable[str] | None, exclude_nics: Iterable[str] | None
) -> tuple[int, int]:
    try:
        counters = psutil.net_io_counters(pernic=True)
    except (OSError, psutil.Error) as exc:
        raise RuntimeError(f"failed to get network IO counters: {exc}") from exc
    if not counters:
        raise RuntimeError("no network interfaces found")
    selected = [
        stats
        for name, stats in counters.items()
        if should_include(name, include_nics, exclude_nics)
    ]
    return (
        sum(stats.bytes_sent for stats in selected),
        sum(stats.bytes_recv for stats in selected),
    )


def network_speed_fallback(
    include_nics: Iterable[str] | None, exclude_nics: Iterable[str] | None
) -> NetworkSpeed:
    """Sample interface counters one second apart and derive speeds."""
    up1, down1 = _io_totals(include_nics, exclude_nics)
    time.sleep(1)
    up2, down2 = _io_totals(include_nics, exclude_nics)
    return NetworkSpeed(
        total_up=up2,
        total_down=down2,
        up=max(up2 - up1, 0),
        down=max(down2 - down1, 0),
    )


def network_speed(config: AgentConfig) -> NetworkSpeed:
    """Measure traffic; totals come from vnstat when a monthly reset is set."""
    include_nics = parse_nics(config.include_nics)
    exclude_nics = parse_nics(config.exclude_nics)

    if not config.month_rotate:
        return network_speed_fallback(include_nics, exclude_nics)

    try:
        vnstat_data = get_vnstat_data()
    except RuntimeError as vnstat_error:
        try:
            result = network_speed_fallback(include_nics, exclude_nics)
        except RuntimeError as fallback_error:
            raise RuntimeError(
                f"failed to call vnstat: {vnstat_error}; "
                f"fallback error: {fallback_error}"
            ) from fallback_error
        result.message = f"failed to call vnstat: {vnstat_error}"
        return result

    total_up = total_down = 0
    for name, interface in vnstat_data.items():
        if should_include(name, include_nics, exclude_nics):
            rx, tx = calculate_monthly_usage(interface, config.month_rotate)
            total_up += tx
            total_down += rx

    try:
        speed = network_speed_fallback(include_nics, exclude_nics)
    except RuntimeError as exc:
        return NetworkSpeed(total_up, total_down, 0, 0, message=str(exc))
    return NetworkSpeed(total_up, total_down, speed.up, speed.down)


def interface_list(config: AgentConfig) -> list[str]:
    """Return the interfaces whose traffic is monitored."""
    include_nics = parse_nics(config.include_nics)
    exclude_nics = parse_nics(config.exclude_nics)
    if config.month_rotate:
        try:
            vnstat_data = get_vnstat_data()
        except RuntimeError:
            pass
        else:
            return [
                name
                for name in vnstat_data
                if should_include(name, include_nics, exclude_nics)
            ]
    counters = psutil.net_io_counters(pernic=True)
    return [
        name
        for name in counters
        if should_include(name, include_nics, exclude_nics)
    ]