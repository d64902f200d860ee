"""Disk capacity summed over physical partitions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import psutil

_EXCLUDED_MOUNTPOINTS = (
    "/tmp",
    "/var/tmp",
    "/dev/shm",
    "/run",
    "/run/lock",
    "/run/user/",
    "/var/lib/containers/",
    "/var/lib/docker/",
)

_EXCLUDED_FSTYPES = (
    "tmpfs",
    "devtmpfs",
    "nfs",
    "cifs",
    "smb",
    "vboxsf",
    "9p",
    "fuse",
    "overlay",
)


@dataclass
class DiskInfo:
    total: int = 0
    used: int = 0


def is_physical_disk(partition: Any) -> bool:
    """Tell whether a partition counts towards disk statistics."""
    if partition.mountpoint == "/":
        return True
    mountpoint = partition.mountpoint.lower()
    if mountpoint.startswith(_EXCLUDED_MOUNTPOINTS):
        return False

    fstype = (partition.fstype or "").lower()
    if fstype.startswith(_EXCLUDED_FSTYPES):
        return False

    opts = partition.opts
    if not isinstance(opts, str):
        opts = ",".join(opts)
    opts = opts.lower()
    if "remote" in opts or "network" in opts:
        return False

    if partition.device.startswith("/dev/loop"):
        return False
    return True


def parse_mountpoints(value: str) -> list[str]:
    """Split a semicolon separated list of mount points."""
    return [part.strip() for part in value.split(";") if part.strip()]


def disk_usage(include_mountpoints: str = "") -> DiskInfo:
    """Sum total and used bytes over the selected mount points."""
    info = DiskInfo()
    try:
        partitions = psutil.disk_partitions(all=False)
    except (OSError, psutil.Error):
        return info

    if include_mountpoints:
        mountpoints = parse_mountpoints(include_mountpoints)
    else:
        mountpoints = [p.mountpoint for p in partitions if is_physical_disk(p)]

    for mountpoint in mountpoints:
        try:
            usage = psutil.disk_usage(mountpoint)
        except (OSError, psutil.Error):
            continue
        info.total += usage.total
        info.used += usage.used
    return info


def disk_list(include_mountpoints: str = "") -> list[str]:
    """Return the mount points that disk statistics are drawn from."""
    if include_mountpoints:
        return parse_mountpoints(include_mountpoints)
    return [
        p.mountpoint
        for p in psutil.disk_partitions(all=False)
        if is_physical_disk(p)
    ]