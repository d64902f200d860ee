"""Static machine details uploaded to the server at start and periodically."""

from __future__ import annotations

import logging
import threading
from typing import Any

import requests

from komari_agent.config import AgentConfig
from komari_agent.monitoring.cpu import cpu_info
from komari_agent.monitoring.disk import disk_usage
from komari_agent.monitoring.gpu import gpu_name
from komari_agent.monitoring.ip import get_ip_address
from komari_agent.monitoring.osinfo import kernel_version, os_name
from komari_agent.monitoring.system import ram, swap, virtualization
from komari_agent.update import CURRENT_VERSION

log = logging.getLogger(__name__)

UPLOAD_PATH = "/api/clients/uploadBasicInfo"
_TIMEOUT = 30


def collect_basic_info() -> dict[str, Any]:
    """Gather hardware, system and address details of this machine."""
    cpu = cpu_info()
    ipv4, ipv6 = get_ip_address()
    return {
        "cpu_name": cpu.name,
        "cpu_cores": cpu.cores,
        "arch": cpu.architecture,
        "os": os_name(),
        "kernel_version": kernel_version(),
        "ipv4": ipv4,
        "ipv6": ipv6,
        "mem_total": ram().total,
        "swap_total": swap().total,
        "disk_total": disk_usage().total,
        "gpu_name": gpu_name(),
        "virtualization": virtualization(),
        "version": CURRENT_VERSION,
    }


def try_upload_data(config: AgentConfig, data: dict[str, Any]) -> None:
    """Post ``data`` as JSON; raise RuntimeError unless the server answers 200."""
    try:
        response = requests.post(
            config.api_url(UPLOAD_PATH),
            json=data,
            timeout=_TIMEOUT,
            verify=not config.ignore_unsafe_cert,
        )
    except requests.RequestException as exc:
        raise RuntimeError(str(exc)) from exc
    if response.status_code != 200:
        raise RuntimeError(f"status code: {response.status_code},{response.text}")


def upload_basic_info(config: AgentConfig) -> None:
    """Collect and upload basic info, retrying without the kernel version."""
    data = collect_basic_info()
    if config.include_mountpoints:
        data["disk_total"] = disk_usage(config.include_mountpoints).total
    try:
        try_upload_data(config, data)
    except RuntimeError:
        # Older servers reject the kernel_version field.
        data.pop("kernel_version", None)
        try_upload_data(config, data)


def update_basic_info(config: AgentConfig) -> bool:
    """Upload basic info once, logging the outcome; True on success."""
    try:
        upload_basic_info(config)
    except RuntimeError as exc:
        log.error("Error uploading basic info: %s", exc)
        return False
    log.info("Basic info uploaded successfully")
    return True


def basic_info_loop(config: AgentConfig, stop_event: threading.Event) -> None:
    """Upload basic info every ``info_report_interval`` minutes until stopped."""
    interval = config.info_report_interval * 60
    if interval <= 0:
        raise ValueError("info report interval must be positive")
    while not stop_event.wait(interval):
        try:
            upload_basic_info(config)
        except RuntimeError as exc:
            log.error("Error uploading basic info: %s", exc)