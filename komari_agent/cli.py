"""Command line entry point of the agent."""

from __future__ import annotations

import argparse
import logging
import sys
import threading

import psutil

from komari_agent.basic_info import basic_info_loop, update_basic_info
from komari_agent.config import AgentConfig
from komari_agent.monitoring.disk import disk_list
from komari_agent.monitoring.network import interface_list
from komari_agent.update import (
    CURRENT_VERSION,
    REPO,
    UpdateError,
    check_and_update,
    update_loop,
)
from komari_agent.websocket_client import establish_connection

log = logging.getLogger("komari_agent")

_DEPRECATED_FLAGS = ("-autoUpdate", "--autoUpdate")


def strip_deprecated_flags(argv: list[str]) -> list[str]:
    """Return ``argv`` without the first deprecated auto update flag."""
    args = list(argv)
    found = next((arg for arg in args if arg in _DEPRECATED_FLAGS), None)
    if found is not None:
        log.warning(
            "WARNING: The -autoUpdate flag is deprecated in version 0.0.9 and "
            "later. Use --disable-auto-update to configure auto-update behavior."
        )
        args.remove(found)
    return args


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with every agent option."""
    parser = argparse.ArgumentParser(prog="komari-agent", description="komari agent")
    add = parser.add_argument
    add("-t", "--token", required=True, help="API token")
    add("-e", "--endpoint", required=True, help="API endpoint")
    add(
        "--disable-auto-update",
        action="store_true",
        help="Disable automatic updates",
    )
    add(
        "--disable-web-ssh",
        action="store_true",
        help="Disable remote control(web ssh and rce)",
    )
    add(
        "--memory-mode-available",
        action="store_true",
        help="Report memory as available instead of used.",
    )
    add("-i", "--interval", type=float, default=1.0, help="Interval in seconds")
    add(
        "-u",
        "--ignore-unsafe-cert",
        action="store_true",
        help="Ignore unsafe certificate errors",
    )
    add("-r", "--max-retries", type=int, default=3, help="Maximum number of retries")
    add(
        "-c",
        "--reconnect-interval",
        type=int,
        default=5,
        help="Reconnect interval in seconds",
    )
    add(
        "--info-report-interval",
        type=int,
        default=5,
        help="Interval in minutes for reporting basic info",
    )
    add(
        "--include-nics",
        default="",
        help="Comma-separated list of network interfaces to include",
    )
    add(
        "--exclude-nics",
        default="",
        help="Comma-separated list of network interfaces to exclude",
    )
    add(
        "--include-mountpoint",
        dest="include_mountpoints",
        default="",
        help="Semicolon-separated list of mount points to include for disk statistics",
    )
    add(
        "--month-rotate",
        type=int,
        default=0,
        help="Month reset for network statistics (0 to disable)",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> AgentConfig:
    """Parse command line arguments into a config; unknown flags are ignored."""
    if argv is None:
        argv = sys.argv[1:]
    args, unknown = build_parser().parse_known_args(strip_deprecated_flags(argv))
    if unknown:
        log.debug("Ignoring unknown arguments: %s", unknown)
    return AgentConfig(**vars(args))


def run(config: AgentConfig) -> None:
    """Run the agent: report basic info and metrics, reconnecting forever."""
    log.info("Komari Agent %s", CURRENT_VERSION)
    log.info("Github Repo: %s", REPO)
    try:
        disks = disk_list(config.include_mountpoints)
    except (OSError, psutil.Error) as exc:
        log.warning("Failed to get disk list: %s", exc)
        disks = []
    log.info("Monitoring Mountpoints: %s", disks)
    try:
        interfaces = interface_list(config)
    except (OSError, psutil.Error) as exc:
        log.warning("Failed to get interface list: %s", exc)
        interfaces = []
    log.info("Monitoring Interfaces: %s", interfaces)

    stop_event = threading.Event()
    if not config.disable_auto_update:
        try:
            check_and_update()
        except UpdateError as exc:
            log.error("[ERROR] %s", exc)
        threading.Thread(target=update_loop, args=(stop_event,), daemon=True).start()
    threading.Thread(
        target=basic_info_loop, args=(config, stop_event), daemon=True
    ).start()

    while True:
        update_basic_info(config)
        establish_connection(config)


def main(argv: list[str] | None = None) -> int:
    """Start the agent from the command line."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    config = parse_args(argv)
    try:
        run(config)
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())