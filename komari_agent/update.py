"""Release checks and self update."""

from __future__ import annotations

import logging
import subprocess
import sys
import threading

import requests
import semver

CURRENT_VERSION = "0.0.1"
REPO = "komari-monitor/komari-agent"
DISTRIBUTION = "komari-agent"
RELEASES_API = "https://api.github.com/repos/{repo}/releases/latest"
UPDATE_INTERVAL = 6 * 60 * 60
UPDATED_EXIT_CODE = 42
_TIMEOUT = 30

log = logging.getLogger(__name__)


class UpdateError(Exception):
    """Checking for or installing an update failed."""


def parse_version(ver: str) -> semver.Version:
    """Parse a version that may carry a v/V prefix and miss minor or patch."""
    ver = ver.removeprefix("v").removeprefix("V").strip().removeprefix("v")
    parts = ver.split(".", 2)
    if len(parts) < 3:
        if any(mark in parts[-1] for mark in "+-"):
            raise ValueError(
                "short version cannot contain prerelease or build metadata"
            )
        parts += ["0"] * (3 - len(parts))
        ver = ".".join(parts)
    return semver.Version.parse(ver)


def need_update(current: semver.Version, latest: semver.Version) -> bool:
    """Tell whether ``latest`` is newer than ``current``."""
    return latest.compare(current) > 0


def _latest_release_version() -> semver.Version:
    response = requests.get(
        RELEASES_API.format(repo=REPO),
        headers={"Accept": "application/vnd.github+json"},
        timeout=_TIMEOUT,
    )
    response.raise_for_status()
    return parse_version(str(response.json()["tag_name"]))


def _install(version: semver.Version) -> None:
    subprocess.run(
        [
            sys.executable,
            "-m",
            "pip",
            "install",
            "--upgrade",
            f"{DISTRIBUTION}=={version}",
        ],
        check=True,
    )


def check_and_update() -> None:
    """Install the latest release if newer, then exit with code 42."""
    log.info("Checking update...")
    try:
        current = parse_version(CURRENT_VERSION)
    except ValueError as exc:
        raise UpdateError(f"failed to parse current version: {exc}") from exc

    try:
        latest = _latest_release_version()
    except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
        raise UpdateError(f"failed to check for updates: {exc}") from exc

    if not need_update(current, latest):
        print("Current version is the latest:", CURRENT_VERSION)
        return

    try:
        _install(latest)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise UpdateError(f"failed to update to version {latest}: {exc}") from exc

    print(f"Successfully updated to version {latest}")
    # Installed as a service; the supervisor restarts the agent.
    sys.exit(UPDATED_EXIT_CODE)


def update_loop(stop_event: threading.Event) -> None:
    """Check for updates every six hours until ``stop_event`` is set."""
    while not stop_event.wait(UPDATE_INTERVAL):
        try:
            check_and_update()
        except UpdateError as exc:
            log.error("%s", exc)