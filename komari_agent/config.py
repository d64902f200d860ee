"""Runtime settings of the agent, filled from the command line."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class AgentConfig:
    """Every option the agent accepts, with the command line defaults."""

    token: str = ""
    endpoint: str = ""
    disable_auto_update: bool = False
    disable_web_ssh: bool = False
    memory_mode_available: bool = False
    interval: float = 1.0
    ignore_unsafe_cert: bool = False
    max_retries: int = 3
    reconnect_interval: int = 5
    info_report_interval: int = 5
    include_nics: str = ""
    exclude_nics: str = ""
    include_mountpoints: str = ""
    month_rotate: int = 0

    def api_url(self, path: str) -> str:
        """Return the endpoint URL for ``path`` with the token as query."""
        base = self.endpoint.removesuffix("/")
        return f"{base}{path}?token={self.token}"