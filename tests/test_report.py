import json
from types import SimpleNamespace

import psutil
import pytest

from komari_agent.config import AgentConfig
from komari_agent.report import generate_report

COUNTERS = {
    "eth0": SimpleNamespace(bytes_sent=100, bytes_recv=200),
    "lo": SimpleNamespace(bytes_sent=5, bytes_recv=7),
}


@pytest.fixture
def fake_system(monkeypatch):
    monkeypatch.setattr(psutil, "cpu_percent", lambda interval=None, percpu=False: 0.0)
    monkeypatch.setattr(psutil, "net_io_counters", lambda pernic=False, nowrap=True: COUNTERS)
    monkeypatch.setattr(psutil, "net_connections", lambda kind="inet": [object()] * 3)
    monkeypatch.setattr(
        psutil,
        "virtual_memory",
        lambda: SimpleNamespace(total=1000, used=600, available=300),
    )


def _report(config=None):
    return json.loads(generate_report(config or AgentConfig()))


def test_report_has_all_sections(fake_system):
    report = _report()
    assert set(report) == {
        "cpu",
        "ram",
        "swap",
        "load",
        "disk",
        "network",
        "connections",
        "uptime",
        "process",
        "message",
    }
    assert set(report["network"]) == {"up", "down", "totalUp", "totalDown"}
    assert report["message"] == ""


def test_report_keys_are_sorted(fake_system):
    raw = generate_report(AgentConfig())
    assert raw.startswith(b'{"connections":')


def test_cpu_usage_has_floor(fake_system):
    assert _report()["cpu"]["usage"] == 0.001


def test_network_skips_loopback(fake_system):
    network = _report()["network"]
    assert network["totalUp"] == 100
    assert network["totalDown"] == 200
    assert network["up"] == 0
    assert network["down"] == 0


def test_connections_counted(fake_system):
    assert _report()["connections"] == {"tcp": 3, "udp": 3}


def test_memory_modes(fake_system):
    assert _report()["ram"] == {"total": 1000, "used": 600}
    available_mode = _report(AgentConfig(memory_mode_available=True))
    assert available_mode["ram"]["used"] == 700


def test_connection_failure_goes_into_message(fake_system, monkeypatch):
    def denied(kind="inet"):
        raise psutil.AccessDenied()

    monkeypatch.setattr(psutil, "net_connections", denied)
    report = _report()
    assert "failed to get connections" in report["message"]
    assert report["connections"] == {"tcp": 0, "udp": 0}


def test_network_failure_goes_into_message(fake_system, monkeypatch):
    monkeypatch.setattr(psutil, "net_io_counters", lambda pernic=False, nowrap=True: {})
    report = _report()
    assert "failed to get network speed" in report["message"]
    assert report["network"]["totalUp"] == 0
    assert report["network"]["up"] == 0