import subprocess
from unittest import mock

from komari_agent.monitoring.cpu import (
    cpu_info,
    parse_lscpu_model_name,
    parse_proc_cpuinfo_model,
)

LSCPU = (
    "Architecture:            x86_64\n"
    "  CPU op-mode(s):        32-bit, 64-bit\n"
    "Vendor ID:               GenuineIntel\n"
    "Model name:              Intel(R) Xeon(R) CPU E5-2680 v4 @ 2.40GHz\n"
    "CPU family:              6\n"
)


def test_parse_lscpu_model_name():
    assert (
        parse_lscpu_model_name(LSCPU)
        == "Intel(R) Xeon(R) CPU E5-2680 v4 @ 2.40GHz"
    )


def test_parse_lscpu_without_model_name():
    assert parse_lscpu_model_name("Architecture: x86_64\n") == ""


def test_parse_proc_cpuinfo_hardware_line():
    text = "processor\t: 0\nHardware\t: BCM2835\nRevision\t: a02082\n"
    assert parse_proc_cpuinfo_model(text) == "BCM2835"


def test_parse_proc_cpuinfo_ignores_lowercase_model_name():
    text = "model name\t: Some CPU\nflags\t\t: fpu\n"
    assert parse_proc_cpuinfo_model(text) == ""


def test_cpu_info_uses_lscpu_and_psutil():
    completed = subprocess.CompletedProcess(["lscpu"], 0, stdout=LSCPU)
    with mock.patch("subprocess.run", return_value=completed), mock.patch(
        "psutil.cpu_count", return_value=8
    ), mock.patch("psutil.cpu_percent", return_value=12.5):
        info = cpu_info()
    assert info.name == "Intel(R) Xeon(R) CPU E5-2680 v4 @ 2.40GHz"
    assert info.cores == 8
    assert info.usage == 12.5
    assert info.architecture == info.architecture.lower()


def test_cpu_info_live_invariants():
    info = cpu_info()
    assert info.cores >= 1
    assert 0.0 <= info.usage <= 100.0
    assert info.name == info.name.strip()