# komari-agent

A small monitoring agent for POSIX hosts (Linux, macOS, FreeBSD). It
collects host metrics and streams them to a Komari server over a
websocket, uploads static host details, and carries out remote commands,
latency probes and an interactive web terminal when the server asks.

## Installation

```
pip install .
```

Python 3.10 or later is required.

## Running

```
komari-agent --endpoint https://monitor.example.com --token token
```

`--token` and `--endpoint` are required; unknown options are ignored.

On start the agent logs the mount points and network interfaces it will
monitor, checks for an update (unless disabled), uploads basic host
information, and then keeps a report connection open. Basic information is
uploaded again every `--info-report-interval` minutes. When connecting
fails more than `--max-retries` times in a row, the agent uploads basic
information again and starts over; it runs until interrupted.

### Options

| Option | Default | Meaning |
| --- | --- | --- |
| `-t`, `--token` | | API token (required) |
| `-e`, `--endpoint` | | Server endpoint, `http://` or `https://` (required) |
| `-i`, `--interval` | `1.0` | Report interval in seconds |
| `-r`, `--max-retries` | `3` | Retries for the report connection and for task result uploads |
| `-c`, `--reconnect-interval` | `5` | Seconds to wait after a failed connection attempt |
| `--info-report-interval` | `5` | Minutes between basic info uploads |
| `-u`, `--ignore-unsafe-cert` | off | Skip TLS certificate checks when uploading basic info |
| `--disable-auto-update` | off | Do not check for or install updates |
| `--disable-web-ssh` | off | Refuse remote commands and the web terminal |
| `--memory-mode-available` | off | Report used memory as total minus available |
| `--include-nics` | | Comma-separated interfaces to count |
| `--exclude-nics` | | Comma-separated interfaces to ignore |
| `--include-mountpoint` | | Semicolon-separated mount points to count for disk usage |
| `--month-rotate` | `0` | Day of month on which traffic totals reset (0 disables) |

The old `-autoUpdate` / `--autoUpdate` flag is still accepted; it is
dropped with a warning and has no effect.

Because each report samples CPU usage and network counters for about a
second each, the agent waits `interval - 1` seconds (at least one) between
reports. A websocket ping is sent every 30 seconds.

### What is reported

Each report is a JSON object with `cpu.usage`, `ram` and `swap`
(`total`, `used`), `load` (`load1`, `load5`, `load15`), `disk` (`total`,
`used`), `network` (`up`, `down`, `totalUp`, `totalDown`), `connections`
(`tcp`, `udp`), `uptime`, `process` and `message`, which describes any
metric that could not be read.

Basic information holds the CPU name, core count and architecture, OS
name, kernel version, public IPv4 and IPv6 addresses (looked up through
public web services), total memory, swap and disk, GPU name,
virtualization type (from `systemd-detect-virt`) and the agent version.
If the server rejects the upload, it is retried once without
`kernel_version`.

Disk totals are summed over physical partitions: the root mount point is
always counted, while temporary, container, network, FUSE, overlay and
loop-device mounts are skipped. `--include-mountpoint` replaces this
selection.

Loopback and virtual interfaces (names starting with `lo`, `docker`,
`veth`, `br`, `virbr`, `vmbr`, `cni`, `flannel`, `podman`) are never
counted, even when listed in `--include-nics`.

With `--month-rotate` set, traffic totals are the sums of `vnstat --json`
daily entries since the last reset day; speeds still come from interface
counters. If `vnstat` fails, totals fall back to the interface counters
and the report's `message` says so. The agent does not change vnstat's
own configuration; `komari_agent.monitoring.network.set_vnstat_month_rotate`
does that when called.

### Server requests

Over the report connection the server may ask for:

- a remote command (`"message": "exec"`): it runs through `sh -c` and its
  output and exit code are posted back;
- a latency probe (`ping_task_id`, `ping_type`, `ping_target`): `icmp`
  (needs raw socket privileges), `tcp` (port 80 when none is given) or
  `http`; only successful probes are reported;
- a web terminal (`"message": "terminal"` with a `request_id`): the user's
  login shell, or the first of `zsh`, `bash`, `sh` found, runs on a pseudo
  terminal bridged to its own websocket.

`--disable-web-ssh` refuses commands and terminals.

### Auto-update

Unless `--disable-auto-update` is given, the agent asks for the latest
release tag at start-up and every six hours. If it is newer, it installs
that version of `komari-agent` with pip and exits with status 42 so that a
service manager can restart it.

## Using the pieces directly

The collectors in `komari_agent.monitoring` can be used on their own:

```python
from komari_agent.config import AgentConfig
from komari_agent.monitoring.cpu import cpu_info
from komari_agent.monitoring.network import parse_nics, should_include

print(cpu_info())
nics = parse_nics("eth0, wlan0")
print(should_include("eth0", nics, None))   # True
print(should_include("lo", nics, None))     # False

config = AgentConfig(endpoint="https://monitor.example.com/", token="token")
print(config.api_url("/api/clients/report"))
# https://monitor.example.com/api/clients/report?token=token
```

`komari_agent.report.generate_report(config)` returns one encoded report,
and `komari_agent.update.parse_version` / `need_update` compare release
versions that may carry a `v` prefix.

## Limitations

The agent does not run on Windows: the web terminal relies on POSIX
pseudo terminals, and the command line entry point loads it. Some
collectors (GPU and OS name) have Windows code paths, but there is no
Windows terminal.

## Running the tests

```
pip install .[test]
pytest
```