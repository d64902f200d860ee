"""Public IPv4 and IPv6 addresses, looked up through web services."""

from __future__ import annotations

import re

import requests

USER_AGENT = "curl/8.0.1"
_TIMEOUT = 10

IPV4_APIS = (
    "https://www.visa.cn/cdn-cgi/trace",
    "https://www.qualcomm.cn/cdn-cgi/trace",
    "https://www.toutiao.com/stream/widget/local_weather/data/",
    "https://edge-ip.html.zone/geo",
    "https://vercel-ip.html.zone/geo",
    "http://ipv4.ip.sb",
    "https://api.ipify.org?format=json",
)

IPV6_APIS = (
    "https://v6.ip.zxinc.org/info.php?type=json",
    "https://api6.ipify.org?format=json",
    "https://ipv6.icanhazip.com",
    "https://api-ipv6.ip.sb/geoip",
)

_IPV4_RE = re.compile(r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}")

_IPV4_OCTET = r"(25[0-5]|(2[0-4]|1{0,1}[0-9]){0,1}[0-9])"
_IPV6_RE = re.compile(
    r"([0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}"
    r"|([0-9a-fA-F]{1,4}:){1,7}:"
    r"|([0-9a-fA-F]{1,4}:){1,6}:[0-9a-fA-F]{1,4}"
    r"|([0-9a-fA-F]{1,4}:){1,5}(:[0-9a-fA-F]{1,4}){1,2}"
    r"|([0-9a-fA-F]{1,4}:){1,4}(:[0-9a-fA-F]{1,4}){1,3}"
    r"|([0-9a-fA-F]{1,4}:){1,3}(:[0-9a-fA-F]{1,4}){1,4}"
    r"|([0-9a-fA-F]{1,4}:){1,2}(:[0-9a-fA-F]{1,4}){1,5}"
    r"|[0-9a-fA-F]{1,4}:((:[0-9a-fA-F]{1,4}){1,6})"
    r"|:((:[0-9a-fA-F]{1,4}){1,7}|:)"
    r"|fe80:(:[0-9a-fA-F]{0,4}){0,4}%[0-9a-zA-Z]{1,}"
    r"|::(ffff(:0{1,4}){0,1}:){0,1}(" + _IPV4_OCTET + r"\.){3,3}" + _IPV4_OCTET
    + r"|([0-9a-fA-F]{1,4}:){1,4}:(" + _IPV4_OCTET + r"\.){3,3}" + _IPV4_OCTET
)


def extract_ipv4(text: str) -> str:
    """Return the first IPv4-looking address in ``text``, or ''."""
    match = _IPV4_RE.search(text)
    return match.group(0) if match else ""


def extract_ipv6(text: str) -> str:
    """Return the first IPv6-looking address in ``text``, or ''."""
    match = _IPV6_RE.search(text)
    return match.group(0) if match else ""


def _first_address(apis: tuple[str, ...], extract) -> str:
    for api in apis:
        try:
            response = requests.get(
                api, headers={"User-Agent": USER_AGENT}, timeout=_TIMEOUT
            )
        except requests.RequestException:
            continue
        address = extract(response.text)
        if address:
            return address
    return ""


def get_ipv4_address() -> str:
    """Ask the IPv4 services in turn; '' when none answers with an address."""
    return _first_address(IPV4_APIS, extract_ipv4)


def get_ipv6_address() -> str:
    """Ask the IPv6 services in turn; '' when none answers with an address."""
    return _first_address(IPV6_APIS, extract_ipv6)


def get_ip_address() -> tuple[str, str]:
    """Return the public IPv4 and IPv6 addresses, each '' when unknown."""
    return get_ipv4_address(), get_ipv6_address()