"""Pseudo-regional addressing for VPN servers.

Each server maps to a stable fake IP inside a per-country prefix. Nothing here
touches the network; the proxy target is only a URL string.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DEFAULT_REGION = "Unknown"

REGION_PREFIXES: dict[str, str] = {
    "United States": "104.16.132.",
    "Germany": "130.41.228.",
    "Japan": "162.159.135.",
    "Singapore": "172.67.75.",
    "United Kingdom": "104.26.5.",
    "Canada": "104.18.114.",
    "Australia": "103.21.244.",
    "France": "172.64.163.",
    "Netherlands": "195.85.23.",
    "Brazil": "190.93.246.",
    DEFAULT_REGION: "192.168.1.",
}


@dataclass(frozen=True)
class ResolvedTarget:
    remote_ip: str
    proxy_target: str


def _prefix_for_country(country: str | None) -> str:
    return REGION_PREFIXES.get(country or DEFAULT_REGION, REGION_PREFIXES[DEFAULT_REGION])


def regional_ip(server: Any) -> str:
    last_octet = 1 + (int(server.id) % 254)
    return f"{_prefix_for_country(getattr(server, 'country', None))}{last_octet}"


def resolve_target(server: Any) -> ResolvedTarget:
    ip = regional_ip(server)
    return ResolvedTarget(remote_ip=ip, proxy_target=f"http://{ip}:80")


def location_for_ip(ip: str | None) -> str:
    if not ip:
        return DEFAULT_REGION
    for country, prefix in REGION_PREFIXES.items():
        if ip.startswith(prefix):
            return country
    return DEFAULT_REGION
