from __future__ import annotations

from dataclasses import dataclass

import httpx

from vpnbroker.services.control import ConnectionHistoryStore, ServerDirectory, SessionControl
from vpnbroker.services.registry import ConnectionRegistry
from vpnbroker.services.traffic import TrafficAccountant
from vpnbroker.services.tunnel import TunnelGateway


@dataclass
class VpnBroker:
    """Owns the registry and every component that shares it."""

    registry: ConnectionRegistry
    accountant: TrafficAccountant
    control: SessionControl
    gateway: TunnelGateway
    servers: ServerDirectory

    async def aclose(self) -> None:
        await self.gateway.aclose()


def build_broker(
    servers: ServerDirectory,
    *,
    history: ConnectionHistoryStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    stats_window_seconds: float = 1.0,
    upstream_timeout: float = 30.0,
    clock=None,
) -> VpnBroker:
    registry = ConnectionRegistry()
    if clock is None:
        accountant = TrafficAccountant(registry, window_seconds=stats_window_seconds)
    else:
        accountant = TrafficAccountant(registry, window_seconds=stats_window_seconds, clock=clock)
    return VpnBroker(
        registry=registry,
        accountant=accountant,
        control=SessionControl(registry, accountant, servers, history),
        gateway=TunnelGateway(registry, accountant, http_client, timeout=upstream_timeout),
        servers=servers,
    )
