from __future__ import annotations

import logging
from typing import Mapping

import httpx

from vpnbroker.services.errors import NotConnectedError, UpstreamForwardError
from vpnbroker.services.registry import ConnectionRegistry
from vpnbroker.services.traffic import TrafficAccountant

logger = logging.getLogger(__name__)

TUNNEL_PREFIX = "/api/vpn-tunnel"
CONNECTION_ID_HEADER = "x-vpn-connection-id"
CONNECTION_ID_QUERY = "connectionId"

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})
_DROP_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length", CONNECTION_ID_HEADER}
# httpx hands back decoded bodies, so length and encoding are recomputed downstream
_DROP_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


def parse_connection_id(header_value: str | None, query_value: str | None = None) -> int | None:
    for raw in (header_value, query_value):
        if raw is None or not str(raw).strip():
            continue
        try:
            value = int(str(raw).strip())
        except ValueError:
            return None
        return value if value > 0 else None
    return None


def rewrite_path(request_path: str) -> str:
    path = request_path
    if path.startswith(TUNNEL_PREFIX):
        path = path[len(TUNNEL_PREFIX):]
    if not path.startswith("/"):
        path = "/" + path
    return path


def build_target_url(proxy_target: str, request_path: str, query: str = "") -> str:
    url = proxy_target.rstrip("/") + rewrite_path(request_path)
    if query:
        url = f"{url}?{query}"
    return url


def forward_query(query: str) -> str:
    if not query:
        return ""
    return str(httpx.QueryParams(query).remove(CONNECTION_ID_QUERY))


def forward_request_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() not in _DROP_REQUEST_HEADERS}


def forward_response_headers(headers: httpx.Headers) -> list[tuple[str, str]]:
    # multi_items keeps repeated headers such as Set-Cookie apart
    return [(k, v) for k, v in headers.multi_items() if k.lower() not in _DROP_RESPONSE_HEADERS]


class TunnelGateway:
    """Forwards tunnel requests to the proxy target of a live session.

    Traffic is measured at two interception points around the upstream call:
    the outbound body size once the request is built, and the inbound body
    size once the response has been read. Failed forwards are reported once
    and never retried; the session stays registered.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        accountant: TrafficAccountant,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = 30.0,
    ) -> None:
        self._registry = registry
        self._accountant = accountant
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=False)

    async def handle(
        self,
        connection_id: int | None,
        *,
        method: str,
        path: str,
        query: str = "",
        headers: Mapping[str, str] | None = None,
        body: bytes = b"",
    ) -> httpx.Response:
        if connection_id is None:
            raise NotConnectedError()
        session = self._registry.get(connection_id)
        if session is None:
            raise NotConnectedError(connection_id)

        outbound = self._client.build_request(
            method,
            build_target_url(session.proxy_target, path, forward_query(query)),
            headers=forward_request_headers(headers or {}),
            content=body or None,
        )
        await self._on_request(connection_id, outbound)

        try:
            response = await self._client.send(outbound)
        except httpx.TimeoutException as exc:
            logger.warning("Tunnel timeout connection_id=%s url=%s", connection_id, outbound.url)
            raise UpstreamForwardError("VPN gateway timeout", status_code=504) from exc
        except httpx.HTTPError as exc:
            logger.warning("Tunnel forward failed connection_id=%s url=%s: %s", connection_id, outbound.url, exc)
            raise UpstreamForwardError("VPN gateway error", status_code=502) from exc

        await self._on_response(connection_id, response)
        return response

    async def _on_request(self, connection_id: int, outbound: httpx.Request) -> None:
        await self._accountant.on_request_sent(connection_id, len(outbound.content))

    async def _on_response(self, connection_id: int, response: httpx.Response) -> None:
        await self._accountant.on_response_received(connection_id, len(response.content))

    async def aclose(self) -> None:
        await self._client.aclose()
