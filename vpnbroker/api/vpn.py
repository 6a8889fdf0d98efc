import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, status
from fastapi.responses import JSONResponse, Response

from vpnbroker.api.deps import get_broker
from vpnbroker.core.security import decode_token, user_id_from_payload
from vpnbroker.schemas.server import VpnStatusResponse
from vpnbroker.services.broker import VpnBroker
from vpnbroker.services.errors import NotConnectedError, UpstreamForwardError
from vpnbroker.services.region import location_for_ip
from vpnbroker.services.tunnel import (
    CONNECTION_ID_HEADER,
    CONNECTION_ID_QUERY,
    forward_response_headers,
    parse_connection_id,
)

logger = logging.getLogger(__name__)

# Mounted under the API prefix
router = APIRouter(tags=["vpn"])
# Mounted at the application root
public_router = APIRouter(tags=["vpn"])

TUNNEL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


class WebSocketChannel:
    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def send(self, message: dict[str, Any]) -> None:
        await self._websocket.send_json(message)


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


# ==================== CONTROL CHANNEL ====================

@public_router.websocket("/ws")
async def control_channel(websocket: WebSocket, token: str | None = None):
    token = token or _bearer_token(websocket.headers.get("authorization"))
    try:
        user_id = user_id_from_payload(decode_token(token or ""))
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    broker: VpnBroker = websocket.app.state.broker
    channel = WebSocketChannel(websocket)
    logger.info("Control channel opened user_id=%s", user_id)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await broker.control.handle_message(channel, user_id, raw)
    finally:
        removed = await broker.control.close_channel(channel)
        logger.info("Control channel closed user_id=%s, sessions removed=%d", user_id, len(removed))


# ==================== TUNNEL GATEWAY ====================

@router.api_route("/vpn-tunnel", methods=TUNNEL_METHODS)
@router.api_route("/vpn-tunnel/{path:path}", methods=TUNNEL_METHODS)
async def vpn_tunnel(request: Request, broker: VpnBroker = Depends(get_broker)):
    connection_id = parse_connection_id(
        request.headers.get(CONNECTION_ID_HEADER),
        request.query_params.get(CONNECTION_ID_QUERY),
    )
    body = await request.body()
    try:
        upstream = await broker.gateway.handle(
            connection_id,
            method=request.method,
            path="/" + request.path_params.get("path", ""),
            query=request.url.query,
            headers=request.headers,
            body=body,
        )
    except NotConnectedError:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Not connected to VPN"})
    except UpstreamForwardError as exc:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    response = Response(content=upstream.content, status_code=upstream.status_code)
    for name, value in forward_response_headers(upstream.headers):
        response.headers.append(name, value)
    return response


@public_router.get("/ip-check")
async def ip_check(request: Request):
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else "unknown"
    return {
        "ip": ip,
        "location": location_for_ip(ip),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "headers": dict(request.headers),
        "vpn": True,
    }


# ==================== STATUS ====================

@router.get("/vpn-status", response_model=VpnStatusResponse)
async def vpn_status(broker: VpnBroker = Depends(get_broker)):
    usage = broker.registry.server_usage()
    active = len(broker.registry)
    try:
        servers = await broker.servers.list_servers()
    except Exception:
        logger.exception("Failed to load servers for VPN status")
        return JSONResponse(status_code=500, content={"error": "Failed to get VPN status"})

    return {
        "activeConnections": active,
        "servers": [
            {
                "id": server.id,
                "name": server.name,
                "country": server.country,
                "activeUsers": usage.get(server.id, 0),
            }
            for server in servers
        ],
    }
