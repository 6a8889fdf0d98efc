"""Connect/disconnect handling for the per-client control channel.

Server side a session either exists in the registry or it does not. The
Connecting/Disconnecting states live only in the client while it waits for
``connected`` / ``disconnected``.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from pydantic import BaseModel

from vpnbroker.core.logging_buffer import logging_buffer
from vpnbroker.schemas.control import (
    INBOUND_MESSAGES,
    ConnectMessage,
    DisconnectMessage,
    connected_message,
    disconnected_message,
    error_message,
)
from vpnbroker.services.errors import BrokerError, DuplicateSessionError, SessionValidationError
from vpnbroker.services.region import resolve_target
from vpnbroker.services.registry import ConnectionRegistry
from vpnbroker.services.traffic import TrafficAccountant
from vpnbroker.services.vpn_session import ControlChannel, VpnSession

logger = logging.getLogger(__name__)

INVALID_REQUEST = "Invalid request"
SERVER_NOT_FOUND = "Server not found"
ALREADY_ACTIVE = "Connection already active"
CONNECT_FAILED = "Failed to establish VPN connection"


class ServerDirectory(Protocol):
    async def get_server(self, server_id: int) -> Any: ...

    async def list_servers(self) -> list[Any]: ...


class ConnectionHistoryStore(Protocol):
    async def finish(self, connection_id: int, *, user_id: int, data_used: int) -> None: ...


def parse_control_message(raw: str | bytes) -> BaseModel:
    try:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise SessionValidationError(INVALID_REQUEST)
        model = INBOUND_MESSAGES.get(payload.get("type"))
        if model is None:
            raise SessionValidationError(INVALID_REQUEST)
        return model.model_validate(payload)
    except (ValueError, TypeError) as exc:
        raise SessionValidationError(INVALID_REQUEST) from exc


class SessionControl:
    def __init__(
        self,
        registry: ConnectionRegistry,
        accountant: TrafficAccountant,
        servers: ServerDirectory,
        history: ConnectionHistoryStore | None = None,
    ) -> None:
        self._registry = registry
        self._accountant = accountant
        self._servers = servers
        self._history = history

    async def handle_message(self, channel: ControlChannel, user_id: int, raw: str | bytes) -> None:
        """Process one inbound frame. Errors are reported on the channel, which stays open."""
        try:
            message = parse_control_message(raw)
        except SessionValidationError as exc:
            logger.info("Rejected control frame from user_id=%s: %s", user_id, exc)
            await channel.send(error_message(INVALID_REQUEST))
            return

        if isinstance(message, ConnectMessage):
            try:
                session = await self.connect(channel, user_id, message.server_id, message.connection_id)
            except DuplicateSessionError:
                await channel.send(error_message(ALREADY_ACTIVE))
            except SessionValidationError as exc:
                await channel.send(error_message(str(exc)))
            except BrokerError:
                await channel.send(error_message(CONNECT_FAILED))
            else:
                await channel.send(connected_message(session.remote_ip))
        elif isinstance(message, DisconnectMessage):
            session = await self.disconnect(user_id, message.connection_id)
            if session is not None:
                await channel.send(disconnected_message())

    async def connect(self, channel: ControlChannel, user_id: int, server_id: int, connection_id: int) -> VpnSession:
        try:
            server = await self._servers.get_server(server_id)
        except Exception as exc:
            logger.exception("Server lookup failed for server_id=%s", server_id)
            raise BrokerError(CONNECT_FAILED) from exc
        if server is None:
            raise SessionValidationError(SERVER_NOT_FOUND)

        target = resolve_target(server)
        session = VpnSession(
            connection_id=connection_id,
            user_id=user_id,
            server_id=server_id,
            channel=channel,
            remote_ip=target.remote_ip,
            proxy_target=target.proxy_target,
            window=self._accountant.new_window(),
        )
        try:
            self._registry.register(session)
        except DuplicateSessionError:
            logging_buffer.add("processing", f"Session rejected: connection {connection_id} already active")
            raise
        logging_buffer.add("processing", f"Session registered: connection={connection_id}, user={user_id}, server={server_id}, ip={target.remote_ip}")
        return session

    async def disconnect(self, user_id: int, connection_id: int) -> VpnSession | None:
        """Remove a session owned by ``user_id``.

        Unknown ids and sessions of other users are ignored silently, so a
        repeated disconnect is harmless.
        """
        session = self._registry.remove_if(connection_id, lambda s: s.user_id == user_id)
        if session is None:
            return None
        logging_buffer.add("processing", f"Session removed: connection={connection_id}, data_used={session.data_used_bytes}")
        await self._finish_history(session)
        return session

    async def close_channel(self, channel: ControlChannel) -> list[VpnSession]:
        removed = self._registry.remove_by_channel(channel)
        for session in removed:
            logging_buffer.add("processing", f"Channel closed, session removed: connection={session.connection_id}")
            await self._finish_history(session)
        return removed

    async def _finish_history(self, session: VpnSession) -> None:
        if self._history is None:
            return
        try:
            await self._history.finish(
                session.connection_id,
                user_id=session.user_id,
                data_used=session.data_used_bytes,
            )
        except Exception as exc:
            logger.warning("Failed to close history for connection_id=%s: %s", session.connection_id, exc)
