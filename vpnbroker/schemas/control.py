"""Control channel message shapes.

Inbound frames are JSON objects with a ``type`` discriminator. Field names on
the wire are camelCase; snake_case is accepted as well.
"""
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field


class ConnectMessage(BaseModel):
    type: Literal["connect"]
    server_id: int = Field(validation_alias=AliasChoices("serverId", "server_id"))
    connection_id: int = Field(gt=0, validation_alias=AliasChoices("connectionId", "connection_id"))


class DisconnectMessage(BaseModel):
    type: Literal["disconnect"]
    connection_id: int = Field(gt=0, validation_alias=AliasChoices("connectionId", "connection_id"))


INBOUND_MESSAGES: dict[str, type[BaseModel]] = {
    "connect": ConnectMessage,
    "disconnect": DisconnectMessage,
}


def connected_message(remote_ip: str) -> dict:
    return {"type": "connected", "data": {"remoteIP": remote_ip}}


def disconnected_message() -> dict:
    return {"type": "disconnected", "data": {}}


def error_message(error: str) -> dict:
    return {"type": "error", "data": {"error": error}}


def stats_message(download_speed: float, upload_speed: float, data_used_kb: float) -> dict:
    return {
        "type": "stats",
        "data": {
            "downloadSpeed": download_speed,
            "uploadSpeed": upload_speed,
            "dataUsed": data_used_kb,
        },
    }
