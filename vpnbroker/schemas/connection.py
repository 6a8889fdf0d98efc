from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field


class ConnectRequest(BaseModel):
    server_id: int = Field(validation_alias=AliasChoices("serverId", "server_id"))
    ip_address: str = Field(validation_alias=AliasChoices("ipAddress", "ip_address"))


class DisconnectRequest(BaseModel):
    connection_id: int = Field(validation_alias=AliasChoices("connectionId", "connection_id"))
    data_used: int = Field(default=0, ge=0, validation_alias=AliasChoices("dataUsed", "data_used"))


class ConnectionHistoryResponse(BaseModel):
    id: int
    user_id: int
    server_id: int
    ip_address: str
    connected_at: datetime
    disconnected_at: datetime | None
    duration: int | None
    data_used: int | None

    class Config:
        from_attributes = True
