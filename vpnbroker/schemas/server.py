from pydantic import BaseModel


class ServerResponse(BaseModel):
    id: int
    name: str
    country: str
    country_code: str
    city: str
    ping: int
    load: int
    latitude: str
    longitude: str
    status: str

    class Config:
        from_attributes = True


class ServerUsage(BaseModel):
    id: int
    name: str
    country: str
    activeUsers: int


class VpnStatusResponse(BaseModel):
    activeConnections: int
    servers: list[ServerUsage]
