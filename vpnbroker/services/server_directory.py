import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vpnbroker.core.database import async_session
from vpnbroker.models.server import Server

logger = logging.getLogger(__name__)

DEFAULT_SERVERS: list[dict] = [
    {"name": "New York", "country": "United States", "country_code": "us", "city": "New York",
     "ping": 28, "load": 65, "latitude": "40.7128", "longitude": "-74.0060", "status": "available"},
    {"name": "Los Angeles", "country": "United States", "country_code": "us", "city": "Los Angeles",
     "ping": 45, "load": 78, "latitude": "34.0522", "longitude": "-118.2437", "status": "available"},
    {"name": "Toronto", "country": "Canada", "country_code": "ca", "city": "Toronto",
     "ping": 42, "load": 60, "latitude": "43.6532", "longitude": "-79.3832", "status": "available"},
    {"name": "London", "country": "United Kingdom", "country_code": "gb", "city": "London",
     "ping": 85, "load": 42, "latitude": "51.5074", "longitude": "-0.1278", "status": "available"},
    {"name": "Paris", "country": "France", "country_code": "fr", "city": "Paris",
     "ping": 90, "load": 38, "latitude": "48.8566", "longitude": "2.3522", "status": "available"},
    {"name": "Amsterdam", "country": "Netherlands", "country_code": "nl", "city": "Amsterdam",
     "ping": 72, "load": 35, "latitude": "52.3676", "longitude": "4.9041", "status": "available"},
    {"name": "Tokyo", "country": "Japan", "country_code": "jp", "city": "Tokyo",
     "ping": 180, "load": 42, "latitude": "35.6762", "longitude": "139.6503", "status": "available"},
    {"name": "Singapore", "country": "Singapore", "country_code": "sg", "city": "Singapore",
     "ping": 190, "load": 25, "latitude": "1.3521", "longitude": "103.8198", "status": "available"},
    {"name": "Sydney", "country": "Australia", "country_code": "au", "city": "Sydney",
     "ping": 245, "load": 85, "latitude": "-33.8688", "longitude": "151.2093", "status": "maintenance"},
]


async def seed_default_servers(db: AsyncSession) -> int:
    existing = await db.scalar(select(func.count()).select_from(Server))
    if existing:
        return 0
    db.add_all([Server(**row) for row in DEFAULT_SERVERS])
    await db.flush()
    logger.info("Seeded %d default servers", len(DEFAULT_SERVERS))
    return len(DEFAULT_SERVERS)


def summarize_servers(servers) -> dict[str, int]:
    total = len(servers)
    available = sum(1 for s in servers if s.status == "available")
    avg_load = round(sum(s.load for s in servers) / total) if total else 0
    return {"totalServers": total, "availableServers": available, "serverLoad": avg_load}


class SqlServerDirectory:
    """Server lookups for the broker, each in its own short-lived DB session."""

    def __init__(self, session_factory: async_sessionmaker = async_session) -> None:
        self._session_factory = session_factory

    async def get_server(self, server_id: int) -> Server | None:
        async with self._session_factory() as db:
            return await db.get(Server, server_id)

    async def list_servers(self) -> list[Server]:
        async with self._session_factory() as db:
            result = await db.execute(select(Server).order_by(Server.id))
            return list(result.scalars().all())
