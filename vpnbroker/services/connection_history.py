import logging
from datetime import datetime, timezone

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vpnbroker.core.database import async_session
from vpnbroker.models.connection_history import ConnectionHistory

logger = logging.getLogger(__name__)


async def add_connection(db: AsyncSession, *, user_id: int, server_id: int, ip_address: str) -> ConnectionHistory:
    record = ConnectionHistory(
        user_id=user_id,
        server_id=server_id,
        ip_address=ip_address,
        connected_at=datetime.now(timezone.utc),
        data_used=0,
    )
    db.add(record)
    await db.flush()
    return record


async def list_connections(db: AsyncSession, user_id: int) -> list[ConnectionHistory]:
    result = await db.execute(
        select(ConnectionHistory)
        .where(ConnectionHistory.user_id == user_id)
        .order_by(desc(ConnectionHistory.connected_at))
    )
    return list(result.scalars().all())


async def count_open_connections(db: AsyncSession) -> int:
    total = await db.scalar(
        select(func.count()).select_from(ConnectionHistory).where(ConnectionHistory.disconnected_at.is_(None))
    )
    return int(total or 0)


async def finish_connection(
    db: AsyncSession,
    connection_id: int,
    *,
    data_used: int,
    user_id: int | None = None,
    now: datetime | None = None,
) -> ConnectionHistory | None:
    """Close a history record and stamp its duration.

    An already-closed record is returned untouched. Records belonging to a
    different user are treated as missing.
    """
    record = await db.get(ConnectionHistory, connection_id)
    if record is None or (user_id is not None and record.user_id != user_id):
        return None
    if record.disconnected_at is not None:
        return record

    now = now or datetime.now(timezone.utc)
    record.disconnected_at = now
    record.duration = max(0, int((now - record.connected_at).total_seconds()))
    record.data_used = max(int(data_used or 0), int(record.data_used or 0))
    await db.flush()
    return record


class SqlConnectionHistory:
    def __init__(self, session_factory: async_sessionmaker = async_session) -> None:
        self._session_factory = session_factory

    async def finish(self, connection_id: int, *, user_id: int, data_used: int) -> None:
        async with self._session_factory() as db:
            try:
                record = await finish_connection(db, connection_id, data_used=data_used, user_id=user_id)
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        if record is None:
            logger.debug("No history record to close for connection_id=%s", connection_id)
