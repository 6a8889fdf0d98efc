from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vpnbroker.api.deps import get_broker
from vpnbroker.core.database import get_db
from vpnbroker.core.logging_buffer import logging_buffer
from vpnbroker.core.security import get_current_admin
from vpnbroker.models.server import Server
from vpnbroker.services.broker import VpnBroker
from vpnbroker.services.connection_history import count_open_connections
from vpnbroker.services.server_directory import summarize_servers

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(get_current_admin)])


@router.get("/vpn-status")
async def admin_vpn_status(
    db: AsyncSession = Depends(get_db),
    broker: VpnBroker = Depends(get_broker),
):
    open_records = await count_open_connections(db)
    result = await db.execute(select(Server))
    return {
        "activeConnections": open_records,
        "liveSessions": len(broker.registry),
        "serverStats": summarize_servers(result.scalars().all()),
        "protocol": "HTTP tunnel",
        "lastUpdated": datetime.now(timezone.utc).isoformat(),
    }


# ==================== LOGS ====================

@router.get("/logs")
async def get_logs(
    log_type: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
):
    return {
        "enabled": logging_buffer.enabled,
        "items": logging_buffer.get_logs(log_type=log_type, limit=limit, offset=offset),
    }


@router.delete("/logs")
async def clear_logs():
    logging_buffer.clear()
    return {"status": "cleared"}


@router.post("/logs/start")
async def start_logs():
    logging_buffer.start()
    return {"enabled": True}


@router.post("/logs/stop")
async def stop_logs():
    logging_buffer.stop()
    return {"enabled": False}
