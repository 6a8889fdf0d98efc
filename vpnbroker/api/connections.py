from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from vpnbroker.core.database import get_db
from vpnbroker.core.logging_buffer import logging_buffer
from vpnbroker.core.security import get_current_user, user_id_from_payload
from vpnbroker.models.server import Server
from vpnbroker.schemas.connection import ConnectionHistoryResponse, ConnectRequest, DisconnectRequest
from vpnbroker.services.connection_history import add_connection, finish_connection, list_connections

router = APIRouter(tags=["connections"])


@router.get("/connection-history", response_model=list[ConnectionHistoryResponse])
async def connection_history(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return await list_connections(db, user_id_from_payload(user))


@router.post("/connect", response_model=ConnectionHistoryResponse, status_code=status.HTTP_201_CREATED)
async def connect(
    req: ConnectRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    server = await db.get(Server, req.server_id)
    if not server:
        raise HTTPException(status_code=404, detail="Server not found")

    user_id = user_id_from_payload(user)
    record = await add_connection(db, user_id=user_id, server_id=server.id, ip_address=req.ip_address)
    logging_buffer.add("processing", f"Connection record created: id={record.id}, user={user_id}, server={server.id}")
    return record


@router.post("/disconnect", response_model=ConnectionHistoryResponse)
async def disconnect(
    req: DisconnectRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    record = await finish_connection(
        db,
        req.connection_id,
        data_used=req.data_used,
        user_id=user_id_from_payload(user),
    )
    if not record:
        raise HTTPException(status_code=404, detail="Connection not found")
    return record
