from fastapi import APIRouter

from vpnbroker.api import admin, auth, connections, servers, vpn

api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(servers.router)
api_router.include_router(connections.router)
api_router.include_router(vpn.router)
api_router.include_router(admin.router)
