import logging
import time
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select, text

from vpnbroker.core.config import settings
from vpnbroker.core.database import engine, Base, async_session
from vpnbroker.core.logging_buffer import logging_buffer
from vpnbroker.core.logging_setup import setup_logging
from vpnbroker.core.security import hash_password
from vpnbroker.api import vpn
from vpnbroker.api.router import api_router
from vpnbroker.models.user import User
from vpnbroker.models.server import Server  # noqa: F401  (table registration)
from vpnbroker.models.connection_history import ConnectionHistory  # noqa: F401
from vpnbroker.services.broker import build_broker
from vpnbroker.services.connection_history import SqlConnectionHistory
from vpnbroker.services.server_directory import SqlServerDirectory, seed_default_servers
from vpnbroker.services.tunnel import CONNECTION_ID_HEADER

setup_logging()
logger = logging.getLogger(__name__)


async def _bootstrap_database() -> None:
    async with engine.begin() as conn:
        await conn.execute(text("SELECT pg_advisory_lock(1)"))
        try:
            await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            logger.warning(f"Table creation skipped (already exists): {e}")
        finally:
            await conn.execute(text("SELECT pg_advisory_unlock(1)"))

    try:
        async with async_session() as db:
            result = await db.execute(select(User).where(User.username == settings.ADMIN_USERNAME))
            if not result.scalar_one_or_none():
                db.add(User(
                    username=settings.ADMIN_USERNAME,
                    password_hash=hash_password(settings.ADMIN_PASSWORD),
                    is_admin=True,
                ))
            if settings.SEED_DEFAULT_SERVERS:
                await seed_default_servers(db)
            await db.commit()
    except Exception as e:
        logger.warning(f"Initial data bootstrap skipped: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await _bootstrap_database()

    if settings.LOG_BUFFER_ENABLED:
        logging_buffer.start()

    broker = build_broker(
        SqlServerDirectory(),
        history=SqlConnectionHistory(),
        stats_window_seconds=settings.STATS_WINDOW_MS / 1000,
        upstream_timeout=settings.TUNNEL_UPSTREAM_TIMEOUT_SECONDS,
    )
    app.state.broker = broker

    yield

    await broker.aclose()
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    if not logging_buffer.enabled:
        return await call_next(request)

    start_time = time.time()
    method = request.method
    path = request.url.path
    client_ip = request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")

    # Skip admin log polling (prevents recursive log spam)
    if path.startswith(f"{settings.API_PREFIX}/admin/logs"):
        return await call_next(request)

    if path.startswith(f"{settings.API_PREFIX}/"):
        logging_buffer.add("request", f"{method} {path}", {
            "ip": client_ip,
            "connection_id": request.headers.get(CONNECTION_ID_HEADER, ""),
        })

    try:
        response = await call_next(request)
        duration = round((time.time() - start_time) * 1000, 1)

        if path.startswith(f"{settings.API_PREFIX}/vpn-tunnel"):
            logging_buffer.add("processing", f"Tunnel {response.status_code} in {duration}ms: {method} {path}")
        elif path.startswith(f"{settings.API_PREFIX}/"):
            logging_buffer.add("processing", f"Response {response.status_code} in {duration}ms: {method} {path}")

        return response
    except Exception as e:
        duration = round((time.time() - start_time) * 1000, 1)
        logging_buffer.add("error", f"Exception in {method} {path} ({duration}ms): {str(e)}", {
            "traceback": traceback.format_exc(),
        })
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(api_router, prefix=settings.API_PREFIX)
app.include_router(vpn.public_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": settings.VERSION}


def run() -> None:
    import uvicorn

    uvicorn.run("vpnbroker.main:app", host=settings.HOST, port=settings.PORT)
