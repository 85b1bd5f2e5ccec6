"""SportApp Sync API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 3500
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import get_settings
from src.middleware.auth import JWTAuthMiddleware
from src.routers import health, sync
from src.services.database import Database
from src.sync.appliers import build_default_registry
from src.sync.engine import SyncEngine
from src.sync.store import PostgresOperationStore

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("sportapp")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks.

    Builds the database handle and the sync engine and hangs them on
    ``app.state``; the registry is validated before the pool is opened so a
    misconfigured deployment fails fast.
    """
    settings = get_settings()
    logger.info(
        "Starting SportApp Sync API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    registry = build_default_registry()
    db = Database.from_settings(settings)
    await db.connect()

    app.state.database = db
    app.state.sync_engine = SyncEngine.from_settings(
        PostgresOperationStore(db), registry, settings
    )
    try:
        yield
    finally:
        app.state.sync_engine = None
        await db.close()
        logger.info("SportApp Sync API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="SportApp Sync API",
        description="Offline mutation queue for the SportApp mobile client.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Middleware (the last one added runs first) ----------

    # Bearer JWT authentication
    app.add_middleware(JWTAuthMiddleware, settings=settings)

    # CORS runs first so preflight requests never reach auth
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside the v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    app.include_router(sync.router, prefix="/api/v1")

    return app


app = create_app()
