"""Liveness check: public, no auth."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.dependencies import AppSettings

router = APIRouter(tags=["system"])
logger = logging.getLogger("sportapp.health")


@router.get("/health")
async def health_check(request: Request, settings: AppSettings) -> dict:
    """Returns 200 while the process is up; ``status`` drops to degraded without the DB.

    Also reports whether the lifespan has attached the sync engine yet.
    """
    state = request.app.state
    db_ok = False
    db = getattr(state, "database", None)
    if db is not None:
        try:
            db_ok = await db.ping()
        except Exception as exc:
            logger.warning("Health check DB ping failed: %s", exc)

    return {
        "service": settings.app_name,
        "status": "healthy" if db_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "sync_engine": "ready" if getattr(state, "sync_engine", None) is not None else "starting",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
