"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.sync.engine import SyncEngine


@dataclass(frozen=True)
class AuthContext:
    """Authenticated user context extracted from the bearer JWT."""

    user_id: int  # users.id of the token subject
    email: str | None = None


async def get_current_user(request: Request) -> AuthContext:
    """Extract the authenticated user from the request state.

    The JWT auth middleware sets ``request.state.auth`` before routes run.
    """
    auth: AuthContext | None = getattr(request.state, "auth", None)
    if auth is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return auth


def get_sync_engine(request: Request) -> SyncEngine:
    """Return the engine built by the app lifespan."""
    engine: SyncEngine | None = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Sync service not ready")
    return engine


# Annotated shortcuts for route signatures
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
AppSettings = Annotated[Settings, Depends(get_settings)]
SyncService = Annotated[SyncEngine, Depends(get_sync_engine)]
