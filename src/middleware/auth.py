"""Bearer JWT verification middleware for FastAPI.

Tokens are issued by the SportApp auth service (out of scope here) and signed
with the shared ``jwt_secret``.  The ``userId`` claim identifies the owner of
every sync call.  On success ``request.state.auth`` is set for
``get_current_user``.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt as pyjwt
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.config import Settings, get_settings
from src.dependencies import AuthContext

logger = logging.getLogger("sportapp.auth")

# Paths that do not require authentication
PUBLIC_PATHS: set[str] = {
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}


def _is_public(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc")


def _unauthorized(detail: str) -> Response:
    return Response(
        content=f'{{"detail":"{detail}"}}',
        status_code=401,
        media_type="application/json",
    )


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """Verify HS256 bearer tokens and populate request.state.auth."""

    def __init__(self, app: Any, settings: Settings | None = None) -> None:
        super().__init__(app)
        s = settings or get_settings()
        self._secret = s.jwt_secret
        self._algorithms = [s.jwt_algorithm]

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if _is_public(request.url.path) or request.method == "OPTIONS":
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return _unauthorized("Missing or invalid Authorization header")

        token = auth_header.removeprefix("Bearer ").strip()

        try:
            payload = pyjwt.decode(token, self._secret, algorithms=self._algorithms)
        except pyjwt.ExpiredSignatureError:
            return _unauthorized("Token expired")
        except pyjwt.InvalidTokenError as exc:
            logger.warning("JWT validation failed: %s", exc)
            return _unauthorized("Invalid token")

        user_id = payload.get("userId")
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            logger.warning("JWT without integer userId claim")
            return _unauthorized("Invalid token")

        request.state.auth = AuthContext(user_id=user_id, email=payload.get("email"))
        return await call_next(request)
