"""Role-based access control middleware for FastAPI."""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from apps.tracker.dependencies.auth import User, resolve_user_from_token


class RBACMiddleware(BaseHTTPMiddleware):
    """Populate the request state with the authenticated user.

    Requests without an ``Authorization`` header pass through untouched; routes
    that need a user reject them through :func:`get_current_user`.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        authorization = request.headers.get("Authorization")
        if not authorization:
            return await call_next(request)

        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() != "bearer":
            return JSONResponse(status_code=401, content={"detail": "Invalid authentication credentials"})

        try:
            user: User = resolve_user_from_token(credentials.strip() or None)
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        request.state.user = user
        return await call_next(request)
