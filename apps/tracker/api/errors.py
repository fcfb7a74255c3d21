"""Map tracker errors onto HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from apps.tracker.domain.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    TrackerError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[TrackerError], int] = {
    ValidationError: 422,
    NotFoundError: 404,
    AuthorizationError: 403,
    ConflictError: 409,
    PersistenceError: 503,
}


def status_code_for(exc: TrackerError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in STATUS_CODES:
            return STATUS_CODES[error_type]
    return 500


async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TrackerError, tracker_error_handler)
