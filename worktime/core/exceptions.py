"""
Domain error taxonomy and global exception handlers.

Every business-rule failure raised by the engines is a ``WorktimeError``
subclass carrying a ``kind`` (one of the six taxonomy buckets) and the HTTP
status it maps to.  The handlers below keep stack traces away from clients.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


class WorktimeError(Exception):
    """Base class for caller-visible failures."""

    kind = "Error"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ── Taxonomy ────────────────────────────────────────────────────────
class Unauthorized(WorktimeError):
    kind = "Unauthorized"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(WorktimeError):
    kind = "Forbidden"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class NotFound(WorktimeError):
    kind = "NotFound"
    status_code = 404
    default_message = "Resource not found"


class InvalidInput(WorktimeError):
    kind = "InvalidInput"
    status_code = 422
    default_message = "Invalid input"


class Conflict(WorktimeError):
    kind = "Conflict"
    status_code = 409
    default_message = "Operation conflicts with current state"


class FaceVerificationFailed(WorktimeError):
    kind = "FaceVerificationFailed"
    status_code = 403
    default_message = "Face verification failed"


# ── Input violations ────────────────────────────────────────────────
class InvalidRange(InvalidInput):
    default_message = "End of range precedes its start"


class PastDate(InvalidInput):
    default_message = "Start date is too far in the past"


class InvalidEnrollment(InvalidInput):
    default_message = "Face enrollment requires consent and a 64-1024 dimension embedding"


# ── State conflicts ─────────────────────────────────────────────────
class ActiveSessionExists(Conflict):
    default_message = "User already has an active session"


class AlreadyClosed(Conflict):
    default_message = "Session is already closed"


class NoActiveSession(Conflict):
    default_message = "No active session found"


class AlreadyDecided(Conflict):
    default_message = "Leave request has already been decided"


class AlreadyStarted(Conflict):
    default_message = "Leave has already started and cannot be canceled"


class InvalidState(Conflict):
    default_message = "Leave request cannot be changed in its current state"


class LeaveOverlap(Conflict):
    default_message = "Leave request overlaps with an existing request"


# ── Handlers ────────────────────────────────────────────────────────
async def _worktime_error_handler(_request: Request, exc: WorktimeError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.kind, "success": False},
        headers=headers,
    )


async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "success": False},
        headers=getattr(exc, "headers", None),
    )


async def _integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Database integrity error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=409,
        content={"detail": "Database constraint violation", "error": "Conflict", "success": False},
    )


async def _sqlalchemy_error_handler(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal database error", "success": False},
    )


async def _generic_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "success": False},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(WorktimeError, _worktime_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
