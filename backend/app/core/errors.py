"""
Error hierarchy and the FastAPI handlers that render it.

Every error leaves the API as::

    {"error": {"code": "INVALID_STATE", "message": "...", "status": 409,
               "details": {...}}}

Codes:
    NOT_FOUND            404  missing record, or one owned by someone else
    VALIDATION_ERROR     422  bad input (field named in details when known)
    CONFLICT             409  second active alert, duplicate id
    INVALID_STATE        409  transition from a status that forbids it,
                              including a lost compare-and-swap race
    UNAUTHENTICATED      401  no caller identity (see api.deps)
    LOCATION_UNAVAILABLE 503  never reaches a client: the service treats
                              it as "no coordinate" so an SOS is not
                              blocked by GPS
    INTERNAL_ERROR       500

Nothing is retried. Validation and state errors go back to the caller
for user-facing messaging.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, ClassVar, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


class SafetyAPIError(Exception):
    """Base class; subclasses fix the HTTP status and error code."""

    status_code: ClassVar[int] = 500
    error_code: ClassVar[str] = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error", **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_body(self) -> Dict[str, Any]:
        return _error_body(self.status_code, self.error_code, self.message, self.details)


class NotFoundError(SafetyAPIError):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(f"{resource} not found", resource=resource, **identifiers)


class ValidationError(SafetyAPIError):
    status_code = 422
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        super().__init__(message, field=field, **details)


class ConflictError(SafetyAPIError):
    status_code = 409
    error_code = "CONFLICT"


class InvalidStateError(SafetyAPIError):
    status_code = 409
    error_code = "INVALID_STATE"

    def __init__(self, resource: str, *, current: Optional[str] = None,
                 attempted: Optional[str] = None, **details: Any):
        message = f"{resource} cannot be {attempted or 'changed'}"
        if current is not None:
            message += f" from status '{current}'"
        super().__init__(message, resource=resource, current_status=current,
                         attempted=attempted, **details)


class UnauthenticatedError(SafetyAPIError):
    """Request arrived without a caller identity."""

    status_code = 401
    error_code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Missing user identity", *, header: Optional[str] = None):
        super().__init__(message, header=header)


class LocationError(SafetyAPIError):
    status_code = 503
    error_code = "LOCATION_UNAVAILABLE"

    def __init__(self, message: str = "Location unavailable", **details: Any):
        super().__init__(message, **details)


def _error_body(status: int, code: str, message: str,
                details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message, "status": status}
    if details:
        error["details"] = details
    return {"error": error}


def _respond(request: Request, status: int, body: Dict[str, Any]) -> JSONResponse:
    if not settings.is_production:
        body["error"]["path"] = request.url.path
        body["error"]["method"] = request.method
    return JSONResponse(status_code=status, content=body)


def jsonable_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    """Pydantic error entries without their non-serialisable ``ctx``."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(SafetyAPIError)
    async def on_safety_error(request: Request, exc: SafetyAPIError):
        logger.log(
            logging.ERROR if exc.status_code >= 500 else logging.WARNING,
            "%s %s rejected [%s]: %s", request.method, request.url.path,
            exc.error_code, exc.message,
        )
        return _respond(request, exc.status_code, exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def on_request_validation(request: Request, exc: RequestValidationError):
        errors = jsonable_errors(exc)
        logger.warning("Malformed request to %s: %s", request.url.path, errors)
        body = _error_body(422, "VALIDATION_ERROR", "Request validation failed",
                           {"errors": errors})
        return _respond(request, 422, body)

    @app.exception_handler(ValueError)
    async def on_value_error(request: Request, exc: ValueError):
        logger.warning("Rejected value on %s: %s", request.url.path, exc)
        return _respond(request, 422, _error_body(422, "VALIDATION_ERROR", str(exc)))

    @app.exception_handler(Exception)
    async def on_unhandled(request: Request, exc: Exception):
        logger.critical("Unhandled %s on %s", type(exc).__name__, request.url.path,
                        exc_info=exc)
        if settings.DEBUG:
            body = _error_body(500, "INTERNAL_ERROR", str(exc),
                               {"traceback": traceback.format_exception(exc)})
        else:
            body = _error_body(500, "INTERNAL_ERROR", "Internal server error")
        return _respond(request, 500, body)
