"""
Request middleware — access log, timing, correlation IDs.

Provides:
    • X-Request-ID propagation (accepted from the client when well-formed)
    • X-Process-Time response header
    • Caller identity (X-User-ID, set by the identity provider's gateway)
      attached to the log context
    • Access log lines keyed by route template, so record ids in paths
      (/alerts/{alert_id}/resolve) do not explode log cardinality
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_request_context, suppress_identity

logger = logging.getLogger(__name__)

_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _request_id(request: Request) -> str:
    incoming = request.headers.get("X-Request-ID")
    if incoming and _REQUEST_ID_RE.match(incoming):
        return incoming
    return uuid.uuid4().hex[:16]


def _route_template(request: Request) -> Optional[str]:
    route = request.scope.get("route")
    return getattr(route, "path_format", None) or getattr(route, "path", None)


def mark_anonymous(request: Request) -> None:
    """Keep the caller out of this request's access log line."""
    request.state.anonymous = True


def _forget_caller_if_anonymous(request: Request) -> None:
    # The endpoint runs in a child task, so its own suppress_identity()
    # never reaches this context; the flag on the shared scope does
    if getattr(request.state, "anonymous", False):
        suppress_identity()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One access-log line per request.

    4xx/5xx are logged at WARNING so rejected SOS activations and lost
    status races stand out from routine traffic.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _request_id(request)
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        set_request_context(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            endpoint=path,
            user_id=request.headers.get("X-User-ID"),
        )
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            _forget_caller_if_anonymous(request)
            logger.error(
                "%s %s → 500 (%.1fms)", request.method, path,
                (time.perf_counter() - start) * 1000,
                extra={"status_code": 500, "endpoint": path},
            )
            set_request_context()
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        _forget_caller_if_anonymous(request)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_QUIET_PREFIXES):
            endpoint = _route_template(request) or path
            logger.log(
                logging.WARNING if response.status_code >= 400 else logging.INFO,
                "%s %s → %d (%.1fms)",
                request.method, endpoint, response.status_code, duration_ms,
                extra={
                    "duration_ms": round(duration_ms, 1),
                    "status_code": response.status_code,
                    "endpoint": endpoint,
                },
            )

        set_request_context()
        return response
