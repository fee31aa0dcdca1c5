"""
FastAPI exception handlers and middleware.

Converts all AppError subclasses, request-validation failures and
unexpected exceptions into the ``{"success": false, "error": {...}}``
envelope. Injects correlation IDs into every request.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from starlette.middleware.base import BaseHTTPMiddleware

from hmsnova.core.errors import AppError, ErrorCode

_log = structlog.get_logger(__name__)

HTTP_REQUESTS = Counter(
    "hmsnova_http_requests_total", "HTTP requests served", ["method", "status_code"]
)
APP_ERRORS = Counter("hmsnova_app_errors_total", "AppError responses by error code", ["code"])


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Injects a correlation ID into every request/response cycle.

    The ID is taken from the ``X-Correlation-ID`` request header if
    present; otherwise a new UUID4 is generated. The ID is bound to
    structlog context so that all log statements within the request
    automatically include it.
    """

    HEADER = "X-Correlation-ID"

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = request.headers.get(self.HEADER, "")[:36] or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
        )
        request.state.correlation_id = correlation_id

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)

        response.headers[self.HEADER] = correlation_id
        HTTP_REQUESTS.labels(request.method, str(response.status_code)).inc()
        _log.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security-relevant HTTP response headers to every response."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        response.headers.setdefault("Cache-Control", "no-store")
        return response


# ── Exception handlers ────────────────────────────────────────────────── #


def _correlation_header(request: Request) -> dict[str, str]:
    return {"X-Correlation-ID": getattr(request.state, "correlation_id", "")}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Convert a domain AppError to a structured JSON response."""
    APP_ERRORS.labels(exc.code.value).inc()
    log = _log.error if exc.http_status >= 500 else _log.warning
    log(
        "application_error",
        error_code=exc.code.value,
        message=exc.message,
        http_status=exc.http_status,
    )
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
        headers=_correlation_header(request),
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render schema violations with field-level detail for form re-display."""
    fields = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "invalid"),
        }
        for err in exc.errors()
    ]
    _log.info("request_validation_failed", fields=[f["field"] for f in fields])
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder(
            {
                "success": False,
                "error": {
                    "code": ErrorCode.VALIDATION_ERROR.value,
                    "message": "Invalid input",
                    "detail": {"fields": fields},
                },
            }
        ),
        headers=_correlation_header(request),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all handler for unexpected exceptions.

    Never leaks internal detail to the client.
    """
    _log.exception("unhandled_exception", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected internal error occurred.",
                "detail": {},
            },
        },
        headers=_correlation_header(request),
    )
