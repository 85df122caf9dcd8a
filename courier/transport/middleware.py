# courier/transport/middleware.py
"""
HTTP middleware.

Stack order in ``create_app`` (outermost first): RequestID, RequestLogging,
ErrorHandling. The request id set here is copied into each queued
``Message.metadata`` by ``POST /messages``, so dispatch logs carry the same
``request_id`` as the request that produced them.
"""
import re
import time
import uuid
from typing import Callable, Iterable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from courier.infra.logging_config import get_logger, LogContext
from courier.infra.metrics import HttpMetrics

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Client ids end up in log lines and response headers
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def request_id_of(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Adopt a well-formed ``X-Request-ID`` from the client, otherwise mint one."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        if incoming and _VALID_REQUEST_ID.match(incoming):
            request_id = incoming
        else:
            if incoming:
                logger.warning(f"Discarding malformed {REQUEST_ID_HEADER} header ({len(incoming)} chars)")
            request_id = uuid.uuid4().hex

        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Per-request log line and ``http_requests_total`` / duration metrics.

    Paths in ``quiet_paths`` (probes, scrapes) are still counted but not logged.
    """

    def __init__(
        self,
        app: ASGIApp,
        enabled: bool = True,
        quiet_paths: Iterable[str] = ("/health", "/metrics"),
    ):
        super().__init__(app)
        self.enabled = enabled
        self.quiet_paths = frozenset(quiet_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        duration = time.monotonic() - start

        path = request.url.path
        HttpMetrics.request(request.method, path, response.status_code, duration)

        if self.enabled and path not in self.quiet_paths:
            LogContext(logger, request_id=request_id_of(request)).info(
                f"{request.method} {path} -> {response.status_code} in {duration * 1000:.1f}ms"
            )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn anything unhandled into a 500 JSON body that names the request id."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = request_id_of(request)
            HttpMetrics.unhandled_error(request.url.path)
            LogContext(logger, request_id=request_id).error(
                f"Unhandled {exc.__class__.__name__} on {request.method} {request.url.path}: {exc}",
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "request_id": request_id},
            )
