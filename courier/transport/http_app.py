# courier/transport/http_app.py
"""
HTTP surface for the dispatch queue.

Endpoints:
- POST /messages   enqueue a message (waits for the outcome unless ?wait=false)
- GET  /outcomes   in-memory outcome log
- GET  /health     breaker state + queue size
- GET  /metrics    in-process counters and histograms
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse

from courier.config import DispatchConfig, Settings, settings as default_settings, warn_on_risky_config
from courier.core.dispatch.domain import Message
from courier.core.dispatch.engine import DispatchEngine
from courier.core.dispatch.queue import DispatchQueue
from courier.infra.logging_config import setup_logging, get_logger
from courier.infra.metrics import get_metrics_collector
from courier.infra.providers import build_providers
from courier.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
    request_id_of,
)
from courier.transport.schemas import MessageIn, OutcomeOut, QueuedOut

logger = get_logger(__name__)

EngineFactory = Callable[[Settings], DispatchEngine]


def build_engine(s: Settings) -> DispatchEngine:
    """Default engine: simulated providers, constants from settings."""
    primary, fallback = build_providers(s)
    return DispatchEngine(
        primary,
        fallback,
        config=DispatchConfig.from_settings(s),
        outcome_log_limit=s.outcome_log_limit,
    )


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_queue(request: Request) -> DispatchQueue:
    """Get dispatch queue from app state"""
    return request.app.state.queue


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# ============================================================================
# CREATE APP
# ============================================================================

def create_app(
    app_settings: Settings | None = None,
    *,
    engine_factory: EngineFactory = build_engine,
) -> FastAPI:
    s = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        logger.info(f"Starting courier: env={s.app_env}")
        for msg in warn_on_risky_config(s):
            logger.warning(f"[config] {msg}")

        engine = engine_factory(s)
        fastapi_app.state.settings = s
        fastapi_app.state.queue = DispatchQueue(engine)
        logger.info(
            f"Dispatch engine ready: max_retries={engine.config.max_retries}, "
            f"rate_limit={engine.config.rate_limit_ms}ms, "
            f"breaker={engine.config.failure_threshold}/{engine.config.reset_timeout_ms}ms"
        )

        yield

        await fastapi_app.state.queue.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Courier",
        description="Resilient message dispatch with retry, fallback and circuit breaking",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if s.is_production else "/docs",
        redoc_url=None if s.is_production else "/redoc",
        openapi_url=None if s.is_production else "/openapi.json",
    )

    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=s.enable_request_logging)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with appropriate logging"""
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @app.post("/messages", response_model=OutcomeOut, responses={202: {"model": QueuedOut}})
    async def send_message(
        payload: MessageIn,
        request: Request,
        wait: bool = True,
        queue: DispatchQueue = Depends(get_queue),
        app_settings: Settings = Depends(get_settings),
    ):
        """
        Enqueue a message.

        With ``wait=true`` (default) the response is the dispatch outcome;
        otherwise 202 with the message id is returned immediately. The
        request id is stored in the message metadata for log correlation.
        """
        metadata = dict(payload.metadata)
        request_id = request_id_of(request)
        if request_id is not None:
            metadata["request_id"] = request_id

        message = Message(
            destination=payload.destination,
            subject=payload.subject,
            body=payload.body,
            metadata=metadata,
        )
        future = queue.enqueue(message)

        if not wait:
            return JSONResponse(
                status_code=202,
                content=QueuedOut(message_id=message.id, queue_size=queue.queue_size).model_dump(),
            )

        try:
            outcome = await asyncio.wait_for(
                asyncio.shield(future), timeout=app_settings.http_wait_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise HTTPException(
                status_code=504,
                detail=f"Dispatch still in progress for message {message.id}",
            )
        return outcome.to_dict()

    @app.get("/outcomes")
    async def list_outcomes(
        limit: int = 100,
        queue: DispatchQueue = Depends(get_queue),
    ):
        """Most recent outcomes, oldest first."""
        outcomes = queue.engine.outcomes
        if limit > 0:
            outcomes = outcomes[-limit:]
        return {
            "count": len(outcomes),
            "outcomes": [o.to_dict() for o in outcomes],
        }

    @app.get("/health")
    async def health(queue: DispatchQueue = Depends(get_queue)):
        """Degraded while the circuit breaker is open."""
        breaker = queue.engine.circuit_breaker.snapshot()
        return {
            "status": "healthy" if breaker["state"] == "closed" else "degraded",
            "circuit_breaker": breaker,
            "queue_size": queue.queue_size,
            "processing": queue.is_processing,
        }

    @app.get("/metrics")
    def metrics():
        """Operational metrics snapshot."""
        return get_metrics_collector().get_metrics()

    return app


setup_logging(
    level=default_settings.log_level,
    use_json=default_settings.use_json_logs,
)

app = create_app()
