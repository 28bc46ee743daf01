"""
Kindred — FastAPI application entry point.

Startup warms the database pool and connects the Redis client that carries
domain events.  Shutdown waits for in-flight requests before releasing
either.  Every request gets a request id bound into the structlog context.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.config import Settings, get_settings
from app.database import get_engine, get_session_factory


def configure_logging(level: str) -> None:
    """JSON logs filtered at ``level``; called once per process."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger("kindred")


class InFlightTracker:
    """Counts requests in progress so shutdown can let them finish."""

    def __init__(self, drain_timeout: float = 15.0) -> None:
        self.drain_timeout = drain_timeout
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def count(self) -> int:
        return self._count

    def enter(self) -> None:
        self._count += 1
        self._idle.clear()

    def leave(self) -> None:
        self._count -= 1
        if self._count <= 0:
            self._count = 0
            self._idle.set()

    async def drain(self) -> None:
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("drain_timeout_exceeded", remaining_requests=self._count)


in_flight = InFlightTracker()

# Shared Redis client; ``None`` while disconnected.
_redis_client = None


async def connect_redis(settings: Settings) -> None:
    global _redis_client
    import redis.asyncio as aioredis

    client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    _redis_client = client
    logger.info("redis_connected", channel=settings.EVENTS_CHANNEL)


async def close_redis() -> None:
    global _redis_client
    client, _redis_client = _redis_client, None
    if client is not None:
        await client.aclose()
        logger.info("redis_closed")


def get_redis():
    """The shared ``redis.asyncio`` client, or ``None``."""
    return _redis_client


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info("startup_begin", environment=settings.ENVIRONMENT)

    engine = get_engine()
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("database_pool_ready")

    # Events fall back to log-only publication without Redis.
    try:
        await connect_redis(settings)
    except Exception as exc:
        logger.error("redis_connect_failed", error=str(exc))

    logger.info("startup_complete")
    yield

    logger.info("shutdown_begin", in_flight=in_flight.count)
    await in_flight.drain()
    await close_redis()
    await engine.dispose()
    logger.info("shutdown_complete")


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """Answer 504 once a request exceeds ``timeout_seconds``."""

    def __init__(self, app, timeout_seconds: float) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout_seconds=self.timeout_seconds,
            )
            return JSONResponse(status_code=504, content={"detail": "Request timed out"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind a request id, track in-flight requests and log the outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        in_flight.enter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise
        finally:
            in_flight.leave()

        response.headers["X-Request-Id"] = request_id
        logger.info(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response


# ── Health checks ─────────────────────────────────────────────────────────────

async def _check_database() -> str:
    async with get_session_factory()() as session:
        await session.execute(text("SELECT 1"))
    return "connected"


async def _check_redis() -> str:
    client = get_redis()
    if client is None:
        raise RuntimeError("Redis client not initialised")
    await client.ping()
    return "connected"


async def _check_storage() -> str:
    if not get_settings().GCS_BUCKET_NAME:
        return "not_configured"
    from app.utils.storage import get_bucket

    if not await asyncio.to_thread(get_bucket().exists):
        raise RuntimeError("bucket does not exist")
    return "accessible"


_HEALTH_CHECKS = {
    "database": _check_database,
    "redis": _check_redis,
    "gcs": _check_storage,
}


async def health_liveness() -> dict:
    return {"status": "healthy"}


async def health_deep() -> dict:
    """Readiness: database, Redis and GCS checked concurrently."""
    outcomes = await asyncio.gather(
        *(check() for check in _HEALTH_CHECKS.values()),
        return_exceptions=True,
    )
    result: dict = {"status": "healthy"}
    for name, outcome in zip(_HEALTH_CHECKS, outcomes):
        if isinstance(outcome, Exception):
            logger.error("health_check_failed", dependency=name, error=str(outcome))
            result[name] = f"error: {outcome}"
            result["status"] = "degraded"
        else:
            result[name] = outcome
    return result


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    application = FastAPI(
        title="Kindred",
        description="Matching backend: discovery feed, compatibility cache, matches",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )

    # Last added runs first: CORS, then logging, then the timeout.
    application.add_middleware(
        RequestTimeoutMiddleware, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS
    )
    application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_api_route("/health", health_liveness, methods=["GET"], tags=["health"])
    application.add_api_route("/health/deep", health_deep, methods=["GET"], tags=["health"])

    from app.api.router import router as api_router

    application.include_router(api_router, prefix="/api/v1")
    return application


app = create_app()
