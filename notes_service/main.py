"""FastAPI application wiring for the notes service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.routes import router as notes_router
from .config import Settings, get_settings
from .domain.service import NoteService
from .repository import NoteRepository
from .security.middleware import (
    RateLimitMiddleware,
    handle_store_unavailable,
    identity_resolver,
)
from .security.rate_gate import CounterStore, RateGate, StoreUnavailableError
from .security.rate_limiter import InMemoryCounterStore
from .security.redis_rate_limiter import RedisCounterStore

logger = logging.getLogger(__name__)


def build_redis_client(settings: Settings, **connection_kwargs: Any) -> redis.Redis:
    """Create the asyncio Redis client used as the shared counter store.

    The client sits on a blocking pool: when every connection is busy,
    callers wait up to ``redis_timeout_seconds`` for one instead of failing.
    """
    if not settings.redis_url:
        raise RuntimeError("REDIS_URL must be set when RATE_LIMIT_BACKEND=redis")
    pool = redis.BlockingConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        timeout=settings.redis_timeout_seconds,
        password=settings.redis_token or None,
        socket_timeout=settings.redis_timeout_seconds,
        socket_connect_timeout=settings.redis_timeout_seconds,
        **connection_kwargs,
    )
    return redis.Redis.from_pool(pool)


def build_rate_gate(settings: Settings, client: redis.Redis | None = None) -> RateGate:
    """Instantiate the rate gate over the configured counter store backend."""
    store: CounterStore
    if settings.rate_limit_backend == "redis":
        if client is None:
            raise RuntimeError("redis rate limit backend requires a redis client")
        store = RedisCounterStore(client, key_prefix=settings.rate_limit_key_prefix)
        logger.info("rate limiter configured for redis backend")
    elif settings.rate_limit_backend == "memory":
        logger.warning("rate limiter using in-memory backend; limits are per process")
        store = InMemoryCounterStore()
    else:
        raise ValueError(f"unknown rate limit backend: {settings.rate_limit_backend!r}")
    return RateGate(
        store,
        limit=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Redis client, Postgres pool, services) for the app lifecycle."""
    settings: Settings = app.state.settings
    redis_client: redis.Redis | None = None
    pool: ConnectionPool | None = None
    try:
        if settings.rate_limit_backend == "redis":
            redis_client = build_redis_client(settings)
        app.state.rate_gate = build_rate_gate(settings, redis_client)

        pool = ConnectionPool(settings.database_url, open=False)
        pool.open()
        repository = NoteRepository(pool)
        repository.ensure_schema()
        app.state.note_service = NoteService(repository)
        yield
    finally:
        if pool is not None:
            pool.close()
        if redis_client is not None:
            await redis_client.aclose()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for errors escaping middleware and routes."""
    if isinstance(exc, StoreUnavailableError):
        return await handle_store_unavailable(request, exc)
    logger.error("unhandled error for %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal server error"},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application; resources are attached by ``lifespan``."""
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.state.settings = settings

    # Added before CORS so throttled and 503 responses still carry CORS headers
    app.add_middleware(RateLimitMiddleware, identity_for=identity_resolver(settings))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=settings.is_production,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(StoreUnavailableError, handle_store_unavailable)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.get("/", tags=["meta"])
    def index() -> dict[str, object]:
        return {
            "message": "Notes API",
            "endpoints": {"health": "/health", "notes": "/api/notes"},
            "timestamp": _now_iso(),
        }

    @app.get("/health", tags=["health"])
    def health() -> dict[str, str]:
        """Return a minimal readiness indicator used by orchestration systems."""
        return {"status": "OK", "timestamp": _now_iso()}

    @app.get("/metrics", tags=["meta"])
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(notes_router)
    return app


app = create_app()


def run() -> None:
    """Console entry point serving the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "notes_service.main:app",
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )
