import asyncio
import contextlib
import uuid
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.chat_routes import router as chat_router
from .api.session_routes import router as session_router
from .api.system_routes import router as system_router
from .errors import invalid_request
from .gateway import Gateway
from .log_sanitizer import sanitize_headers_for_log, sanitize_path_for_log
from .logging_config import logger
from .middleware import RateLimitMiddleware
from .rate_limiter import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from .redis_client import close_redis_client, get_redis_client
from .session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionStore,
    UsageCalendar,
)
from .settings import Settings, settings


async def handle_unexpected_error(request: Request, exc: Exception):
    """
    Global handler: structured 500 body plus a logged traceback tagged with
    an error id the client can report.
    """
    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        sanitize_path_for_log(request.url.path),
        error_id,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Service error",
            "message": "Please try again later",
            "error_id": error_id,
        },
    )


async def handle_validation_error(request: Request, exc: RequestValidationError):
    logger.info(
        "Invalid request body %s %s: %d error(s)",
        request.method,
        sanitize_path_for_log(request.url.path),
        len(exc.errors()),
    )
    return invalid_request()


def build_state_backends(cfg: Settings) -> tuple[SessionStore, RateLimiter]:
    """Create the session store and rate limiter selected by STATE_BACKEND."""
    calendar = UsageCalendar(cfg.usage_day_timezone)
    backend = cfg.state_backend.strip().lower()
    if backend == "redis":
        redis = get_redis_client(cfg.redis_url)
        return (
            RedisSessionStore(
                redis,
                duration_seconds=cfg.session_duration_seconds,
                daily_limit=cfg.daily_usage_limit,
                calendar=calendar,
            ),
            RedisRateLimiter(
                redis,
                max_requests=cfg.rate_limit_max_requests,
                window_seconds=cfg.rate_limit_window_seconds,
            ),
        )
    if backend != "memory":
        raise ValueError(f"Unsupported STATE_BACKEND: {cfg.state_backend!r}")
    return (
        InMemorySessionStore(
            duration_seconds=cfg.session_duration_seconds,
            daily_limit=cfg.daily_usage_limit,
            calendar=calendar,
        ),
        InMemoryRateLimiter(
            max_requests=cfg.rate_limit_max_requests,
            window_seconds=cfg.rate_limit_window_seconds,
        ),
    )


async def sweep_expired_state(gateway: Gateway) -> tuple[int, int]:
    sessions = await gateway.session_store.sweep()
    buckets = await gateway.rate_limiter.cleanup()
    if sessions or buckets:
        logger.debug(
            "sweep: removed %d expired sessions and %d rate limit buckets",
            sessions,
            buckets,
        )
    return sessions, buckets


async def _sweep_loop(gateway: Gateway, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep_expired_state(gateway)
        except Exception:
            logger.exception("sweep: periodic cleanup failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    - startup: start the periodic sweep of expired sessions and buckets
    - shutdown: stop it and release the HTTP and Redis clients we own
    """
    cfg: Settings = app.state.settings
    gateway: Gateway = app.state.gateway

    sweep_task: asyncio.Task | None = None
    if cfg.session_sweep_interval_seconds > 0:
        sweep_task = asyncio.create_task(
            _sweep_loop(gateway, cfg.session_sweep_interval_seconds)
        )

    logger.info(
        "Gateway started (environment=%s, version=%s, state_backend=%s)",
        cfg.environment,
        cfg.app_version,
        cfg.state_backend,
    )
    yield

    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    if app.state.owns_http_client:
        await gateway.http_client.aclose()
    if cfg.state_backend.strip().lower() == "redis":
        await close_redis_client()


def create_app(
    cfg: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    session_store: SessionStore | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    cfg = cfg or settings

    if session_store is None or rate_limiter is None:
        default_store, default_limiter = build_state_backends(cfg)
        session_store = session_store or default_store
        rate_limiter = rate_limiter or default_limiter

    owns_http_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=cfg.upstream_timeout)

    app = FastAPI(
        title="Tutor Chat Gateway",
        version=cfg.app_version,
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.owns_http_client = owns_http_client
    app.state.gateway = Gateway(
        session_store=session_store,
        rate_limiter=rate_limiter,
        http_client=http_client,
        settings=cfg,
    )

    app.add_exception_handler(Exception, handle_unexpected_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)

    app.add_middleware(RateLimitMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.get_cors_origins(),
        allow_credentials=cfg.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.include_router(system_router)
    app.include_router(session_router)
    app.include_router(chat_router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Request/response logging. Sensitive headers are masked and the
        session token in stats paths is shortened to a prefix.
        """
        client_host = request.client.host if request.client else "-"
        path = sanitize_path_for_log(request.url.path)

        logger.info(
            "HTTP %s %s from %s, headers=%s",
            request.method,
            path,
            client_host,
            sanitize_headers_for_log(request.headers),
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            response = await handle_unexpected_error(request, exc)
        logger.info("HTTP %s %s -> %s", request.method, path, response.status_code)
        return response

    return app


__all__ = ["create_app", "handle_unexpected_error", "sweep_expired_state"]
