"""
Per-client rate limiting for the gateway's auxiliary endpoints.

Uses the same limiter instance as the Gateway, so session initialisation
and stats lookups share one budget with chat calls. ``/api/chat`` is
exempt here because the Gateway checks the limiter itself, after session
validation.
"""

from collections.abc import Iterable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from tutor_gateway.deps import resolve_client_ip
from tutor_gateway.errors import too_many_requests
from tutor_gateway.logging_config import logger

DEFAULT_EXEMPT_PATHS = ("/api/health", "/api/chat")


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        *,
        path_prefix: str = "/api/",
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
    ) -> None:
        super().__init__(app)
        self.path_prefix = path_prefix
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if (
            request.method == "OPTIONS"
            or not path.startswith(self.path_prefix)
            or path in self.exempt_paths
        ):
            return await call_next(request)

        state = request.app.state
        client_ip = resolve_client_ip(
            request, trust_forwarded_headers=state.settings.trust_forwarded_headers
        )
        limiter = state.gateway.rate_limiter
        decision = await limiter.check(client_ip)

        if not decision.allowed:
            retry_after = decision.retry_after_seconds or 1
            logger.warning(
                "rate_limit: rejected %s %s from %s (retry_after=%ss)",
                request.method,
                path,
                client_ip,
                retry_after,
            )
            return too_many_requests(retry_after)

        response: Response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limiter.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
