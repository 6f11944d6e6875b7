"""Request admission middleware wrapping the rate gate."""

from __future__ import annotations

import logging
import math
from typing import Callable

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from ..config import Settings
from .rate_gate import RateGate, RateLimitDecision, StoreUnavailableError, ThrottledError

logger = logging.getLogger(__name__)

THROTTLED_MESSAGE = "Too many requests, please try again later"

IdentityResolver = Callable[[Request], str]


def identity_resolver(settings: Settings) -> IdentityResolver:
    """Return the function mapping a request to its rate limit bucket.

    The ``global`` strategy buckets every caller under one constant identity,
    so the configured limit applies to the service as a whole.
    """
    strategy = settings.rate_limit_key_strategy
    if strategy == "client":

        def by_client(request: Request) -> str:
            host = request.client.host if request.client else "unknown"
            return f"client:{host}"

        return by_client

    if strategy != "global":
        raise ValueError(f"unknown rate limit key strategy: {strategy!r}")

    identity = settings.rate_limit_identity

    def constant(_: Request) -> str:
        return identity

    return constant


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(max(1, math.ceil(decision.reset_after)))
    return headers


async def handle_store_unavailable(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error(
        "rate limit store unavailable for %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"message": "Service temporarily unavailable"},
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Admit or reject each request before it reaches routing.

    A failing counter store is answered with 503 here, inside the CORS
    layer; the request is never admitted and never reported as throttled.
    """

    def __init__(self, app: ASGIApp, identity_for: IdentityResolver) -> None:
        super().__init__(app)
        self._identity_for = identity_for

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        gate: RateGate = request.app.state.rate_gate
        try:
            decision = await gate.admit(self._identity_for(request))
        except ThrottledError as exc:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"message": THROTTLED_MESSAGE},
                headers=rate_limit_headers(exc.decision),
            )
        except StoreUnavailableError as exc:
            return await handle_store_unavailable(request, exc)

        response = await call_next(request)
        for name, value in rate_limit_headers(decision).items():
            response.headers[name] = value
        return response
