"""
FastAPI glue for the rate limiter.
"""

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.errors import RateLimitError
from shared.logging import set_client_context

from .limiter import RateLimiterCore
from .models import Decision

TOO_MANY_REQUESTS_MESSAGE = "Too many requests. Please try again later."


class RateLimitMiddleware:
    """
    Route dependency enforcing one ``RateLimiterCore``.

    Usage::

        guard = RateLimitMiddleware(limiter)

        @app.get("/limited")
        async def limited(decision: Decision = Depends(guard)):
            ...
    """

    def __init__(self, limiter: RateLimiterCore, trust_forwarded_headers: bool = True):
        self.limiter = limiter
        self.trust_forwarded_headers = trust_forwarded_headers

    async def __call__(self, request: Request, response: Response) -> Decision:
        client_id = self._get_client_id(request)
        set_client_context(client_id)

        decision = await self.limiter.check(client_id)
        if not decision.allowed:
            raise RateLimitError(
                TOO_MANY_REQUESTS_MESSAGE,
                details={
                    "limiter": decision.source.value,
                    "route": self.limiter.route_name,
                    "limit": self.limiter.max_tokens,
                }
            )

        self._set_rate_limit_headers(response, decision)
        return decision

    def _set_rate_limit_headers(self, response: Response, decision: Decision) -> None:
        """Propagate rate limiting metadata via standard headers."""
        response.headers["X-RateLimit-Limit"] = str(self.limiter.max_tokens)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        response.headers["X-RateLimit-Source"] = decision.source.value

    def _get_client_id(self, request: Request) -> str:
        """Extract the caller address, honouring proxy headers when trusted."""
        if self.trust_forwarded_headers:
            forwarded_for = request.headers.get("X-Forwarded-For")
            if forwarded_for:
                return forwarded_for.split(",")[0].strip()

            real_ip = request.headers.get("X-Real-IP")
            if real_ip:
                return real_ip.strip()

        return request.client.host if request.client else "unknown"


async def rate_limit_exception_handler(request: Request, exc: RateLimitError) -> JSONResponse:
    """Render a denial as 429 with the limiter source for diagnostics."""
    limiter = exc.details.get("limiter")
    headers = {"X-RateLimit-Remaining": "0"}
    if exc.details.get("limit") is not None:
        headers["X-RateLimit-Limit"] = str(exc.details["limit"])
    if limiter:
        headers["X-RateLimit-Source"] = limiter

    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "message": exc.message,
            "limiter": limiter,
        },
        headers=headers
    )
