"""
Rate limiter service.

Serves a public route plus one guarded route per configured limiter. All
processes running this service against the same Redis share buckets.
"""

import asyncio
from typing import Dict, Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from fastapi import Depends

from shared.base_service import BaseService
from shared.errors import RateLimitError

from service_limiter.app.ratelimit.bucket_store import create_bucket_store
from service_limiter.app.ratelimit.limiter import RateLimiterCore
from service_limiter.app.ratelimit.middleware import RateLimitMiddleware, rate_limit_exception_handler
from service_limiter.app.ratelimit.models import Decision, RateLimiterSettings
from service_limiter.app.ratelimit.routes import load_route_limits


class LimiterService(BaseService):
    """Rate limiter service implementation."""

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        route_limits: Optional[Dict[str, RateLimiterSettings]] = None,
    ):
        super().__init__("limiter", 3000)

        timeout = self.config.remote_timeout_seconds
        if redis_client is None:
            # no client-side retries: a failed call goes straight to fallback
            redis_client = redis.from_url(
                self.config.redis_url,
                decode_responses=True,
                socket_connect_timeout=timeout,
                socket_timeout=timeout,
                retry=Retry(NoBackoff(), 0),
            )
        self.redis = redis_client
        self.store = create_bucket_store(self.redis, self.config.atomic_strategy)

        if route_limits is None:
            route_limits = load_route_limits(self.config.rate_limits_file, timeout)

        self.limiters: Dict[str, RateLimiterCore] = {
            name: RateLimiterCore(self.store, settings, metrics=self.metrics)
            for name, settings in route_limits.items()
        }

        self.app.add_exception_handler(RateLimitError, rate_limit_exception_handler)
        self._setup_limiter_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.limiter_service = self

    async def on_shutdown(self):
        await self.redis.aclose()
        await super().on_shutdown()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Redis being down degrades limiting but does not fail the service."""
        try:
            await asyncio.wait_for(self.redis.ping(), timeout=self.config.remote_timeout_seconds)
            return {"redis": "ok"}
        except Exception as e:
            self.logger.warning("Redis health check failed", error=str(e) or type(e).__name__)
            return {"redis": "degraded"}

    def _setup_limiter_routes(self):
        """Set up limiter routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "limiter",
                "message": "Route Limiter - Rate Limiter Service",
                "routes": sorted(self.limiters)
            }

        @self.app.get("/public")
        async def public():
            """Unlimited route."""
            self.logger.info("User accessed /public")
            return {"success": True, "message": "This route has no limit"}

        @self.app.get("/api/v1/rate-limits")
        async def get_rate_limits():
            """Get configured rate limits."""
            return {
                "atomic_strategy": self.config.atomic_strategy,
                "routes": {name: limiter.describe() for name, limiter in self.limiters.items()}
            }

        for name, limiter in self.limiters.items():
            guard = RateLimitMiddleware(limiter, self.config.trust_forwarded_headers)
            self._add_limited_route(name, guard)

    def _add_limited_route(self, route_name: str, guard: RateLimitMiddleware):
        async def limited_route(decision: Decision = Depends(guard)):
            self.logger.info(f"User accessed /{route_name}", source=decision.source.value)
            return {
                "success": True,
                "message": f"You passed the /{route_name} rate limiter",
                "remaining": decision.remaining
            }

        self.app.add_api_route(f"/{route_name}", limited_route, methods=["GET"], name=route_name)


def create_app():
    """Create FastAPI application."""
    service = LimiterService()
    return service.app


if __name__ == "__main__":
    service = LimiterService()
    service.run()
