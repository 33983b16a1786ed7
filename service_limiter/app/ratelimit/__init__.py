"""
Rate limiting package for the limiter service.

Holds the token-bucket decision engine, the Redis-backed atomic bucket
stores, the per-process fallback bucket and the FastAPI dependency that
enforces per-identity request budgets.
"""

from .models import Decision, DecisionSource, FailMode, RateLimiterSettings
from .limiter import RateLimiterCore
from .middleware import RateLimitMiddleware

__all__ = [
    "Decision",
    "DecisionSource",
    "FailMode",
    "RateLimiterSettings",
    "RateLimiterCore",
    "RateLimitMiddleware",
]
