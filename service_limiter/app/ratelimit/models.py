"""
Data models for the rate limiter.
"""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FailMode(str, Enum):
    """What to do once the fallback bucket is empty during an outage."""
    OPEN = "open"
    CLOSED = "closed"


class DecisionSource(str, Enum):
    """Which path produced a decision."""
    REMOTE = "remote"
    LOCAL = "local"
    LOCAL_OPEN = "local-open"
    LOCAL_CLOSED = "local-closed"


class RateLimiterSettings(BaseModel):
    """Validated per-route limiter configuration."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    max_tokens: int = Field(default=10, gt=0)
    refill_window_seconds: int = Field(default=60, gt=0)
    # ':' separates key segments, so it would let two routes share keys
    route_name: str = Field(default="default", min_length=1, pattern=r"^[^:]+$")
    fail_mode: FailMode = FailMode.OPEN
    remote_timeout_seconds: float = Field(default=0.25, gt=0)


@dataclass(frozen=True)
class Decision:
    """Outcome of a single rate limit check."""
    allowed: bool
    remaining: int
    source: DecisionSource
