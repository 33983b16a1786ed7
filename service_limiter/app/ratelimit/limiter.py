"""
Token bucket rate limiter shared across processes through Redis.
"""

import asyncio
import time
from contextlib import nullcontext
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from shared.errors import ConfigurationError, RemoteUnavailable
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .bucket_store import BucketStore, bucket_keys
from .fallback import LocalFallbackBucket
from .models import Decision, DecisionSource, RateLimiterSettings
from .policy import FailurePolicy


class RateLimiterCore:
    """
    Per-route rate limiter.

    Each ``check`` runs one atomic refill/consume step against the shared
    bucket store. When the store fails or times out the request is judged by
    this instance's local fallback buckets instead, and once those are empty
    the fail mode decides. ``check`` never raises.
    """

    def __init__(
        self,
        store: BucketStore,
        settings: Optional[RateLimiterSettings] = None,
        *,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
        **overrides: Any,
    ):
        self.settings = self._build_settings(settings, overrides)
        self.store = store
        self.metrics = metrics
        self._clock = clock
        self.fallback = LocalFallbackBucket(
            self.settings.max_tokens,
            self.settings.refill_window_seconds
        )
        self.policy = FailurePolicy(self.settings.fail_mode)
        self.logger = get_logger(f"limiter.{self.settings.route_name}")

    @staticmethod
    def _build_settings(settings: Optional[RateLimiterSettings], overrides: Dict[str, Any]) -> RateLimiterSettings:
        fields = settings.model_dump() if settings is not None else {}
        fields.update(overrides)
        try:
            return RateLimiterSettings(**fields)
        except ValidationError as e:
            errors = {".".join(str(part) for part in err["loc"]): err["msg"] for err in e.errors()}
            raise ConfigurationError("Invalid rate limiter configuration", details=errors) from e

    @property
    def route_name(self) -> str:
        return self.settings.route_name

    @property
    def max_tokens(self) -> int:
        return self.settings.max_tokens

    async def check(self, identity: str) -> Decision:
        """Consume one token for ``identity`` on this route."""
        now = int(self._clock())
        token_key, last_refill_key = bucket_keys(self.route_name, identity)

        try:
            with self._timed("remote_evaluation_duration_seconds"):
                allowed, remaining = await asyncio.wait_for(
                    self.store.evaluate(
                        token_key,
                        last_refill_key,
                        self.settings.max_tokens,
                        self.settings.refill_window_seconds,
                        now,
                    ),
                    timeout=self.settings.remote_timeout_seconds
                )
        except (RemoteUnavailable, asyncio.TimeoutError) as e:
            self.logger.warning(
                "Remote bucket store unavailable, using local fallback",
                route=self.route_name,
                error=str(e) or type(e).__name__
            )
            decision = self._check_fallback(identity, now)
        except Exception as e:
            self.logger.error(
                "Unexpected bucket store error, using local fallback",
                route=self.route_name,
                error=str(e),
                exc_info=True
            )
            decision = self._check_fallback(identity, now)
        else:
            decision = Decision(allowed=allowed, remaining=remaining, source=DecisionSource.REMOTE)

        if not decision.allowed:
            self.logger.debug(
                "Rate limit exceeded",
                route=self.route_name,
                identity=identity,
                source=decision.source.value
            )
        self._record(decision)
        return decision

    def _check_fallback(self, identity: str, now: int) -> Decision:
        if self.metrics:
            self.metrics.increment_counter("remote_store_failures_total", route=self.route_name)

        remaining = self.fallback.consume(identity, now)
        if remaining is not None:
            return Decision(allowed=True, remaining=remaining, source=DecisionSource.LOCAL)
        return self.policy.decide()

    def _timed(self, metric_name: str):
        if self.metrics is None:
            return nullcontext()
        return self.metrics.time_operation(metric_name, route=self.route_name)

    def _record(self, decision: Decision) -> None:
        if self.metrics:
            self.metrics.increment_counter(
                "rate_limit_decisions_total",
                route=self.route_name,
                source=decision.source.value,
                allowed=str(decision.allowed).lower()
            )

    def describe(self) -> Dict[str, Any]:
        """Configured limits, for status endpoints."""
        return {
            "route": self.route_name,
            "max_tokens": self.settings.max_tokens,
            "refill_window_seconds": self.settings.refill_window_seconds,
            "fail_mode": self.settings.fail_mode.value,
            "remote_timeout_seconds": self.settings.remote_timeout_seconds,
            "fallback_buckets": len(self.fallback),
        }
