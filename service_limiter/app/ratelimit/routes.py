"""
Route table loading.

A rate limits file looks like::

    routes:
      limited:
        max_tokens: 5
        refill_window_seconds: 30
        fail_mode: closed
      search:
        max_tokens: 100
        refill_window_seconds: 60
"""

from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from shared.errors import ConfigurationError

from .models import RateLimiterSettings

DEFAULT_ROUTE_LIMITS: Dict[str, Dict[str, Any]] = {
    "limited": {"max_tokens": 5, "refill_window_seconds": 30, "fail_mode": "closed"},
    "limited_1": {"max_tokens": 2, "refill_window_seconds": 30, "fail_mode": "closed"},
}


def load_route_limits(
    path: Optional[str] = None,
    remote_timeout_seconds: float = 0.25,
) -> Dict[str, RateLimiterSettings]:
    """Load per-route limiter settings, falling back to the built-in table."""
    if path is None:
        routes: Any = DEFAULT_ROUTE_LIMITS
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read rate limits file: {e}", details={"path": path}) from e

        routes = document.get("routes") if isinstance(document, dict) else None
        if not isinstance(routes, Mapping) or not routes:
            raise ConfigurationError(
                "Rate limits file must define a non-empty 'routes' mapping",
                details={"path": path}
            )

    return build_route_limits(routes, remote_timeout_seconds)


def build_route_limits(
    routes: Mapping[str, Any],
    remote_timeout_seconds: float = 0.25,
) -> Dict[str, RateLimiterSettings]:
    limits: Dict[str, RateLimiterSettings] = {}
    for name, fields in routes.items():
        if fields is None:
            fields = {}
        if not isinstance(fields, Mapping):
            raise ConfigurationError(f"Route '{name}' must be a mapping", details={"route": name})

        try:
            limits[str(name)] = RateLimiterSettings(**{
                "remote_timeout_seconds": remote_timeout_seconds,
                **fields,
                "route_name": str(name),
            })
        except ValidationError as e:
            errors = {".".join(str(part) for part in err["loc"]): err["msg"] for err in e.errors()}
            raise ConfigurationError(f"Invalid limits for route '{name}'", details=errors) from e

    return limits
