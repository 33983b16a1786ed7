"""
Shared configuration management for the Route Limiter services.
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="LIMITER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Shared bucket store
    redis_url: str = "redis://localhost:6379/0"
    remote_timeout_ms: int = Field(default=250, gt=0)
    atomic_strategy: Literal["script", "watch"] = "script"

    # Rate limiting
    rate_limits_file: Optional[str] = None
    trust_forwarded_headers: bool = True

    @property
    def remote_timeout_seconds(self) -> float:
        return self.remote_timeout_ms / 1000.0


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
