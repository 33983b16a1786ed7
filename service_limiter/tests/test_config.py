"""
Unit tests for service configuration.
"""

import pytest
from pydantic import ValidationError

from shared.config import get_config


class TestServiceConfig:
    """Test cases for environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        for name in ["LIMITER_REDIS_URL", "LIMITER_REMOTE_TIMEOUT_MS", "LIMITER_ATOMIC_STRATEGY", "LIMITER_RATE_LIMITS_FILE"]:
            monkeypatch.delenv(name, raising=False)

        config = get_config("limiter", 3000)

        assert config.service_name == "limiter"
        assert config.port == 3000
        assert config.redis_url == "redis://localhost:6379/0"
        assert config.remote_timeout_seconds == 0.25
        assert config.atomic_strategy == "script"
        assert config.rate_limits_file is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LIMITER_REDIS_URL", "redis://cache:6379/2")
        monkeypatch.setenv("LIMITER_REMOTE_TIMEOUT_MS", "100")
        monkeypatch.setenv("LIMITER_ATOMIC_STRATEGY", "watch")
        monkeypatch.setenv("LIMITER_TRUST_FORWARDED_HEADERS", "false")

        config = get_config("limiter", 3000)

        assert config.redis_url == "redis://cache:6379/2"
        assert config.remote_timeout_seconds == pytest.approx(0.1)
        assert config.atomic_strategy == "watch"
        assert config.trust_forwarded_headers is False

    @pytest.mark.parametrize("name,value", [
        ("LIMITER_ATOMIC_STRATEGY", "mutex"),
        ("LIMITER_REMOTE_TIMEOUT_MS", "0"),
    ])
    def test_invalid_environment(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            get_config("limiter", 3000)
