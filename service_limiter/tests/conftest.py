"""
Shared fixtures for limiter tests.
"""

import pytest
import fakeredis
from fakeredis import aioredis as fake_aioredis


@pytest.fixture
def fake_redis():
    """In-process Redis with Lua support, isolated per test."""
    return fake_aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
