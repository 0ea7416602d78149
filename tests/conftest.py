"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It ensures that the TESTING environment variable is set to prevent
loading the .env file during tests.
"""

import asyncio
import os

# CRITICAL: Set this before any imports that might load settings
# This prevents the .env.{APP_ENV} file from being loaded in tests
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError


class UnreachableRedis:
    """Stand-in for a Redis server that cannot be reached.

    Every call fails with a connection error, after ``delay_seconds`` when set
    so that slow-store timeouts can be exercised too.
    """

    def __init__(self, delay_seconds: float = 0.0) -> None:
        self.delay_seconds = delay_seconds
        self.closed = False
        self.calls = 0

    async def _fail(self):
        self.calls += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        raise RedisConnectionError("Connection refused")

    def register_script(self, script: str):
        async def _script(keys=None, args=None, client=None):
            return await self._fail()

        return _script

    async def delete(self, *keys: str) -> int:
        return await self._fail()

    async def ping(self) -> bool:
        return await self._fail()

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def redis_store() -> fakeredis.FakeAsyncRedis:
    """Lua-capable in-process Redis, isolated per test."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def unreachable_redis() -> UnreachableRedis:
    return UnreachableRedis()


@pytest.fixture
def slow_redis() -> UnreachableRedis:
    """Store that only fails after a full second, past any test timeout."""
    return UnreachableRedis(delay_seconds=1.0)
