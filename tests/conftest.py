"""
Pytest configuration and fixtures
"""

import asyncio
from collections.abc import AsyncGenerator, Callable, Generator
from pathlib import Path

import fakeredis
import pytest
import redis
from fastapi.testclient import TestClient

from classpulse.config import Settings
from classpulse.ledger import VoteLedger
from classpulse.store import RedisStore


@pytest.fixture(scope="function")
def redis_server() -> fakeredis.FakeServer:
    """
    Fixture that provides an in-process Redis server.
    Every client created against it shares the same data.
    """
    return fakeredis.FakeServer()


@pytest.fixture(scope="function")
def redis_client(redis_server: fakeredis.FakeServer) -> Generator[redis.Redis, None, None]:
    """
    Fixture that provides a synchronous Redis client for inspecting stored data.
    """
    client = fakeredis.FakeRedis(server=redis_server, decode_responses=True)

    yield client

    client.flushall()
    client.close()


@pytest.fixture(scope="function")
def store(redis_server: fakeredis.FakeServer) -> RedisStore:
    """
    Fixture that provides an async record store on the test server.
    """
    return RedisStore(fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True))


@pytest.fixture(scope="function")
def ledger(store: RedisStore) -> VoteLedger:
    """
    Fixture that provides a vote ledger on the test store.
    """
    return VoteLedger(store)


@pytest.fixture(scope="function")
def test_settings(tmp_path: Path) -> Settings:
    """
    Fixture that provides test settings with fast timers.
    """
    return Settings(
        redis_url="redis://localhost:6379/1",
        secret_key="test-secret-key-for-signing",
        poll_interval=0.02,
        celebration_notification_ttl=0.05,
        celebration_archive_delay=0.08,
    )


@pytest.fixture(scope="function")
def client(
    test_settings: Settings, redis_server: fakeredis.FakeServer
) -> Generator[TestClient, None, None]:
    """
    Fixture that provides a FastAPI test client with test settings and
    a fake Redis behind the store dependency.
    """
    # Override the global settings with test settings
    import classpulse.config
    from classpulse import deps
    from classpulse.main import app as fastapi_app

    async def override_store() -> AsyncGenerator[RedisStore, None]:
        conn = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
        try:
            yield RedisStore(conn)
        finally:
            await conn.aclose()

    original_settings = classpulse.config.settings
    classpulse.config.settings = test_settings
    fastapi_app.dependency_overrides[deps.get_store] = override_store
    deps.vote_states.clear()

    # Create test client
    test_client = TestClient(fastapi_app)

    yield test_client

    # Restore original settings
    fastapi_app.dependency_overrides.clear()
    deps.vote_states.clear()
    classpulse.config.settings = original_settings


@pytest.fixture(scope="function")
def wait_until() -> Callable:
    """
    Fixture that provides an async helper polling a condition until it holds.
    """

    async def _wait_until(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait_until
