"""Global pytest fixtures for the session lifecycle service."""

from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

import fakeredis
import pytest
from flask import Flask

from authsessions import create_app
from authsessions.core.config import TestingConfig
from authsessions.core.extensions import SessionBackend, build_redis_backend
from authsessions.infra.memory.fallback_store import FallbackStore
from authsessions.infra.redis.connection import ConnectionManager
from authsessions.infra.redis.redis_refresh_token_store import RedisRefreshTokenStore
from authsessions.infra.redis.redis_session_registry import RedisSessionRegistry

REFRESH_TTL = 604800


class StepClock:
    """Clock advancing by ``step`` on every read, so creation order is strict."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2024, 1, 1, tzinfo=UTC)
        self.step = step

    def __call__(self) -> datetime:
        self.now += self.step
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ------------------------------ Redis ------------------------------------- #


@pytest.fixture()
def fake_server() -> fakeredis.FakeServer:
    """Fresh in-memory Redis server; set ``connected = False`` to simulate a drop."""
    return fakeredis.FakeServer()


@pytest.fixture()
def fake_redis(fake_server: fakeredis.FakeServer) -> fakeredis.FakeRedis:
    """Direct client on the fake server, for arranging and asserting raw keys."""
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture()
def connection(fake_server: fakeredis.FakeServer) -> Generator[ConnectionManager, None, None]:
    """Connected manager over the fake server, with backoff sleeps disabled."""

    def factory(timeout: float) -> fakeredis.FakeRedis:
        return fakeredis.FakeRedis(server=fake_server, decode_responses=True)

    conn = ConnectionManager(factory, sleep=lambda _: None)
    assert conn.connect()
    yield conn
    conn.close()


@pytest.fixture()
def redis_store(connection: ConnectionManager) -> RedisRefreshTokenStore:
    return RedisRefreshTokenStore(conn=connection)


@pytest.fixture()
def redis_registry(
    connection: ConnectionManager, redis_store: RedisRefreshTokenStore
) -> RedisSessionRegistry:
    return RedisSessionRegistry(conn=connection, tokens=redis_store, ttl_seconds=REFRESH_TTL)


# ------------------------------ Memory ------------------------------------ #


@pytest.fixture()
def clock() -> StepClock:
    return StepClock()


@pytest.fixture()
def fallback(clock: StepClock) -> FallbackStore:
    return FallbackStore(clock=clock, session_ttl=REFRESH_TTL)


# ------------------------------ Flask ------------------------------------- #


@pytest.fixture()
def app() -> Generator[Flask, None, None]:
    """Application on the process-local backend (``TestingConfig``)."""

    application = create_app(TestingConfig, instance_relative_config=False)
    with application.app_context():
        yield application


@pytest.fixture()
def redis_backend(connection: ConnectionManager) -> SessionBackend:
    return build_redis_backend(connection, ttl_seconds=REFRESH_TTL, key_prefix="test:")


@pytest.fixture()
def redis_app(redis_backend: SessionBackend) -> Generator[Flask, None, None]:
    """Application wired to the fakeredis-backed backend."""

    application = create_app(
        TestingConfig, session_backend=redis_backend, instance_relative_config=False
    )
    with application.app_context():
        yield application


@pytest.fixture()
def client(app: Flask) -> Any:
    """Return a Flask test client."""

    return app.test_client()


@pytest.fixture()
def redis_client(redis_app: Flask) -> Any:
    return redis_app.test_client()


@pytest.fixture()
def freeze_time() -> Callable[[str | None], Any]:
    """Factory returning :func:`freezegun.freeze_time`.

    Examples
    --------
    >>> def test_with_frozen_time(freeze_time):
    ...     with freeze_time("2024-01-01"):
    ...         ...
    """

    from freezegun import freeze_time as _freeze_time

    def _factory(target: str | None = None) -> Any:
        return _freeze_time(target or "2024-01-01")

    return _factory
