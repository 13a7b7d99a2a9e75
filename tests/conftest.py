from __future__ import annotations

import os
import socket
from typing import Any

import fakeredis
import pytest
import redis
from redis.client import Pipeline
from fastapi.testclient import TestClient

os.environ.setdefault("LOG_LEVEL", "DEBUG")

from app import create_app  # noqa: E402
from backend import RedisBackend  # noqa: E402


class NetworkBlockedError(RuntimeError):
    pass


def _blocked(*_args: Any, **_kwargs: Any) -> Any:
    raise NetworkBlockedError("Network access is disabled during tests. Set ALLOW_NETWORK=1 to enable it.")


@pytest.fixture(autouse=True)
def _disable_network(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent accidental outbound network calls (e.g. a real Redis) in unit tests."""
    if os.getenv("ALLOW_NETWORK") == "1":
        return
    monkeypatch.setattr(socket, "create_connection", _blocked)
    monkeypatch.setattr(socket, "getaddrinfo", _blocked)


class RedisFaults:
    """Makes chosen redis commands raise redis.ConnectionError.

    A command fails both when called directly on the client and when queued in
    a MULTI/EXEC pipeline; ``fail("execute")`` makes every transaction fail at EXEC.
    """

    def __init__(self, client: fakeredis.FakeRedis) -> None:
        self._client = client
        self._patch = pytest.MonkeyPatch()

    def fail(self, command: str) -> None:
        def _raise(*_args: Any, **_kwargs: Any) -> Any:
            raise redis.ConnectionError(f"simulated failure of {command.upper()}")

        if command != "execute":
            self._patch.setattr(self._client, command, _raise)
        self._patch.setattr(Pipeline, command, _raise)

    def clear(self) -> None:
        self._patch.undo()


@pytest.fixture
def fake_redis() -> fakeredis.FakeRedis:
    # A private server per test; FakeRedis instances otherwise share one by host and port.
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def redis_faults(fake_redis: fakeredis.FakeRedis):
    faults = RedisFaults(fake_redis)
    yield faults
    faults.clear()


@pytest.fixture
def store(fake_redis: fakeredis.FakeRedis) -> RedisBackend:
    return RedisBackend(fake_redis)


@pytest.fixture
def app(store: RedisBackend):
    return create_app(store=store)


@pytest.fixture
def client(app):
    # Entering the client keeps one event loop for every WebSocket session in the test.
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def registry(app):
    return app.state.relay.registry


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
