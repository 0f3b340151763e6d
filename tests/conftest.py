"""
Pytest Configuration and Fixtures for the Auth Service
======================================================

This module provides shared fixtures and fakes for testing the bootstrap
path without a real Vault or PostgreSQL.

Fixtures:
--------
- test_settings: Application settings with test defaults
- sleep_recorder: Async sleep replacement that records requested delays
- fake_vault: Scripted Vault HTTP API served through httpx.MockTransport
- vault_http: httpx.AsyncClient wired to fake_vault
- fake_connection: Mocked asyncpg connection
- fake_connect: The FakeConnect class, for scripting asyncpg.connect
- connection_factory: Factory for additional mocked connections
"""

from typing import Any, Union

import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

LOGIN_PATH = "/v1/auth/approle/login"
CREDS_PREFIX = "/v1/database/creds/"

# A scripted outcome: an exception to raise, or (status, body) to answer with.
# A str body is sent as text, anything else as JSON.
Outcome = Union[Exception, tuple[int, Any]]


class SleepRecorder:
    """Stands in for asyncio.sleep and records every delay requested."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeVault:
    """
    Scripted Vault HTTP API.

    Each endpoint answers from its own queue of outcomes; the last outcome
    repeats once the queue is down to one entry.
    """

    def __init__(self) -> None:
        self.login_outcomes: list[Outcome] = [
            (200, {"auth": {"client_token": "t1", "lease_duration": 3600}})
        ]
        self.creds_outcomes: list[Outcome] = [
            (200, {"data": {"username": "u", "password": "p"}, "lease_id": "database/creds/app-role/x"})
        ]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == LOGIN_PATH:
            queue = self.login_outcomes
        elif request.url.path.startswith(CREDS_PREFIX):
            queue = self.creds_outcomes
        else:
            return httpx.Response(404, json={"errors": []})

        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        status, body = outcome
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def calls(self, path_prefix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith(path_prefix)]

    @property
    def login_calls(self) -> list[httpx.Request]:
        return self.calls(LOGIN_PATH)

    @property
    def creds_calls(self) -> list[httpx.Request]:
        return self.calls(CREDS_PREFIX)


class FakeConnect:
    """
    Stands in for asyncpg.connect.

    Answers from a queue of outcomes (exceptions are raised, anything else is
    returned as the connection); the last outcome repeats.
    """

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_connection() -> AsyncMock:
    """Create a mocked asyncpg connection whose 'select 1' returns 1."""
    connection = AsyncMock()
    connection.fetchval.return_value = 1
    connection.close.return_value = None
    return connection


@pytest.fixture
def test_settings():
    """
    Create test settings with default values.

    Returns a Settings instance pointing at a fake Vault and a local database.
    """
    from auth_svc.config import Settings

    return Settings(
        # Vault settings
        vault_addr="http://vault.test:8200",
        vault_role_id="role-123",
        vault_secret_id="secret-456",
        vault_db_role="app-role",
        vault_request_timeout=1.0,

        # PostgreSQL settings
        postgres_host="127.0.0.1",
        postgres_port=5432,
        postgres_db="shop",
        postgres_ssl="disable",
        postgres_connect_timeout=1.0,

        # Retry settings
        retry_max_attempts=5,
        retry_base_delay_ms=100,
        bootstrap_timeout=10.0,

        # Application settings
        host="127.0.0.1",
        port=8081,
        log_level="DEBUG",
        log_format="console",
        service_name="test-service",
        service_version="0.0.1",
    )


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fake_vault() -> FakeVault:
    return FakeVault()


@pytest_asyncio.fixture
async def vault_http(fake_vault):
    """Create an httpx.AsyncClient served by the fake Vault."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_vault)) as client:
        yield client


@pytest.fixture
def fake_connection() -> AsyncMock:
    return make_connection()


@pytest.fixture
def fake_connect() -> type[FakeConnect]:
    """Provide FakeConnect so tests can script asyncpg.connect outcomes."""
    return FakeConnect


@pytest.fixture
def connection_factory():
    """Provide make_connection for tests that need several connections."""
    return make_connection
