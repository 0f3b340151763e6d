"""
Bootstrap: From AppRole Secret to Live Database Connection
==========================================================

This module composes the three steps that turn Vault AppRole material into
an open PostgreSQL connection:

    ┌─────────────────┐
    │ AppRole login   │  role_id + secret_id → token       (never retried)
    └────────┬────────┘
             ▼
    ┌─────────────────┐
    │ Dynamic creds   │  token → username/password         (retries 5xx/transport)
    └────────┬────────┘
             ▼
    ┌─────────────────┐
    │ Connect         │  credential → asyncpg connection   (retries auth races)
    └─────────────────┘

The first failing step ends the bootstrap and its exception propagates
unchanged, so callers can tell an AuthError from an exhausted FetchError.

Every call performs a fresh login, fetch and connect. Nothing is cached or
shared between calls, so concurrent requests never contend for state.

Usage:
------
    bootstrap = Bootstrap(get_settings())
    conn = await bootstrap.establish_connection(timeout=10.0)
    try:
        one = await conn.fetchval("select 1")
    finally:
        await conn.close()
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncpg
import httpx

from .config import Settings
from .logging_config import get_logger
from .postgres_client import ConnectFunc, ConnectionEstablisher, build_connection_config
from .retry import BackoffPolicy, Deadline, SleepFunc, with_deadline
from .vault_client import AppRoleAuthenticator, DynamicCredentialFetcher

logger = get_logger(__name__)


class Bootstrap:
    """
    Runs one login → fetch → connect sequence per call.

    Attributes:
        settings: Application settings with Vault and database configuration
        policy: Backoff schedule shared by the fetch and connect steps
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        connect: ConnectFunc = asyncpg.connect,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """
        Initialize the bootstrap.

        Args:
            settings: Application settings
            http_client: HTTP client for Vault. When omitted a new client is
                created, and closed, for every call.
            connect: Coroutine function that opens a database connection
            sleep: Coroutine used for backoff waits
        """
        self.settings = settings
        self.policy = BackoffPolicy(
            base_delay=settings.retry_base_delay,
            max_attempts=settings.retry_max_attempts,
        )
        self._http_client = http_client
        self._connect = connect
        self._sleep = sleep

    @asynccontextmanager
    async def _vault_http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.settings.vault_request_timeout) as http:
            yield http

    async def establish_connection(
        self, timeout: Optional[float] = None
    ) -> asyncpg.Connection:
        """
        Log in to Vault, fetch a credential and open a connection.

        Args:
            timeout: Optional overall budget in seconds for all three steps

        Returns:
            An open asyncpg connection; the caller must close it

        Raises:
            ConfigError: If required Vault settings are missing
            AuthError: If the AppRole login fails
            FetchError: If credentials cannot be obtained
            DecodeError: If a Vault response is malformed
            DatabaseConnectError: If the connection cannot be opened
            DeadlineExceededError: If the timeout elapses first
        """
        self.settings.validate_required()
        deadline = Deadline.after(timeout) if timeout is not None else None
        start_time = time.time()

        async with self._vault_http() as http:
            token = await with_deadline(
                AppRoleAuthenticator(http).login(
                    self.settings.vault_addr,
                    self.settings.vault_role_id,
                    self.settings.vault_secret_id,
                ),
                deadline,
                "approle_login",
            )

            fetcher = DynamicCredentialFetcher(http, self.policy, sleep=self._sleep)
            credential = await fetcher.fetch_credentials(
                self.settings.vault_addr,
                token,
                self.settings.vault_db_role,
                deadline=deadline,
            )

        config = build_connection_config(
            credential,
            host=self.settings.postgres_host,
            port=self.settings.postgres_port,
            database=self.settings.postgres_db,
            ssl_mode=self.settings.postgres_ssl,
        )
        establisher = ConnectionEstablisher(
            self.policy,
            connect_timeout=self.settings.postgres_connect_timeout,
            connect=self._connect,
            sleep=self._sleep,
        )
        conn = await establisher.connect(config, deadline=deadline)

        logger.info(
            "Bootstrap complete",
            user=credential.username,
            total_duration_ms=int((time.time() - start_time) * 1000),
        )
        return conn
