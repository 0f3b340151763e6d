"""
PostgreSQL Connection Establishment with Vault Credentials
==========================================================

This module opens a single asyncpg connection using a dynamic credential
that Vault issued moments earlier.

Why Retry At All:
----------------
Vault creates the database role and returns its credentials in one call,
but the new role is not always usable the instant it is returned (role
creation still committing, pg_hba.conf rules keyed on role membership not
yet matching). The first connection attempt can therefore fail with an
authentication error that resolves itself within a few hundred
milliseconds.

Retryable Failures:
------------------
A failure is retried only if its lower-cased message contains one of
AUTH_RACE_MARKERS:

    "sasl"                            SCRAM/SASL exchange rejected
    "password authentication failed"  role exists, password not yet active
    "no pg_hba.conf entry"            host rule does not yet cover the role

Everything else (connection refused, unknown database, timeouts) fails on
the first attempt: those will not heal by waiting.

Matching on message text is brittle by nature: it depends on the server's
wording and language (lc_messages). The marker list is kept in one place so
it can be audited and extended without touching the retry loop.

Usage:
------
    establisher = ConnectionEstablisher(BackoffPolicy())
    conn = await establisher.connect(config)
    try:
        await conn.fetchval("select 1")
    finally:
        await conn.close()
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Iterable, Optional

import asyncpg

from .exceptions import DatabaseConnectError
from .logging_config import get_logger
from .models import ConnectionConfig, Credential
from .retry import BackoffPolicy, Deadline, SleepFunc, retry_async

logger = get_logger(__name__)

AUTH_RACE_MARKERS = (
    "sasl",
    "password authentication failed",
    "no pg_hba.conf entry",
)

ConnectFunc = Callable[..., Awaitable[Any]]


def is_auth_race(message: str, markers: Iterable[str] = AUTH_RACE_MARKERS) -> bool:
    """
    Decide whether a connection error looks like a not-yet-active credential.

    Args:
        message: The error text from the failed connection attempt
        markers: Lower-case substrings that mark a retryable failure

    Returns:
        True if any marker occurs in the lower-cased message
    """
    lowered = message.lower()
    return any(marker in lowered for marker in markers)


def build_connection_config(
    credential: Credential,
    host: str,
    port: int,
    database: str,
    ssl_mode: str = "disable",
) -> ConnectionConfig:
    """
    Combine deployment settings with a dynamic credential.

    Args:
        credential: Username/password issued by Vault
        host: Database host
        port: Database port
        database: Database name
        ssl_mode: libpq sslmode name

    Returns:
        A ConnectionConfig ready for ConnectionEstablisher.connect()
    """
    return ConnectionConfig(
        host=host,
        port=port,
        database=database,
        user=credential.username,
        password=credential.password,
        ssl_mode=ssl_mode,
    )


class ConnectionEstablisher:
    """
    Opens asyncpg connections, retrying authentication races.

    Attributes:
        policy: Backoff schedule for retryable failures
        connect_timeout: Timeout for a single connection attempt in seconds
    """

    def __init__(
        self,
        policy: BackoffPolicy,
        connect_timeout: float = 10.0,
        connect: ConnectFunc = asyncpg.connect,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.policy = policy
        self.connect_timeout = connect_timeout
        self._connect = connect
        self._sleep = sleep

    async def connect(
        self,
        config: ConnectionConfig,
        deadline: Optional[Deadline] = None,
    ) -> asyncpg.Connection:
        """
        Open a connection, retrying only authentication races.

        Args:
            config: Connection parameters including the dynamic credential
            deadline: Optional deadline bounding all attempts

        Returns:
            An open asyncpg connection; the caller must close it

        Raises:
            DatabaseConnectError: Fatal failure, or the last race failure once
                attempts are exhausted
            DeadlineExceededError: If the deadline passes first
        """
        logger.info(
            "Connecting to PostgreSQL",
            host=config.host,
            port=config.port,
            database=config.database,
            user=config.user,
            tls_enabled=config.tls_enabled,
        )
        return await retry_async(
            lambda: self._connect_once(config),
            policy=self.policy,
            operation_name="connect_postgres",
            deadline=deadline,
            sleep=self._sleep,
        )

    async def _connect_once(self, config: ConnectionConfig) -> asyncpg.Connection:
        start_time = time.time()
        try:
            conn = await self._connect(
                **config.connect_kwargs(), timeout=self.connect_timeout
            )
        except Exception as e:
            message = str(e) or type(e).__name__
            raise DatabaseConnectError(
                f"connect: {message}",
                details={
                    "host": config.host,
                    "port": config.port,
                    "database": config.database,
                    "error_type": type(e).__name__,
                },
                retryable=is_auth_race(message),
            ) from e

        logger.info(
            "PostgreSQL connection established",
            host=config.host,
            database=config.database,
            user=config.user,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return conn
