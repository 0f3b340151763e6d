"""
FastAPI Application for the Auth Service
========================================

This module defines the HTTP surface of the service:
- /healthz: liveness probe, always "ok" while the process is serving
- /db/ping: runs one full Vault bootstrap, executes "select 1" and reports
  the result, or returns the bootstrap error text with status 500

Application Lifecycle:
---------------------
On startup the lifespan handler checks that VAULT_ADDR, VAULT_ROLE_ID and
VAULT_SECRET_ID are set. A ConfigError aborts startup.

Usage:
------
Via the console script (honours HOST and PORT, default port 8081):

    auth-svc

Or via uvicorn directly:

    uvicorn auth_svc.main:app --host 0.0.0.0 --port 8081
"""

import sys
import uuid
from contextlib import asynccontextmanager

import asyncpg
import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from . import __service_name__, __version__
from .bootstrap import Bootstrap
from .config import get_settings
from .exceptions import AuthSvcError, ConfigError
from .logging_config import bind_context, clear_context, get_logger, setup_logging

# Get settings and configure logging early
settings = get_settings()
setup_logging(
    log_level=settings.log_level,
    log_format=settings.log_format,
    service_name=settings.service_name,
    service_version=settings.service_version,
)

logger = get_logger(__name__)


# =============================================================================
# Application Lifespan Management
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Validate configuration before the application accepts requests.

    Raises:
        ConfigError: If required Vault settings are missing
    """
    logger.info(
        "Application lifespan starting",
        service=__service_name__,
        version=__version__,
    )

    try:
        settings.validate_required()
    except ConfigError as e:
        logger.error("Application startup failed", error=str(e))
        raise

    logger.info(
        "Configuration summary",
        vault_addr=settings.vault_addr,
        vault_db_role=settings.vault_db_role,
        postgres_host=settings.postgres_host,
        postgres_port=settings.postgres_port,
        postgres_db=settings.postgres_db,
        postgres_ssl=settings.postgres_ssl,
        retry_max_attempts=settings.retry_max_attempts,
        retry_base_delay_ms=settings.retry_base_delay_ms,
    )

    yield

    logger.info("Application shutdown complete")


app = FastAPI(
    title="Auth Service",
    description="Obtains PostgreSQL access through Vault AppRole and dynamic credentials.",
    version=__version__,
    lifespan=lifespan,
)


# =============================================================================
# Endpoints
# =============================================================================


def _error_response(error: Exception) -> PlainTextResponse:
    """Forward an error's text as a 500 body; bare exceptions fall back to their type name."""
    return PlainTextResponse(str(error) or type(error).__name__, status_code=500)


@app.get(
    "/healthz",
    summary="Liveness probe",
    response_class=PlainTextResponse,
)
async def healthz() -> PlainTextResponse:
    """Return a fixed success body while the process is serving."""
    return PlainTextResponse("ok")


@app.get(
    "/db/ping",
    summary="Bootstrap a database connection and run a trivial query",
    response_class=PlainTextResponse,
    responses={
        200: {"description": "Bootstrap and query succeeded"},
        500: {"description": "Bootstrap or query failed; body is the error text"},
    },
)
async def db_ping() -> PlainTextResponse:
    """
    Run one full bootstrap and report the result of "select 1".

    A new Vault login, credential and connection are obtained for every
    request; the connection is closed before responding.
    """
    bind_context(request_id=str(uuid.uuid4()), endpoint="/db/ping")
    try:
        try:
            conn = await Bootstrap(settings).establish_connection(
                timeout=settings.bootstrap_timeout
            )
        except AuthSvcError as e:
            logger.error(
                "Bootstrap failed",
                error=str(e),
                error_type=type(e).__name__,
                retry_exhausted=e.retry_exhausted,
            )
            return PlainTextResponse(str(e), status_code=500)
        except Exception as e:
            logger.error(
                "Unexpected error during bootstrap",
                error=str(e),
                error_type=type(e).__name__,
            )
            return _error_response(e)

        try:
            one = await conn.fetchval("select 1")
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("Ping query failed", error=str(e), error_type=type(e).__name__)
            return _error_response(e)
        except Exception as e:
            logger.error(
                "Unexpected error during ping query",
                error=str(e),
                error_type=type(e).__name__,
            )
            return _error_response(e)
        finally:
            await conn.close()

        logger.info("Database ping succeeded", result=one)
        return PlainTextResponse(f"db: {one}")
    finally:
        clear_context()


# =============================================================================
# Process Entry Point
# =============================================================================


def run() -> None:
    """
    Validate configuration and serve the application with uvicorn.

    Exits with status 1 when required configuration is missing.
    """
    try:
        settings.validate_required()
    except ConfigError as e:
        logger.error("Refusing to start", error=str(e))
        sys.exit(1)

    logger.info("auth-svc listening", host=settings.host, port=settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
