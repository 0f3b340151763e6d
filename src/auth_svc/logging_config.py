"""
Structured Logging Configuration for the Auth Service
=====================================================

This module configures structured logging using structlog:
- JSON-formatted logs for production
- Human-readable console output for local development

Log Structure:
-------------
Every log entry includes timestamp (ISO 8601, UTC), level, event, module,
service and version. Components add their own context:
- Vault client: vault_addr, db_role, status_code, duration_ms
- PostgreSQL client: host, port, database, user, duration_ms
- Retry loops: operation, attempt, max_attempts, delay_ms, error
- HTTP surface: request_id (bound per request via bind_context)

Secret Handling:
---------------
Components log token and password lengths, never the values. As a second
line, redact_secrets masks any event field whose name is a known secret
(secret_id, client_token, password, ...) before rendering, including fields
bound through bind_context.

httpx logs every request at INFO; its loggers are raised to WARNING unless
the service itself runs at DEBUG.

Usage:
------
    from auth_svc.logging_config import setup_logging, get_logger

    setup_logging(log_level="INFO", log_format="json")
    logger = get_logger(__name__)
    logger.info("Credential issued", username="v-approle-app-role-abc")
"""

import logging
import sys
from typing import Any

import structlog

REDACTED = "***"

# Event fields that carry Vault or database secrets
SECRET_KEYS = frozenset(
    {
        "secret_id",
        "vault_secret_id",
        "token",
        "client_token",
        "vault_token",
        "password",
        "postgres_password",
    }
)

# Third-party loggers that are too chatty below WARNING
NOISY_LOGGERS = ("httpx", "httpcore")


def redact_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Mask secret-named fields in a log entry.

    Empty values are left alone so "missing secret" diagnostics stay readable.
    """
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def _add_service_info(
    service_name: str, service_version: str
) -> structlog.types.Processor:
    """Create a processor that stamps service name and version on every entry."""

    def processor(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict["service"] = service_name
        event_dict["version"] = service_version
        return event_dict

    return processor


def build_processors(
    log_format: str,
    service_name: str,
    service_version: str,
) -> list[structlog.types.Processor]:
    """
    Build the structlog processor chain.

    Redaction runs after context merging and before the renderer, so no
    secret-named field reaches output whichever way it was attached.

    Args:
        log_format: 'json' for production, anything else for console output
        service_name: Service name to include in all log entries
        service_version: Service version to include in all log entries

    Returns:
        The ordered processor list, ending with the renderer
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        redact_secrets,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.CallsiteParameterAdder(
            parameters=[structlog.processors.CallsiteParameter.MODULE]
        ),
        _add_service_info(service_name, service_version),
    ]

    if log_format.lower() == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return processors


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "auth-svc",
    service_version: str = "0.1.0",
) -> None:
    """
    Configure standard logging and structlog for the application.

    Call once at startup, before any logging occurs.

    Args:
        log_level: The minimum log level to output (DEBUG, INFO, WARNING, ERROR)
        log_format: Output format - 'json' for production, 'console' for development
        service_name: Service name to include in all log entries
        service_version: Service version to include in all log entries
    """
    level = getattr(logging, log_level.upper())

    # uvicorn and asyncpg log through the standard library; send them to stdout
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    noisy_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    structlog.configure(
        processors=build_processors(log_format, service_name, service_version),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> Any:
    """Get a structlog logger, typically for the calling module's __name__."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind fields to every subsequent log entry in the current context.

    Context lives in contextvars, so values bound inside one request handler
    do not leak into concurrently running requests.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
