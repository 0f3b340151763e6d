"""
Custom Exceptions for the Auth Service
======================================

This module defines the exception classes raised along the bootstrap path
(Vault login → dynamic credentials → database connection). Using specific
exception types allows for:
- Clear error identification in logs
- Retry decisions based on the error itself, not on string matching at the
  call site
- The orchestrator forwarding the original error kind unchanged

Exception Hierarchy:
-------------------
AuthSvcError (base)
├── ConfigError
├── VaultError
│   ├── AuthError
│   ├── DecodeError
│   └── FetchError
├── DatabaseConnectError
└── DeadlineExceededError

Retry Attributes:
----------------
Every exception carries three retry-related attributes:
- retryable: whether the failure is a transient race worth retrying
- retry_exhausted: set once a retry loop gave up on this error
- attempts: number of attempts made when the loop gave up

Usage:
------
    from auth_svc.exceptions import FetchError

    try:
        credential = await fetcher.fetch_credentials(addr, token, "app-role")
    except FetchError as e:
        logger.error("Credential fetch failed", error=str(e), details=e.details)
"""

from typing import Any, Optional


class AuthSvcError(Exception):
    """
    Base exception for all auth service errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error (optional)
        retryable: Whether a retry loop may try the operation again
        retry_exhausted: Whether a retry loop gave up on this error
        attempts: Attempts made before giving up (0 when not retried)
    """

    retryable = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        """
        Initialize the exception with a message and optional details.

        Args:
            message: Human-readable description of what went wrong
            details: Additional context (e.g., status codes, hosts)
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.retry_exhausted = False
        self.attempts = 0

    def mark_retry_exhausted(self, attempts: int) -> None:
        """Annotate this error as the last one seen by an exhausted retry loop."""
        self.retry_exhausted = True
        self.attempts = attempts

    def __str__(self) -> str:
        """Return the error message, optionally with details."""
        message = self.message
        if self.retry_exhausted:
            message = f"retries exhausted after {self.attempts} attempts: {message}"
        if self.details:
            return f"{message} | Details: {self.details}"
        return message


class ConfigError(AuthSvcError):
    """
    Raised when a required setting is absent.

    This is detected once at process start and is never retried.
    """

    pass


# =============================================================================
# Vault Exceptions
# =============================================================================


class VaultError(AuthSvcError):
    """Base exception for Vault-related errors."""

    pass


class AuthError(VaultError):
    """
    Raised when the AppRole login is rejected or cannot be performed.

    A bad role_id/secret_id will not become valid by waiting, so login
    failures are never retried.
    """

    pass


class DecodeError(VaultError):
    """
    Raised when a Vault response body cannot be decoded.

    This covers bodies that are not JSON and JSON that does not match the
    expected envelope.
    """

    pass


class FetchError(VaultError):
    """
    Raised when requesting dynamic database credentials fails.

    Retryable cases:
    - Transport failures (connection reset, timeouts)
    - Server-side (5xx) statuses

    Fatal cases:
    - Any other non-success status (permission denied, unknown role)
    - A success status carrying an empty username or password
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message, details)
        self.retryable = retryable


# =============================================================================
# Database Exceptions
# =============================================================================


class DatabaseConnectError(AuthSvcError):
    """
    Raised when opening a database connection fails.

    Failures whose text shows the freshly issued credential is not yet
    recognized (see postgres_client.AUTH_RACE_MARKERS) are retryable.
    Everything else (unreachable host, unknown database) is fatal.
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message, details)
        self.retryable = retryable


class DeadlineExceededError(AuthSvcError):
    """Raised when a bootstrap runs past the deadline given by its caller."""

    pass
