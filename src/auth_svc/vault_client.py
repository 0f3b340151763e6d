"""
Vault Client: AppRole Login and Dynamic Database Credentials
============================================================

This module talks to HashiCorp Vault over its HTTP API using an
httpx.AsyncClient supplied by the caller.

AppRole Login:
-------------
    POST {addr}/v1/auth/approle/login
    {"role_id": "...", "secret_id": "..."}
    → 200 {"auth": {"client_token": "..."}}

Any other status is an AuthError. Login is never retried: a wrong role_id or
secret_id does not become valid by waiting.

Dynamic Credentials:
-------------------
    GET {addr}/v1/database/creds/{role}
    X-Vault-Token: <client_token>
    → 200 {"data": {"username": "...", "password": "..."}}

Outcome classification:

    transport error      → retryable FetchError
    undecodable body     → DecodeError
    other httpx error    → fatal FetchError
    5xx                  → retryable FetchError
    other non-200        → fatal FetchError (body included)
    200, bad JSON        → DecodeError
    200, empty user/pass → fatal FetchError

Retryable failures are retried with the shared BackoffPolicy.

Usage:
------
    async with httpx.AsyncClient(timeout=5.0) as http:
        token = await AppRoleAuthenticator(http).login(addr, role_id, secret_id)
        credential = await DynamicCredentialFetcher(http, BackoffPolicy()).fetch_credentials(
            addr, token, "app-role"
        )
"""

import asyncio
import time
from typing import Optional

import httpx
from pydantic import ValidationError

from .exceptions import AuthError, DecodeError, FetchError
from .logging_config import get_logger
from .models import AppRoleLoginResponse, Credential, DatabaseCredentialsResponse
from .retry import BackoffPolicy, Deadline, SleepFunc, retry_async

logger = get_logger(__name__)

LOGIN_PATH = "/v1/auth/approle/login"
CREDS_PATH = "/v1/database/creds/{role}"
TOKEN_HEADER = "X-Vault-Token"

# Response bodies are attached to errors for diagnosis; keep them bounded
MAX_ERROR_BODY_CHARS = 1000


def _status_text(response: httpx.Response) -> str:
    return f"{response.status_code} {response.reason_phrase}".strip()


def _error_body(response: httpx.Response) -> str:
    return response.text[:MAX_ERROR_BODY_CHARS]


class AppRoleAuthenticator:
    """
    Exchanges an AppRole role_id/secret_id pair for a Vault token.

    Attributes:
        http: HTTP client used for the login request
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self.http = http

    async def login(self, address: str, role_id: str, secret_id: str) -> str:
        """
        Log in with AppRole and return the client token.

        Args:
            address: Vault address, e.g. http://127.0.0.1:8200
            role_id: AppRole role_id
            secret_id: AppRole secret_id

        Returns:
            The client token (opaque)

        Raises:
            AuthError: If the request fails or Vault rejects the login
            DecodeError: If a 200 response has an unusable body
        """
        url = address.rstrip("/") + LOGIN_PATH
        start_time = time.time()

        logger.info("Logging in to Vault with AppRole", vault_addr=address)

        try:
            response = await self.http.post(
                url, json={"role_id": role_id, "secret_id": secret_id}
            )
        except httpx.HTTPError as e:
            logger.error(
                "AppRole login request failed",
                error=str(e),
                error_type=type(e).__name__,
                vault_addr=address,
            )
            raise AuthError(
                f"approle login request failed: {e}",
                details={"vault_addr": address},
            ) from e

        if response.status_code != 200:
            logger.error(
                "AppRole login rejected",
                status_code=response.status_code,
                vault_addr=address,
            )
            raise AuthError(
                f"approle login failed: {_status_text(response)}",
                details={"status_code": response.status_code},
            )

        try:
            body = AppRoleLoginResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error("AppRole login response could not be decoded", error=str(e))
            raise DecodeError(f"approle login response could not be decoded: {e}") from e

        token = body.auth.client_token
        if not token:
            raise DecodeError("approle login response has an empty client_token")

        logger.info(
            "AppRole login successful",
            token_length=len(token),
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return token


class DynamicCredentialFetcher:
    """
    Requests freshly generated database credentials from Vault.

    Attributes:
        http: HTTP client used for the credential requests
        policy: Backoff schedule for retryable failures
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        policy: BackoffPolicy,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.http = http
        self.policy = policy
        self._sleep = sleep

    async def fetch_credentials(
        self,
        address: str,
        token: str,
        role: str,
        deadline: Optional[Deadline] = None,
    ) -> Credential:
        """
        Fetch a dynamic credential, retrying transient failures.

        Args:
            address: Vault address
            token: Client token from AppRole login
            role: Database secrets engine role name
            deadline: Optional deadline bounding all attempts

        Returns:
            A Credential with non-empty username and password

        Raises:
            FetchError: Fatal failure, or the last retryable failure once
                attempts are exhausted
            DecodeError: If a 200 response has an unusable body
            DeadlineExceededError: If the deadline passes first
        """
        return await retry_async(
            lambda: self._fetch_once(address, token, role),
            policy=self.policy,
            operation_name="fetch_db_credentials",
            deadline=deadline,
            sleep=self._sleep,
        )

    async def _fetch_once(self, address: str, token: str, role: str) -> Credential:
        url = address.rstrip("/") + CREDS_PATH.format(role=role)
        start_time = time.time()

        logger.debug("Requesting dynamic database credentials", db_role=role)

        try:
            response = await self.http.get(url, headers={TOKEN_HEADER: token})
        except httpx.TransportError as e:
            raise FetchError(
                f"db creds request failed: {e}",
                details={"db_role": role, "error_type": type(e).__name__},
                retryable=True,
            ) from e
        except httpx.DecodingError as e:
            raise DecodeError(
                f"db creds response could not be decoded: {e}",
                details={"db_role": role},
            ) from e
        except httpx.HTTPError as e:
            # Malformed URL or role name, too many redirects: waiting will not help
            raise FetchError(
                f"db creds request failed: {e}",
                details={"db_role": role, "error_type": type(e).__name__},
            ) from e

        if response.status_code >= 500:
            raise FetchError(
                f"db creds request failed: {_status_text(response)}",
                details={"db_role": role, "body": _error_body(response)},
                retryable=True,
            )

        if response.status_code != 200:
            logger.error(
                "Dynamic credentials request rejected",
                status_code=response.status_code,
                db_role=role,
            )
            raise FetchError(
                f"db creds request failed: {_status_text(response)}",
                details={"db_role": role, "body": _error_body(response)},
            )

        try:
            body = DatabaseCredentialsResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DecodeError(
                f"db creds response could not be decoded: {e}",
                details={"db_role": role},
            ) from e

        if not body.data.username or not body.data.password:
            # Vault answered but issued nothing usable: a role or policy problem
            raise FetchError(
                "db creds response has an empty username or password",
                details={
                    "db_role": role,
                    "username_present": bool(body.data.username),
                    "password_present": bool(body.data.password),
                },
            )

        logger.info(
            "Dynamic database credentials issued",
            db_role=role,
            username=body.data.username,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return Credential(username=body.data.username, password=body.data.password)
