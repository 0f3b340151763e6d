"""
Data Models for the Auth Service
================================

Pydantic models for the values that flow through one bootstrap:

    role_id/secret_id ──► token ──► Credential ──► ConnectionConfig ──► connection

Vault Wire Formats:
------------------
AppRole login (POST /v1/auth/approle/login):
    {"auth": {"client_token": "hvs.CAES..."}, ...}

Dynamic database credentials (GET /v1/database/creds/{role}):
    {"data": {"username": "v-approle-...", "password": "..."}, "lease_id": ...}

Fields Vault sends that we do not use (lease_id, policies, ...) are ignored.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Vault Response Envelopes
# =============================================================================


class _AppRoleAuth(BaseModel):
    client_token: str


class AppRoleLoginResponse(BaseModel):
    """Response body of a successful AppRole login."""

    auth: _AppRoleAuth


class _DatabaseCredentialsData(BaseModel):
    username: str = ""
    password: str = ""


class DatabaseCredentialsResponse(BaseModel):
    """Response body of a successful dynamic credentials read."""

    data: _DatabaseCredentialsData


# =============================================================================
# Domain Models
# =============================================================================


class Credential(BaseModel):
    """
    A dynamic database username/password pair.

    Produced once per bootstrap and never cached. The password is excluded
    from repr() so the credential can appear in debug output safely.
    """

    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(repr=False)


class ConnectionConfig(BaseModel):
    """
    Everything needed to open one PostgreSQL connection.

    Host, port, database and SSL mode come from deployment settings and are
    set field by field; user and password come from a Credential.
    """

    model_config = ConfigDict(frozen=True)

    host: str
    port: int
    database: str
    user: str
    password: str = Field(repr=False)
    ssl_mode: str = "disable"

    @property
    def tls_enabled(self) -> bool:
        """Whether the connection will attempt encryption in transit."""
        return self.ssl_mode != "disable"

    def connect_kwargs(self) -> dict[str, Any]:
        """
        Build keyword arguments for asyncpg.connect().

        Returns:
            Dictionary of connection parameters
        """
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
        }
        # asyncpg accepts libpq sslmode names; False turns SSL off entirely
        kwargs["ssl"] = self.ssl_mode if self.tls_enabled else False
        return kwargs
