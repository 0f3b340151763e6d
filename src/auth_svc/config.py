"""
Configuration Management for the Auth Service
=============================================

This module manages all application configuration using Pydantic Settings.
Configuration is loaded from environment variables, with sensible defaults
for local development.

Environment Variables:
---------------------
All configuration can be set via environment variables. The variable names
match the field names in UPPER_SNAKE_CASE format.

Required Settings:
-----------------
VAULT_ADDR, VAULT_ROLE_ID and VAULT_SECRET_ID have no usable default. They
are optional at load time so the module can be imported anywhere, and are
checked explicitly by Settings.validate_required() at process start.

Database Target:
---------------
Host, port, database and SSL mode are individual settings rather than a DSN
string. The username and password are never configured here: they come from
Vault on every bootstrap.
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError

# sslmode values accepted by asyncpg
VALID_SSL_MODES = ["disable", "allow", "prefer", "require", "verify-ca", "verify-full"]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    This class uses Pydantic Settings to automatically load configuration
    from environment variables. Validators reject malformed values when the
    settings are loaded; missing required values are reported by
    validate_required().
    """

    # -------------------------------------------------------------------------
    # Settings Configuration
    # -------------------------------------------------------------------------
    # - env_file: Load from .env file if present (useful for local development)
    # - case_sensitive: Environment variables are case-insensitive
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Vault Configuration
    # -------------------------------------------------------------------------
    # The service logs in with AppRole and reads dynamic credentials from the
    # database secrets engine mounted at database/.
    # -------------------------------------------------------------------------

    vault_addr: Optional[str] = Field(
        default=None,
        description="Vault address, e.g. http://127.0.0.1:8200 (required)",
    )

    vault_role_id: Optional[str] = Field(
        default=None,
        description="AppRole role_id (required)",
    )

    vault_secret_id: Optional[str] = Field(
        default=None,
        description="AppRole secret_id (required)",
    )

    vault_db_role: str = Field(
        default="app-role",
        description="Database secrets engine role to request credentials for",
    )

    vault_request_timeout: float = Field(
        default=5.0,
        description="Timeout for a single Vault HTTP request (seconds)",
    )

    # -------------------------------------------------------------------------
    # PostgreSQL Configuration
    # -------------------------------------------------------------------------
    # User and password are not settings: they come from Vault.
    # -------------------------------------------------------------------------

    postgres_host: str = Field(
        default="127.0.0.1",
        description="PostgreSQL host",
    )

    postgres_port: int = Field(
        default=5432,
        description="PostgreSQL port (55432 when using the host port mapping)",
    )

    postgres_db: str = Field(
        default="shop",
        description="PostgreSQL database name",
    )

    postgres_ssl: str = Field(
        default="disable",
        description="SSL mode: 'disable', 'allow', 'prefer', 'require', 'verify-ca', 'verify-full'",
    )

    postgres_connect_timeout: float = Field(
        default=10.0,
        description="Timeout for a single connection attempt (seconds)",
    )

    # -------------------------------------------------------------------------
    # Retry Configuration
    # -------------------------------------------------------------------------
    # Shared by the credential fetch and connection retry loops.
    # Delays are base * 2^(attempt-1): 100ms, 200ms, 400ms, 800ms by default.
    # -------------------------------------------------------------------------

    retry_max_attempts: int = Field(
        default=5,
        description="Maximum attempts for credential fetch and connection",
    )

    retry_base_delay_ms: int = Field(
        default=100,
        description="Backoff delay after the first failed attempt (milliseconds)",
    )

    bootstrap_timeout: float = Field(
        default=10.0,
        description="Deadline for one full bootstrap started by /db/ping (seconds)",
    )

    # -------------------------------------------------------------------------
    # Application Configuration
    # -------------------------------------------------------------------------

    host: str = Field(
        default="0.0.0.0",
        description="Interface the HTTP server binds to",
    )

    port: int = Field(
        default=8081,
        description="Port the HTTP server listens on",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR",
    )

    log_format: str = Field(
        default="json",
        description="Log format: 'json' for production, 'console' for development",
    )

    service_name: str = Field(
        default="auth-svc",
        description="Service name for logging",
    )

    service_version: str = Field(
        default="0.1.0",
        description="Service version for logging",
    )

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate that log level is a valid Python logging level.

        Args:
            v: The log level string

        Returns:
            The validated log level string (uppercase)

        Raises:
            ValueError: If the log level is not recognized
        """
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("postgres_ssl")
    @classmethod
    def validate_postgres_ssl(cls, v: str) -> str:
        """Validate the SSL mode against the modes asyncpg understands."""
        if v.lower() not in VALID_SSL_MODES:
            raise ValueError(f"SSL mode must be one of: {', '.join(VALID_SSL_MODES)}")
        return v.lower()

    @field_validator("retry_max_attempts", "retry_base_delay_ms")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Retry settings must be at least 1."""
        if v < 1:
            raise ValueError("Retry settings must be positive")
        return v

    @field_validator("vault_addr")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        """Drop trailing slashes so API paths can be appended directly."""
        if v is None:
            return v
        return v.rstrip("/")

    # -------------------------------------------------------------------------
    # Startup Validation
    # -------------------------------------------------------------------------

    @property
    def missing_required(self) -> List[str]:
        """
        Get the environment variable names of required settings that are unset.

        Returns:
            Upper-case variable names, empty when configuration is complete
        """
        required = {
            "VAULT_ADDR": self.vault_addr,
            "VAULT_ROLE_ID": self.vault_role_id,
            "VAULT_SECRET_ID": self.vault_secret_id,
        }
        return [name for name, value in required.items() if not value]

    def validate_required(self) -> None:
        """
        Check that every required setting is present.

        The caller decides what a failure means; the entry point exits the
        process, the bootstrap path reports it to the requester.

        Raises:
            ConfigError: Listing every missing variable
        """
        missing = self.missing_required
        if missing:
            raise ConfigError(
                f"Missing required configuration: {', '.join(missing)}",
                details={"missing": missing},
            )

    @property
    def retry_base_delay(self) -> float:
        """Get the base backoff delay in seconds."""
        return self.retry_base_delay_ms / 1000


# -----------------------------------------------------------------------------
# Settings Singleton
# -----------------------------------------------------------------------------

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the application settings instance.

    This function returns a cached Settings instance. On first call,
    it loads settings from environment variables and .env file.

    Returns:
        The Settings instance with all configuration loaded
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
