"""
Application configuration models and helpers.

Centralizes settings management so the HTTP routes, the storage backends and
the refresh coordinator share a consistent configuration surface.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


class _Settings(BaseSettings):
    """Every settings group reads the process environment and ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )


class ProviderSettings(_Settings):
    """Credentials and endpoints for the upstream Spotify accounts service."""

    client_id: Optional[str] = Field(None, validation_alias="SPOTIFY_CLIENT_ID")
    client_secret: Optional[str] = Field(
        None, validation_alias="SPOTIFY_CLIENT_SECRET"
    )
    accounts_url: str = Field(
        "https://accounts.spotify.com", validation_alias="SPOTIFY_ACCOUNTS_URL"
    )
    token_timeout_seconds: float = Field(
        10.0,
        validation_alias="SPOTIFY_TOKEN_TIMEOUT",
        description="Timeout applied to code exchange and refresh calls.",
    )
    revoke_timeout_seconds: float = Field(
        5.0, validation_alias="SPOTIFY_REVOKE_TIMEOUT"
    )

    @field_validator("client_id", "client_secret", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        """Treat empty environment values as unset."""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


class OAuthSettings(_Settings):
    """Authorization-server behaviour of the proxy."""

    redirect_uri: str = Field(
        "alice://oauth/callback",
        validation_alias="OAUTH_REDIRECT_URI",
        description="Default client redirect used when a requested one is rejected.",
    )
    redirect_allowlist_raw: str = Field(
        "",
        validation_alias="OAUTH_REDIRECT_ALLOWLIST",
        description="Comma-separated list of permitted client redirect URIs.",
    )
    redirect_allow_all: bool = Field(
        False,
        validation_alias="OAUTH_REDIRECT_ALLOW_ALL",
        description="Development helper accepting any client redirect.",
    )
    redirect_strict: bool = Field(
        False,
        validation_alias="OAUTH_REDIRECT_STRICT",
        description=(
            "Reject disallowed client redirects with invalid_request instead of "
            "falling back to the default redirect URI."
        ),
    )
    scopes: str = Field("", validation_alias="OAUTH_SCOPES")
    revocation_url: Optional[str] = Field(None, validation_alias="OAUTH_REVOCATION_URL")
    transaction_ttl_seconds: int = Field(600, validation_alias="OAUTH_TRANSACTION_TTL")
    code_ttl_seconds: int = Field(600, validation_alias="OAUTH_CODE_TTL")
    access_token_ttl_seconds: int = Field(3600, validation_alias="OAUTH_ACCESS_TOKEN_TTL")
    refresh_margin_seconds: int = Field(30, validation_alias="OAUTH_REFRESH_MARGIN")
    sweep_interval_seconds: float = Field(60.0, validation_alias="OAUTH_SWEEP_INTERVAL")

    @field_validator("scopes", mode="before")
    @classmethod
    def _normalize_scopes(cls, value: Optional[str]) -> str:
        """Collapse whitespace and commas into single spaces."""
        if not value:
            return ""
        return " ".join(value.replace(",", " ").split())

    @property
    def redirect_allowlist(self) -> tuple[str, ...]:
        return _split_list(self.redirect_allowlist_raw)

    @property
    def scope_list(self) -> list[str]:
        return self.scopes.split()


class StorageSettings(_Settings):
    """Selects and configures the RS token store backend."""

    backend: Optional[str] = Field(None, validation_alias="TOKEN_STORE_BACKEND")
    tokens_file: Optional[str] = Field(None, validation_alias="RS_TOKENS_FILE")
    region_name: str = Field("us-east-1", validation_alias="AWS_REGION")
    dynamodb_table_name: Optional[str] = Field(
        None, validation_alias="DYNAMODB_TABLE_NAME"
    )

    @property
    def resolved_backend(self) -> str:
        if self.backend:
            return self.backend.strip().lower()
        if self.tokens_file:
            return "file"
        return "memory"


class SecuritySettings(_Settings):
    """Security-related configuration."""

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )


class AppSettings(_Settings):
    """Root settings object for the FastAPI application."""

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    public_base_url: Optional[str] = Field(
        None,
        validation_alias="PUBLIC_BASE_URL",
        description="Externally visible origin; derived from the request when unset.",
    )
    resource_uri: Optional[str] = Field(None, validation_alias="AUTH_RESOURCE_URI")
    discovery_url: Optional[str] = Field(None, validation_alias="AUTH_DISCOVERY_URL")
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() in {"development", "dev", "local"}


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "OAuthSettings",
    "ProviderSettings",
    "SecuritySettings",
    "StorageSettings",
    "get_settings",
]
