"""
Factory functions to provide shared clients and services as FastAPI dependencies.

The token store backend is chosen once here; nothing downstream branches on
which backend is active.
"""

import logging
from functools import lru_cache
from typing import Optional

from oauth_proxy.clients import (
    DynamoDBTokenStore,
    FileTokenStore,
    MemoryTokenStore,
    SpotifyOAuthClient,
    TokenStore,
)
from oauth_proxy.core.config import AppSettings, get_settings
from oauth_proxy.services import (
    MemorySessionStore,
    OAuthFlowService,
    TokenCipherService,
    TokenRefreshCoordinator,
)
from oauth_proxy.utils.redirects import RedirectValidator
from oauth_proxy.utils.state import CompositeStateCodec

logger = logging.getLogger(__name__)


@lru_cache()
def _settings() -> AppSettings:
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_token_cipher_service() -> Optional[TokenCipherService]:
    """Provide encryption at rest when a secret is configured."""
    secret = _settings().security.token_encryption_secret
    if not secret:
        return None
    return TokenCipherService.from_setting(secret)


def build_token_store(settings: AppSettings) -> TokenStore:
    """Instantiate the configured token store backend."""
    backend = settings.storage.resolved_backend
    if backend == "memory":
        return MemoryTokenStore()
    if backend == "file":
        if not settings.storage.tokens_file:
            raise ValueError("RS_TOKENS_FILE is required for the file backend.")
        return FileTokenStore(settings.storage.tokens_file)
    if backend == "dynamodb":
        return DynamoDBTokenStore.from_settings(
            settings.storage, cipher=get_token_cipher_service()
        )
    raise ValueError(f"Unknown TOKEN_STORE_BACKEND: {backend!r}")


@lru_cache()
def get_token_store() -> TokenStore:
    """Provide the process-wide token store."""
    settings = _settings()
    store = build_token_store(settings)
    logger.info("Using %s token store", type(store).__name__)
    return store


@lru_cache()
def get_session_store() -> MemorySessionStore:
    """Provide the agent-session collaborator."""
    return MemorySessionStore()


@lru_cache()
def get_spotify_oauth_client() -> SpotifyOAuthClient:
    """Create a singleton Spotify accounts client."""
    settings = _settings()
    return SpotifyOAuthClient(
        settings.provider, revocation_url=settings.oauth.revocation_url
    )


@lru_cache()
def get_redirect_validator() -> RedirectValidator:
    settings = _settings()
    return RedirectValidator(
        default_redirect_uri=settings.oauth.redirect_uri,
        allowlist=settings.oauth.redirect_allowlist,
        development=settings.is_development,
        allow_all=settings.oauth.redirect_allow_all,
        strict=settings.oauth.redirect_strict,
    )


@lru_cache()
def get_state_codec() -> CompositeStateCodec:
    return CompositeStateCodec()


@lru_cache()
def get_oauth_flow_service() -> OAuthFlowService:
    """Provide the authorization-code flow engine."""
    settings = _settings()
    return OAuthFlowService(
        store=get_token_store(),
        provider=get_spotify_oauth_client(),
        redirect_validator=get_redirect_validator(),
        state_codec=get_state_codec(),
        oauth_settings=settings.oauth,
        session_store=get_session_store(),
    )


@lru_cache()
def get_token_refresh_coordinator() -> TokenRefreshCoordinator:
    """Provide the provider-token refresh coordinator."""
    settings = _settings()
    return TokenRefreshCoordinator(
        store=get_token_store(),
        provider=get_spotify_oauth_client(),
        refresh_margin_seconds=settings.oauth.refresh_margin_seconds,
    )


__all__ = [
    "build_token_store",
    "get_oauth_flow_service",
    "get_redirect_validator",
    "get_session_store",
    "get_spotify_oauth_client",
    "get_state_codec",
    "get_token_cipher_service",
    "get_token_refresh_coordinator",
    "get_token_store",
]
