"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    build_token_store,
    get_oauth_flow_service,
    get_redirect_validator,
    get_session_store,
    get_spotify_oauth_client,
    get_state_codec,
    get_token_cipher_service,
    get_token_refresh_coordinator,
    get_token_store,
)
from .config import (
    BaseUrlDependency,
    SettingsDependency,
    get_app_settings,
    get_public_base_url,
)

__all__ = [
    "BaseUrlDependency",
    "SettingsDependency",
    "build_token_store",
    "get_app_settings",
    "get_oauth_flow_service",
    "get_public_base_url",
    "get_redirect_validator",
    "get_session_store",
    "get_spotify_oauth_client",
    "get_state_codec",
    "get_token_cipher_service",
    "get_token_refresh_coordinator",
    "get_token_store",
]
