"""Public schema exports."""

from .auth import (
    AuthorizationServerMetadata,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    OAuthErrorResponse,
    ProtectedResourceMetadata,
    TokenRequest,
    TokenResponse,
)

__all__ = [
    "AuthorizationServerMetadata",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "OAuthErrorResponse",
    "ProtectedResourceMetadata",
    "TokenRequest",
    "TokenResponse",
]
