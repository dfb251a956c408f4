"""
OAuth error taxonomy shared by the flow engine, the refresh coordinator and
the HTTP layer.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Dict, Optional


class OAuthError(Exception):
    """Base error rendered as an RFC 6749 ``{"error": ...}`` payload."""

    error = "server_error"
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, description: Optional[str] = None) -> None:
        super().__init__(description or self.error)
        self.description = description

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error}
        if self.description:
            payload["error_description"] = self.description
        return payload


class InvalidRequestError(OAuthError):
    """Structurally invalid authorize or callback parameters."""

    error = "invalid_request"
    status_code = HTTPStatus.BAD_REQUEST


class InvalidGrantError(OAuthError):
    """Unknown, expired or mismatched code, verifier or refresh token.

    Deliberately carries no description so the token endpoint cannot be used
    as an oracle.
    """

    error = "invalid_grant"
    status_code = HTTPStatus.BAD_REQUEST

    def __init__(self) -> None:
        super().__init__(None)


class UnsupportedGrantTypeError(OAuthError):
    error = "unsupported_grant_type"
    status_code = HTTPStatus.BAD_REQUEST


class UnauthorizedError(OAuthError):
    """No usable provider tokens are bound to the presented RS token."""

    error = "invalid_token"
    status_code = HTTPStatus.UNAUTHORIZED


class ServerError(OAuthError):
    error = "server_error"
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR


class ProviderError(OAuthError):
    """Raised when the upstream provider answers with a non-2xx status.

    ``status_code`` on the instance is the provider's HTTP status (``None`` for
    network failures); the response sent to our own callers is always 502.
    """

    error = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.provider_status = status_code
        self.body = body
        self.status_code = HTTPStatus.BAD_GATEWAY

    @property
    def retryable(self) -> bool:
        """Transient failures (network, 5xx, 429) are worth another attempt."""
        if self.provider_status is None:
            return True
        return self.provider_status >= 500 or self.provider_status == 429

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.provider_status is not None:
            payload["provider_status"] = self.provider_status
        return payload


__all__ = [
    "InvalidGrantError",
    "InvalidRequestError",
    "OAuthError",
    "ProviderError",
    "ServerError",
    "UnauthorizedError",
    "UnsupportedGrantTypeError",
]
