"""
Spotify accounts-service client.

Builds the provider authorize URL and performs the code exchange, refresh and
revocation calls with HTTP Basic client-credential auth.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode, urljoin

import httpx

from oauth_proxy.core.config import ProviderSettings
from oauth_proxy.core.errors import ProviderError

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/spotify/callback"


def callback_url(base_url: str) -> str:
    """Provider-facing redirect URI for a proxy reachable at ``base_url``."""
    return base_url.rstrip("/") + CALLBACK_PATH


class SpotifyOAuthClient:
    """Thin async wrapper around the provider's ``/authorize`` and ``/api/token``."""

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        revocation_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._revocation_url = revocation_url
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self._settings.configured

    @property
    def authorize_url(self) -> str:
        return urljoin(self._settings.accounts_url, "/authorize")

    @property
    def token_url(self) -> str:
        return urljoin(self._settings.accounts_url, "/api/token")

    def build_authorization_url(
        self, *, state: str, redirect_uri: str, scope: Optional[str] = None
    ) -> str:
        """Construct the provider consent URL."""
        params = {
            "response_type": "code",
            "client_id": self._settings.client_id or "",
            "redirect_uri": redirect_uri,
        }
        if scope:
            params["scope"] = scope
        params["state"] = state
        return f"{self.authorize_url}?{urlencode(params)}"

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def _post_token(self, form: Mapping[str, str], *, action: str) -> Dict[str, Any]:
        auth = httpx.BasicAuth(
            self._settings.client_id or "", self._settings.client_secret or ""
        )
        try:
            async with self._client(self._settings.token_timeout_seconds) as client:
                response = await client.post(
                    self.token_url,
                    data=dict(form),
                    auth=auth,
                    headers={"accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            logger.warning("Spotify %s request failed: %s", action, exc)
            raise ProviderError(f"Spotify {action} request failed: {exc}") from exc

        if not response.is_success:
            logger.warning(
                "Spotify %s returned %s: %s", action, response.status_code, response.text
            )
            raise ProviderError(
                f"Spotify {action} failed",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Spotify {action} returned invalid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderError(
                f"Spotify {action} returned an unexpected payload",
                status_code=response.status_code,
                body=response.text,
            )
        return payload

    async def exchange_authorization_code(
        self, code: str, *, redirect_uri: str
    ) -> Dict[str, Any]:
        """Exchange a provider authorization code for the raw token payload."""
        payload = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            action="code exchange",
        )
        if not str(payload.get("access_token") or "").strip():
            raise ProviderError(
                "Spotify code exchange returned no access token", status_code=200
            )
        return payload

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        """Refresh provider tokens using a stored provider refresh token."""
        if not refresh_token or not refresh_token.strip():
            raise ProviderError("Missing Spotify refresh token", status_code=400)
        if not self.configured:
            raise ProviderError(
                "Spotify client credentials are not configured", status_code=400
            )
        return await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            action="refresh",
        )

    async def revoke(self, form: Mapping[str, str]) -> bool:
        """Forward a revocation request when an endpoint is configured.

        Best effort: failures are logged and reported as ``False``.
        """
        if not self._revocation_url:
            return False
        try:
            async with self._client(self._settings.revoke_timeout_seconds) as client:
                response = await client.post(self._revocation_url, data=dict(form))
        except httpx.HTTPError as exc:
            logger.warning("Revocation forward failed: %s", exc)
            return False
        if not response.is_success:
            logger.warning(
                "Revocation endpoint returned %s: %s",
                response.status_code,
                response.text,
            )
            return False
        return True


__all__ = ["CALLBACK_PATH", "SpotifyOAuthClient", "callback_url"]
