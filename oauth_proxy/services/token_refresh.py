"""
Helpers for resolving and refreshing the provider tokens behind an RS token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from oauth_proxy.clients.spotify_auth import SpotifyOAuthClient
from oauth_proxy.clients.token_store import TokenStore, tolerant_write
from oauth_proxy.core.errors import ProviderError, UnauthorizedError
from oauth_proxy.core.logging import mask_token
from oauth_proxy.models.tokens import ProviderTokens, now_ms
from oauth_proxy.utils.http import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RefreshResult:
    """Outcome of a successful provider refresh."""

    spotify: ProviderTokens
    rs_access_token: str
    rs_refresh_token: str


class TokenRefreshCoordinator:
    """Decides when provider tokens need refreshing and performs the refresh.

    A refresh is a single provider call. ``refresh_with_retry`` wraps it with a
    bounded retry for callers that want one.
    """

    def __init__(
        self,
        *,
        store: TokenStore,
        provider: SpotifyOAuthClient,
        refresh_margin_seconds: int = 30,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._margin_ms = refresh_margin_seconds * 1000
        self._retry = retry_config or RetryConfig(attempts=2)

    def should_refresh(
        self, tokens: ProviderTokens, *, margin_seconds: Optional[float] = None
    ) -> bool:
        """True when expiry is unknown or falls within the refresh margin."""
        margin_ms = self._margin_ms if margin_seconds is None else int(margin_seconds * 1000)
        return tokens.is_expired(margin_ms=margin_ms)

    async def _refresh_once(
        self, rs_refresh_token: str, new_rs_access_token: Optional[str]
    ) -> Optional[RefreshResult]:
        """Perform the provider call; ``ProviderError`` propagates."""
        record = await self._store.get_by_rs_refresh(rs_refresh_token)
        if record is None:
            logger.warning("Refresh requested for unknown RS refresh %s", mask_token(rs_refresh_token))
            return None
        previous = record.spotify
        if not previous.refresh_token:
            logger.warning(
                "RS record %s has no provider refresh token", mask_token(rs_refresh_token)
            )
            return None

        issued_at = now_ms()
        payload = await self._provider.refresh_token(previous.refresh_token)
        tokens = ProviderTokens.from_token_response(
            payload, previous=previous, issued_at_ms=issued_at
        )
        if not tokens.access_token:
            raise ProviderError("Spotify refresh returned no access token", status_code=200)

        updated = await tolerant_write(
            self._store.update_by_rs_refresh(rs_refresh_token, tokens, new_rs_access_token)
        )
        if updated is None:
            logger.warning(
                "RS record %s vanished during refresh", mask_token(rs_refresh_token)
            )
            return None
        return RefreshResult(
            spotify=updated.spotify,
            rs_access_token=updated.rs_access_token,
            rs_refresh_token=updated.rs_refresh_token,
        )

    async def refresh(
        self, rs_refresh_token: str, *, new_rs_access_token: Optional[str] = None
    ) -> Optional[RefreshResult]:
        """Refresh once; failures are logged and reported as ``None``."""
        try:
            return await self._refresh_once(rs_refresh_token, new_rs_access_token)
        except ProviderError as exc:
            logger.error(
                "Provider refresh failed for %s (status=%s)",
                mask_token(rs_refresh_token),
                exc.provider_status,
            )
            return None

    async def refresh_with_retry(
        self, rs_refresh_token: str, *, new_rs_access_token: Optional[str] = None
    ) -> Optional[RefreshResult]:
        """Refresh with a bounded, jittered retry on transient provider failures."""
        try:
            return await call_with_retry(
                self._refresh_once,
                rs_refresh_token,
                new_rs_access_token,
                retry_config=self._retry,
            )
        except ProviderError as exc:
            logger.error(
                "Provider refresh failed for %s after retries (status=%s, retryable=%s)",
                mask_token(rs_refresh_token),
                exc.provider_status,
                exc.retryable,
            )
            return None

    async def refresh_for_access_token(self, rs_access_token: str) -> Optional[RefreshResult]:
        record = await self._store.get_by_rs_access(rs_access_token)
        if record is None:
            return None
        return await self.refresh(record.rs_refresh_token, new_rs_access_token=rs_access_token)

    async def get_tokens(
        self, rs_access_token: str, *, margin_seconds: Optional[float] = None
    ) -> Optional[Tuple[ProviderTokens, bool]]:
        """Return ``(tokens, refreshed)`` for an RS access token.

        When a due refresh fails the cached tokens come back with
        ``refreshed=False``; callers decide whether they are still usable.
        """
        record = await self._store.get_by_rs_access(rs_access_token)
        if record is None:
            return None
        if not self.should_refresh(record.spotify, margin_seconds=margin_seconds):
            return record.spotify, False

        refreshed = await self.refresh(
            record.rs_refresh_token, new_rs_access_token=rs_access_token
        )
        if refreshed is None:
            return record.spotify, False
        return refreshed.spotify, True

    async def resolve_provider_tokens(self, rs_access_token: str) -> ProviderTokens:
        """Tokens usable right now, or ``UnauthorizedError``.

        Soft-expired tokens (inside the margin but not past expiry) and tokens
        with unknown expiry are served when the refresh fails; hard-expired
        ones are rejected.
        """
        result = await self.get_tokens(rs_access_token)
        if result is None:
            raise UnauthorizedError("unknown access token")
        tokens, refreshed = result
        if refreshed or tokens.expires_at is None or not tokens.is_expired():
            return tokens
        raise UnauthorizedError("provider token expired and could not be refreshed")


__all__ = ["RefreshResult", "TokenRefreshCoordinator"]
