"""
Domain models for RS token, transaction and session persistence.

Timestamps are epoch milliseconds, matching the persisted file layout.
"""

from __future__ import annotations

import time
from typing import List, Optional

from pydantic import BaseModel, Field


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ProviderTokens(BaseModel):
    """Tokens issued by the upstream provider for one user grant."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = Field(
        None, description="Expiry in epoch milliseconds; unknown when omitted."
    )
    scopes: List[str] = Field(default_factory=list)

    @classmethod
    def from_token_response(
        cls,
        payload: dict,
        *,
        previous: Optional["ProviderTokens"] = None,
        issued_at_ms: Optional[int] = None,
    ) -> "ProviderTokens":
        """Build tokens from a provider token-endpoint payload.

        When refreshing, fields the provider omits (refresh token, scope) are
        carried over from ``previous``.
        """
        issued_at = issued_at_ms if issued_at_ms is not None else now_ms()
        expires_in = payload.get("expires_in")
        try:
            expires_in_seconds = int(expires_in) if expires_in is not None else 3600
        except (TypeError, ValueError):
            expires_in_seconds = 3600

        scope_raw = payload.get("scope")
        scopes = str(scope_raw).split() if scope_raw else []
        if not scopes and previous is not None:
            scopes = list(previous.scopes)

        refresh_token = (payload.get("refresh_token") or "").strip() or None
        if refresh_token is None and previous is not None:
            refresh_token = previous.refresh_token

        return cls(
            access_token=str(payload.get("access_token") or "").strip(),
            refresh_token=refresh_token,
            expires_at=issued_at + expires_in_seconds * 1000,
            scopes=scopes,
        )

    def is_expired(self, *, margin_ms: int = 0, reference_ms: Optional[int] = None) -> bool:
        """True when the token expires within ``margin_ms``; unknown expiry counts."""
        if self.expires_at is None:
            return True
        moment = reference_ms if reference_ms is not None else now_ms()
        return self.expires_at - margin_ms <= moment


class RsRecord(BaseModel):
    """Binds an opaque RS token pair to the provider tokens it stands for."""

    rs_access_token: str
    rs_refresh_token: str
    spotify: ProviderTokens
    created_at: int = Field(default_factory=now_ms)


class Transaction(BaseModel):
    """Working record of one PKCE authorization flow."""

    id: str
    code_challenge: str
    code_challenge_method: str = "S256"
    client_state: Optional[str] = None
    requested_scope: Optional[str] = None
    sid: Optional[str] = None
    created_at: int = Field(default_factory=now_ms)
    spotify: Optional[ProviderTokens] = None

    def age_seconds(self, *, reference_ms: Optional[int] = None) -> float:
        moment = reference_ms if reference_ms is not None else now_ms()
        return (moment - self.created_at) / 1000


class SessionRecord(BaseModel):
    """Agent-session binding owned by the session collaborator."""

    rs_access_token: Optional[str] = None
    rs_refresh_token: Optional[str] = None
    spotify: Optional[ProviderTokens] = None
    created_at: int = Field(default_factory=now_ms)


__all__ = [
    "ProviderTokens",
    "RsRecord",
    "SessionRecord",
    "Transaction",
    "now_ms",
]
