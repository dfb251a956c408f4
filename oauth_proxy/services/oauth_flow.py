"""
Authorization-code-with-PKCE flow proxied through the Spotify accounts service.

Authorize -> provider consent -> provider callback -> token exchange. The
proxy keeps provider tokens to itself and hands clients opaque RS tokens.
"""

from __future__ import annotations

import logging
import time
from typing import Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oauth_proxy.clients.spotify_auth import SpotifyOAuthClient, callback_url
from oauth_proxy.clients.token_store import TokenStore, tolerant_write
from oauth_proxy.core.config import OAuthSettings
from oauth_proxy.core.errors import (
    InvalidGrantError,
    InvalidRequestError,
    ServerError,
    UnsupportedGrantTypeError,
)
from oauth_proxy.core.logging import mask_token
from oauth_proxy.models.tokens import ProviderTokens, SessionRecord, Transaction
from oauth_proxy.schemas import (
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    TokenRequest,
    TokenResponse,
)
from oauth_proxy.services.sessions import SessionStore
from oauth_proxy.utils.pkce import (
    SUPPORTED_CHALLENGE_METHOD,
    generate_opaque_token,
    verify_pkce,
)
from oauth_proxy.utils.redirects import RedirectValidator
from oauth_proxy.utils.state import CompositeStateCodec

logger = logging.getLogger(__name__)

TRANSACTION_ID_BYTES = 16
DEV_CODE_BYTES = 16
TOKEN_BYTES = 24
CLIENT_ID_BYTES = 12


def with_query(uri: str, **params: Optional[str]) -> str:
    """Append non-empty ``params`` to ``uri`` keeping any existing query."""
    parts = urlsplit(uri)
    query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True)]
    query.extend((key, value) for key, value in params.items() if value is not None)
    return urlunsplit(parts._replace(query=urlencode(query)))


class OAuthFlowService:
    """Transaction engine behind ``/authorize``, ``/spotify/callback`` and ``/token``."""

    def __init__(
        self,
        *,
        store: TokenStore,
        provider: SpotifyOAuthClient,
        redirect_validator: RedirectValidator,
        state_codec: CompositeStateCodec,
        oauth_settings: OAuthSettings,
        session_store: Optional[SessionStore] = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._redirects = redirect_validator
        self._codec = state_codec
        self._settings = oauth_settings
        self._sessions = session_store

    async def authorize(
        self,
        *,
        redirect_uri: Optional[str],
        code_challenge: Optional[str],
        code_challenge_method: Optional[str],
        base_url: str,
        scope: Optional[str] = None,
        state: Optional[str] = None,
        sid: Optional[str] = None,
    ) -> str:
        """Start a flow and return the URL the user agent should be sent to."""
        if not redirect_uri:
            raise InvalidRequestError("redirect_uri is required")
        if not code_challenge or code_challenge_method != SUPPORTED_CHALLENGE_METHOD:
            raise InvalidRequestError("code_challenge with code_challenge_method=S256 is required")
        client_redirect = self._redirects.resolve(redirect_uri)

        transaction = Transaction(
            id=generate_opaque_token(TRANSACTION_ID_BYTES),
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            client_state=state,
            requested_scope=scope,
            sid=sid,
        )
        await self._store.save_transaction(
            transaction, self._settings.transaction_ttl_seconds
        )
        if sid and self._sessions is not None:
            await self._sessions.ensure(sid)

        if self._provider.configured:
            composite_state = self._codec.encode(
                transaction_id=transaction.id,
                client_state=state,
                client_redirect_uri=redirect_uri,
                sid=sid,
            )
            logger.info("Authorize %s: redirecting to provider", mask_token(transaction.id))
            return self._provider.build_authorization_url(
                state=composite_state,
                redirect_uri=callback_url(base_url),
                scope=self._settings.scopes or scope,
            )

        # No provider credentials: issue a code bound to the transaction directly.
        logger.warning(
            "Provider credentials missing; issuing development code for %s",
            mask_token(transaction.id),
        )
        code = generate_opaque_token(DEV_CODE_BYTES)
        await self._store.save_code(code, transaction.id, self._settings.code_ttl_seconds)
        return with_query(client_redirect, code=code, state=state)

    async def handle_callback(
        self,
        *,
        provider_code: Optional[str],
        composite_state: Optional[str],
        base_url: str,
    ) -> str:
        """Finish the provider leg and return the client redirect carrying our code."""
        if not provider_code or not composite_state:
            raise InvalidRequestError("code and state are required")

        envelope = self._codec.resolve(composite_state)
        transaction = await self._store.get_transaction(envelope.transaction_id)
        if transaction is None:
            raise InvalidRequestError("unknown or expired transaction")
        if not self._provider.configured:
            raise ServerError("provider credentials are not configured")

        payload = await self._provider.exchange_authorization_code(
            provider_code, redirect_uri=callback_url(base_url)
        )
        tokens = ProviderTokens.from_token_response(payload)

        transaction.spotify = tokens
        await self._store.save_transaction(
            transaction, self._settings.transaction_ttl_seconds
        )

        code = generate_opaque_token(TOKEN_BYTES)
        await self._store.save_code(code, transaction.id, self._settings.code_ttl_seconds)
        logger.info(
            "Callback %s: provider tokens attached, issued code %s",
            mask_token(transaction.id),
            mask_token(code),
        )

        sid = envelope.sid or transaction.sid
        if sid and self._sessions is not None:
            await self._attach_to_session(sid, tokens)

        client_redirect = self._redirects.resolve(
            envelope.client_redirect_uri or self._redirects.default_redirect_uri
        )
        client_state = (
            envelope.client_state
            if envelope.client_state is not None
            else transaction.client_state
        )
        return with_query(client_redirect, code=code, state=client_state)

    async def _attach_to_session(self, sid: str, tokens: ProviderTokens) -> None:
        await self._sessions.ensure(sid)
        record = await self._sessions.get(sid) or SessionRecord()
        record.spotify = tokens.model_copy(deep=True)
        await self._sessions.put(sid, record)

    async def exchange_token(self, request: TokenRequest) -> TokenResponse:
        """Handle both grants of ``POST /token``."""
        if request.grant_type == "authorization_code":
            return await self._exchange_code(request.code or "", request.code_verifier or "")
        if request.grant_type == "refresh_token":
            return await self._rotate_access_token(request.refresh_token or "")
        raise UnsupportedGrantTypeError()

    async def _exchange_code(self, code: str, code_verifier: str) -> TokenResponse:
        transaction_id = await self._store.get_txn_id_by_code(code) if code else None
        if not transaction_id:
            raise InvalidGrantError()
        transaction = await self._store.get_transaction(transaction_id)
        if transaction is None:
            raise InvalidGrantError()
        if not verify_pkce(code_verifier, transaction.code_challenge):
            raise InvalidGrantError()

        # Single use: only the caller that claims the code may mint tokens.
        if await self._store.consume_code(code) != transaction_id:
            raise InvalidGrantError()
        await self._store.delete_transaction(transaction_id)

        rs_access = generate_opaque_token(TOKEN_BYTES)
        rs_refresh = generate_opaque_token(TOKEN_BYTES)
        if transaction.spotify and transaction.spotify.access_token:
            await tolerant_write(
                self._store.store_rs_mapping(rs_access, transaction.spotify, rs_refresh)
            )
            if transaction.sid and self._sessions is not None:
                await self._bind_session_tokens(transaction.sid, rs_access, rs_refresh)
        else:
            logger.warning(
                "Transaction %s carried no provider tokens; RS tokens are unbound",
                mask_token(transaction_id),
            )

        granted = " ".join(transaction.spotify.scopes) if transaction.spotify else ""
        return TokenResponse(
            access_token=rs_access,
            refresh_token=rs_refresh,
            expires_in=self._settings.access_token_ttl_seconds,
            scope=granted or transaction.requested_scope or self._settings.scopes,
        )

    async def _bind_session_tokens(self, sid: str, rs_access: str, rs_refresh: str) -> None:
        record = await self._sessions.get(sid)
        if record is None:
            return
        record.rs_access_token = rs_access
        record.rs_refresh_token = rs_refresh
        await self._sessions.put(sid, record)

    async def _rotate_access_token(self, rs_refresh: str) -> TokenResponse:
        record = await self._store.get_by_rs_refresh(rs_refresh) if rs_refresh else None
        if record is None:
            raise InvalidGrantError()

        new_access = generate_opaque_token(TOKEN_BYTES)
        updated = await tolerant_write(
            self._store.update_by_rs_refresh(rs_refresh, record.spotify, new_access)
        )
        if updated is None:
            # The record vanished between lookup and rotation.
            raise InvalidGrantError()
        logger.info(
            "Rotated RS access token for refresh %s -> %s",
            mask_token(rs_refresh),
            mask_token(new_access),
        )
        return TokenResponse(
            access_token=new_access,
            refresh_token=rs_refresh,
            expires_in=self._settings.access_token_ttl_seconds,
            scope=" ".join(updated.spotify.scopes),
        )

    def register_client(
        self, request: ClientRegistrationRequest, *, base_url: str
    ) -> ClientRegistrationResponse:
        """Dynamic registration stub; nothing here is enforced later."""
        client_id = generate_opaque_token(CLIENT_ID_BYTES)
        redirect_uris = request.redirect_uris or [self._redirects.default_redirect_uri]
        response = ClientRegistrationResponse(
            client_id=client_id,
            client_id_issued_at=int(time.time()),
            redirect_uris=redirect_uris,
            client_name=request.client_name,
            registration_client_uri=f"{base_url.rstrip('/')}/register/{client_id}",
            registration_access_token=generate_opaque_token(CLIENT_ID_BYTES),
        )
        if request.grant_types:
            response.grant_types = request.grant_types
        if request.response_types:
            response.response_types = request.response_types
        return response

    async def revoke(self, form: Mapping[str, str]) -> bool:
        """Best-effort forward of a revocation request to the provider."""
        forwarded = await self._provider.revoke(form)
        if not forwarded:
            logger.info("Revocation not forwarded (no endpoint or upstream failure)")
        return forwarded

    async def sweep_transactions(self) -> int:
        removed = await self._store.sweep_transactions(
            self._settings.transaction_ttl_seconds
        )
        if removed:
            logger.info("Swept %d expired transactions", removed)
        return removed


__all__ = ["OAuthFlowService", "with_query"]
