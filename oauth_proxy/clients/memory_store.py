"""In-process token store used for development, tests and the file backend."""

from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional, Tuple

from oauth_proxy.clients.token_store import (
    DEFAULT_CODE_TTL,
    DEFAULT_TRANSACTION_TTL,
    TokenStore,
)
from oauth_proxy.models.tokens import ProviderTokens, RsRecord, Transaction
from oauth_proxy.utils.pkce import generate_opaque_token


class MemoryTokenStore(TokenStore):
    """Dict-backed store with expiry timestamps on transactions and codes.

    ``clock`` returns epoch seconds and is injectable for expiry tests.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._by_access: Dict[str, RsRecord] = {}
        self._by_refresh: Dict[str, RsRecord] = {}
        self._transactions: Dict[str, Tuple[Transaction, float]] = {}
        self._codes: Dict[str, Tuple[str, float]] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _expiry(self, ttl_seconds: int) -> float:
        return self._clock() + ttl_seconds

    def _alive(self, expires_at: float) -> bool:
        return self._clock() < expires_at

    def records(self) -> List[RsRecord]:
        """Snapshot of live records, one per refresh token."""
        return [record.model_copy(deep=True) for record in self._by_refresh.values()]

    def load_record(self, record: RsRecord) -> None:
        """Index a record loaded from durable storage."""
        stale = self._by_refresh.get(record.rs_refresh_token)
        if stale is not None:
            self._by_access.pop(stale.rs_access_token, None)
        self._by_access[record.rs_access_token] = record
        self._by_refresh[record.rs_refresh_token] = record

    async def store_rs_mapping(
        self,
        rs_access_token: str,
        provider_tokens: ProviderTokens,
        rs_refresh_token: Optional[str] = None,
    ) -> RsRecord:
        if rs_refresh_token and rs_refresh_token in self._by_refresh:
            return self._rotate(rs_refresh_token, provider_tokens, rs_access_token)

        record = RsRecord(
            rs_access_token=rs_access_token,
            rs_refresh_token=rs_refresh_token or generate_opaque_token(),
            spotify=provider_tokens.model_copy(deep=True),
            created_at=self._now_ms(),
        )
        self._by_access[record.rs_access_token] = record
        self._by_refresh[record.rs_refresh_token] = record
        return record.model_copy(deep=True)

    async def get_by_rs_access(self, rs_access_token: str) -> Optional[RsRecord]:
        record = self._by_access.get(rs_access_token) if rs_access_token else None
        return record.model_copy(deep=True) if record else None

    async def get_by_rs_refresh(self, rs_refresh_token: str) -> Optional[RsRecord]:
        record = self._by_refresh.get(rs_refresh_token) if rs_refresh_token else None
        return record.model_copy(deep=True) if record else None

    async def update_by_rs_refresh(
        self,
        rs_refresh_token: str,
        provider_tokens: ProviderTokens,
        new_rs_access_token: Optional[str] = None,
    ) -> Optional[RsRecord]:
        if not rs_refresh_token or rs_refresh_token not in self._by_refresh:
            return None
        return self._rotate(rs_refresh_token, provider_tokens, new_rs_access_token)

    def _rotate(
        self,
        rs_refresh_token: str,
        provider_tokens: ProviderTokens,
        new_rs_access_token: Optional[str],
    ) -> RsRecord:
        record = self._by_refresh[rs_refresh_token]
        if new_rs_access_token and new_rs_access_token != record.rs_access_token:
            self._by_access.pop(record.rs_access_token, None)
            record.rs_access_token = new_rs_access_token
            record.created_at = self._now_ms()
        record.spotify = provider_tokens.model_copy(deep=True)
        self._by_access[record.rs_access_token] = record
        self._by_refresh[rs_refresh_token] = record
        return record.model_copy(deep=True)

    async def save_transaction(
        self, transaction: Transaction, ttl_seconds: int = DEFAULT_TRANSACTION_TTL
    ) -> None:
        existing = self._transactions.get(transaction.id)
        if existing is not None and self._alive(existing[1]):
            expires_at = existing[1]
        else:
            expires_at = self._expiry(ttl_seconds)
        self._transactions[transaction.id] = (
            transaction.model_copy(deep=True),
            expires_at,
        )

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        entry = self._transactions.get(transaction_id)
        if entry is None:
            return None
        transaction, expires_at = entry
        if not self._alive(expires_at):
            self._transactions.pop(transaction_id, None)
            return None
        return transaction.model_copy(deep=True)

    async def delete_transaction(self, transaction_id: str) -> None:
        self._transactions.pop(transaction_id, None)

    async def save_code(
        self, code: str, transaction_id: str, ttl_seconds: int = DEFAULT_CODE_TTL
    ) -> None:
        self._codes[code] = (transaction_id, self._expiry(ttl_seconds))

    async def get_txn_id_by_code(self, code: str) -> Optional[str]:
        entry = self._codes.get(code)
        if entry is None:
            return None
        transaction_id, expires_at = entry
        if not self._alive(expires_at):
            self._codes.pop(code, None)
            return None
        return transaction_id

    async def consume_code(self, code: str) -> Optional[str]:
        entry = self._codes.pop(code, None) if code else None
        if entry is None:
            return None
        transaction_id, expires_at = entry
        return transaction_id if self._alive(expires_at) else None

    async def delete_code(self, code: str) -> None:
        self._codes.pop(code, None)

    async def sweep_transactions(
        self, max_age_seconds: int = DEFAULT_TRANSACTION_TTL
    ) -> int:
        cutoff_ms = self._now_ms() - max_age_seconds * 1000
        removed = 0
        # Iterate over a copy; a concurrent token exchange may delete entries.
        for transaction_id, (transaction, expires_at) in list(self._transactions.items()):
            if transaction.created_at < cutoff_ms or not self._alive(expires_at):
                if self._transactions.pop(transaction_id, None) is not None:
                    removed += 1
        for code, (_, expires_at) in list(self._codes.items()):
            if not self._alive(expires_at):
                self._codes.pop(code, None)
        return removed


__all__ = ["MemoryTokenStore"]
