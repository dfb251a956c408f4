"""
Storage contract for RS token records, PKCE transactions and authorization
codes.

Every operation is a coroutine and may be invoked concurrently. Backends do
not lock across calls: each mutation locates the current record by its present
key before re-indexing it, which keeps the "one live access token per refresh
token" rule intact within a process. Remote backends are last-write-wins for
RS records; authorization codes are redeemed through an atomic claim.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Optional

from oauth_proxy.models.tokens import ProviderTokens, RsRecord, Transaction

DEFAULT_TRANSACTION_TTL = 600
DEFAULT_CODE_TTL = 600

logger = logging.getLogger(__name__)


class TokenStoreError(RuntimeError):
    """Base error for token store failures."""


class PersistenceError(TokenStoreError):
    """The mutation was applied but could not be made durable.

    ``record`` carries the result of the mutation so callers can choose to log
    and continue with it instead of failing the request.
    """

    def __init__(self, message: str, *, record: Optional[RsRecord] = None) -> None:
        super().__init__(message)
        self.record = record


class TokenStore(ABC):
    """Asynchronous CRUD over RS records, transactions and codes."""

    @abstractmethod
    async def store_rs_mapping(
        self,
        rs_access_token: str,
        provider_tokens: ProviderTokens,
        rs_refresh_token: Optional[str] = None,
    ) -> RsRecord:
        """Bind a new RS access token to provider tokens.

        An existing ``rs_refresh_token`` is rotated in place rather than
        duplicated; a missing one is minted.
        """

    @abstractmethod
    async def get_by_rs_access(self, rs_access_token: str) -> Optional[RsRecord]:
        ...

    @abstractmethod
    async def get_by_rs_refresh(self, rs_refresh_token: str) -> Optional[RsRecord]:
        ...

    @abstractmethod
    async def update_by_rs_refresh(
        self,
        rs_refresh_token: str,
        provider_tokens: ProviderTokens,
        new_rs_access_token: Optional[str] = None,
    ) -> Optional[RsRecord]:
        """Replace provider tokens, optionally rotating the RS access token."""

    @abstractmethod
    async def save_transaction(
        self, transaction: Transaction, ttl_seconds: int = DEFAULT_TRANSACTION_TTL
    ) -> None:
        """Store or update ``transaction``.

        Expiry is anchored to the first save; re-saving an existing
        transaction does not extend its lifetime.
        """

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> None:
        ...

    @abstractmethod
    async def save_code(
        self, code: str, transaction_id: str, ttl_seconds: int = DEFAULT_CODE_TTL
    ) -> None:
        ...

    @abstractmethod
    async def get_txn_id_by_code(self, code: str) -> Optional[str]:
        ...

    @abstractmethod
    async def consume_code(self, code: str) -> Optional[str]:
        """Atomically remove ``code`` and return its transaction id.

        Only the caller that actually removed a live code gets the id back;
        every concurrent or later caller gets ``None``.
        """

    @abstractmethod
    async def delete_code(self, code: str) -> None:
        ...

    async def sweep_transactions(
        self, max_age_seconds: int = DEFAULT_TRANSACTION_TTL
    ) -> int:
        """Drop transactions older than ``max_age_seconds``; returns the count.

        Backends that expire entries natively keep this default no-op.
        """
        return 0


async def tolerant_write(operation: Awaitable[Optional[RsRecord]]) -> Optional[RsRecord]:
    """Await an RS record mutation, logging durability failures instead of raising.

    Availability wins over durability here: the caller keeps serving the
    record that was applied even though it may not survive a restart.
    """
    try:
        return await operation
    except PersistenceError as exc:
        logger.error("RS record not persisted; continuing without durability: %s", exc)
        return exc.record


__all__ = [
    "DEFAULT_CODE_TTL",
    "DEFAULT_TRANSACTION_TTL",
    "PersistenceError",
    "TokenStore",
    "TokenStoreError",
    "tolerant_write",
]
