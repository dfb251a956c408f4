"""
DynamoDB-backed token store for multi-instance deployments.

Items are keyed by ``pk``/``sk``:

- ``rs#access#<token>`` / ``rs#refresh#<token>`` with sort key ``rs``
- ``txn#<id>`` with sort key ``txn``
- ``code#<code>`` with sort key ``code``

The serialized record lives under ``data`` (Fernet-sealed when a cipher is
configured) and short-lived items carry a ``ttl`` attribute in epoch seconds
for DynamoDB's native expiry. Because native expiry is lazy, reads also check
``ttl``. A transaction's ``ttl`` is derived from its ``created_at`` so updating
it never extends its lifetime.

Concurrent rotations of the same refresh token are last-write-wins: the stored
provider tokens converge on whichever write lands last, and an access token
that lost the race is detected on read because the refresh item no longer
points at it. Authorization codes are claimed with a single conditional delete,
so exactly one redemption wins.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from oauth_proxy.clients.token_store import (
    DEFAULT_CODE_TTL,
    DEFAULT_TRANSACTION_TTL,
    PersistenceError,
    TokenStore,
    TokenStoreError,
)
from oauth_proxy.core.config import StorageSettings
from oauth_proxy.core.logging import mask_token
from oauth_proxy.models.tokens import ProviderTokens, RsRecord, Transaction, now_ms
from oauth_proxy.utils.pkce import generate_opaque_token

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from oauth_proxy.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)

_BOTO_ERRORS = (BotoCoreError, ClientError)


def _access_key(token: str) -> Dict[str, str]:
    return {"pk": f"rs#access#{token}", "sk": "rs"}


def _refresh_key(token: str) -> Dict[str, str]:
    return {"pk": f"rs#refresh#{token}", "sk": "rs"}


def _txn_key(transaction_id: str) -> Dict[str, str]:
    return {"pk": f"txn#{transaction_id}", "sk": "txn"}


def _code_key(code: str) -> Dict[str, str]:
    return {"pk": f"code#{code}", "sk": "code"}


class DynamoDBTokenStore(TokenStore):
    """Token store persisting every record as a DynamoDB item."""

    def __init__(
        self,
        *,
        table: Any,
        cipher: Optional[TokenCipherService] = None,
    ) -> None:
        self._table = table
        self._cipher = cipher

    @classmethod
    def from_settings(
        cls, settings: StorageSettings, *, cipher: Optional[TokenCipherService] = None
    ) -> "DynamoDBTokenStore":
        if not settings.dynamodb_table_name:
            raise ValueError("DYNAMODB_TABLE_NAME is required for the dynamodb backend.")
        resource = boto3.resource("dynamodb", region_name=settings.region_name)
        return cls(table=resource.Table(settings.dynamodb_table_name), cipher=cipher)

    # -- serialization -------------------------------------------------

    def _encode(self, value: Dict[str, Any]) -> str:
        if self._cipher is not None:
            return self._cipher.seal(value)
        return json.dumps(value, separators=(",", ":"))

    def _decode(self, raw: str) -> Optional[Dict[str, Any]]:
        try:
            if self._cipher is not None:
                return self._cipher.unseal(raw)
            return json.loads(raw)
        except ValueError as exc:
            logger.warning("Discarding undecodable token store item: %s", exc)
            return None

    # -- raw item access -----------------------------------------------

    async def _get(self, key: Dict[str, str]) -> Optional[Dict[str, Any]]:
        def _execute() -> Optional[Dict[str, Any]]:
            response = self._table.get_item(Key=key)
            return response.get("Item")

        try:
            item = await asyncio.to_thread(_execute)
        except _BOTO_ERRORS as exc:
            raise TokenStoreError(f"DynamoDB read failed for {key['pk'][:12]}: {exc}") from exc
        if not item:
            return None
        return self._live_data(item)

    def _live_data(self, item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        expires = item.get("ttl")
        if expires is not None and int(expires) <= int(time.time()):
            return None
        return self._decode(item.get("data", ""))

    async def _put(
        self,
        key: Dict[str, str],
        value: Dict[str, Any],
        *,
        expires_at: Optional[int] = None,
    ) -> None:
        item: Dict[str, Any] = {**key, "data": self._encode(value)}
        if expires_at is not None:
            item["ttl"] = expires_at
        await asyncio.to_thread(self._table.put_item, Item=item)

    async def _delete(self, key: Dict[str, str]) -> None:
        await asyncio.to_thread(self._table.delete_item, Key=key)

    async def _write_record(
        self, record: RsRecord, *, stale_access_token: Optional[str] = None
    ) -> RsRecord:
        payload = record.model_dump(mode="json")
        try:
            await self._put(_access_key(record.rs_access_token), payload)
            await self._put(_refresh_key(record.rs_refresh_token), payload)
            # Reads verify against the refresh item, so a stale access item
            # left behind by a failed delete never resolves.
            if stale_access_token and stale_access_token != record.rs_access_token:
                await self._delete(_access_key(stale_access_token))
        except _BOTO_ERRORS as exc:
            raise PersistenceError(
                f"DynamoDB write failed for {mask_token(record.rs_access_token)}: {exc}",
                record=record,
            ) from exc
        return record

    # -- RS records ----------------------------------------------------

    async def store_rs_mapping(
        self,
        rs_access_token: str,
        provider_tokens: ProviderTokens,
        rs_refresh_token: Optional[str] = None,
    ) -> RsRecord:
        if rs_refresh_token:
            rotated = await self.update_by_rs_refresh(
                rs_refresh_token, provider_tokens, rs_access_token
            )
            if rotated is not None:
                return rotated
        record = RsRecord(
            rs_access_token=rs_access_token,
            rs_refresh_token=rs_refresh_token or generate_opaque_token(),
            spotify=provider_tokens,
        )
        return await self._write_record(record)

    async def get_by_rs_access(self, rs_access_token: str) -> Optional[RsRecord]:
        if not rs_access_token:
            return None
        data = await self._get(_access_key(rs_access_token))
        if data is None:
            return None
        record = RsRecord.model_validate(data)
        # The refresh item is authoritative; an access item it no longer
        # points at is a leftover from a concurrent rotation.
        current = await self.get_by_rs_refresh(record.rs_refresh_token)
        if current is None or current.rs_access_token != rs_access_token:
            return None
        return current

    async def get_by_rs_refresh(self, rs_refresh_token: str) -> Optional[RsRecord]:
        if not rs_refresh_token:
            return None
        data = await self._get(_refresh_key(rs_refresh_token))
        return RsRecord.model_validate(data) if data is not None else None

    async def update_by_rs_refresh(
        self,
        rs_refresh_token: str,
        provider_tokens: ProviderTokens,
        new_rs_access_token: Optional[str] = None,
    ) -> Optional[RsRecord]:
        existing = await self.get_by_rs_refresh(rs_refresh_token)
        if existing is None:
            return None
        next_record = existing.model_copy(
            update={"spotify": provider_tokens.model_copy(deep=True)}
        )
        if new_rs_access_token and new_rs_access_token != existing.rs_access_token:
            next_record.rs_access_token = new_rs_access_token
            next_record.created_at = now_ms()
        return await self._write_record(
            next_record, stale_access_token=existing.rs_access_token
        )

    # -- transactions and codes ----------------------------------------

    async def save_transaction(
        self, transaction: Transaction, ttl_seconds: int = DEFAULT_TRANSACTION_TTL
    ) -> None:
        try:
            await self._put(
                _txn_key(transaction.id),
                transaction.model_dump(mode="json"),
                expires_at=transaction.created_at // 1000 + ttl_seconds,
            )
        except _BOTO_ERRORS as exc:
            raise PersistenceError(f"DynamoDB transaction write failed: {exc}") from exc

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        data = await self._get(_txn_key(transaction_id))
        return Transaction.model_validate(data) if data is not None else None

    async def delete_transaction(self, transaction_id: str) -> None:
        try:
            await self._delete(_txn_key(transaction_id))
        except _BOTO_ERRORS as exc:
            raise PersistenceError(f"DynamoDB transaction delete failed: {exc}") from exc

    async def save_code(
        self, code: str, transaction_id: str, ttl_seconds: int = DEFAULT_CODE_TTL
    ) -> None:
        try:
            await self._put(
                _code_key(code),
                {"tid": transaction_id},
                expires_at=int(time.time()) + ttl_seconds,
            )
        except _BOTO_ERRORS as exc:
            raise PersistenceError(f"DynamoDB code write failed: {exc}") from exc

    async def get_txn_id_by_code(self, code: str) -> Optional[str]:
        if not code:
            return None
        data = await self._get(_code_key(code))
        if not data:
            return None
        return data.get("tid") or None

    async def consume_code(self, code: str) -> Optional[str]:
        if not code:
            return None

        def _execute() -> Optional[Dict[str, Any]]:
            try:
                response = self._table.delete_item(
                    Key=_code_key(code),
                    ConditionExpression="attribute_exists(pk)",
                    ReturnValues="ALL_OLD",
                )
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                    return None
                raise
            return response.get("Attributes")

        try:
            item = await asyncio.to_thread(_execute)
        except _BOTO_ERRORS as exc:
            raise TokenStoreError(f"DynamoDB code claim failed: {exc}") from exc
        data = self._live_data(item) if item else None
        if not data:
            return None
        return data.get("tid") or None

    async def delete_code(self, code: str) -> None:
        try:
            await self._delete(_code_key(code))
        except _BOTO_ERRORS as exc:
            raise PersistenceError(f"DynamoDB code delete failed: {exc}") from exc


__all__ = ["DynamoDBTokenStore"]
