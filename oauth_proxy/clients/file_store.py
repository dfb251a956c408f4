"""File-backed token store for single-process development deployments."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from oauth_proxy.clients.memory_store import MemoryTokenStore
from oauth_proxy.clients.token_store import (
    DEFAULT_CODE_TTL,
    DEFAULT_TRANSACTION_TTL,
    PersistenceError,
    TokenStore,
)
from oauth_proxy.core.logging import mask_token
from oauth_proxy.models.tokens import ProviderTokens, RsRecord, Transaction

logger = logging.getLogger(__name__)


class FileTokenStore(TokenStore):
    """Memory store whose RS records are snapshotted to a JSON file.

    The in-memory index is the source of truth. After every RS mutation the
    whole ``{"records": [...]}`` document is written to a temporary sibling and
    swapped into place, so readers never observe a partial file. The snapshot
    is taken on the event loop and written from a worker thread; a lock keeps
    concurrent writes in order. Transactions and codes are short-lived and stay
    in memory only.
    """

    def __init__(self, path: str | os.PathLike[str], *, memory: Optional[MemoryTokenStore] = None) -> None:
        self._path = Path(path)
        self._memory = memory or MemoryTokenStore()
        self._write_lock = asyncio.Lock()
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            logger.info("Token file %s does not exist yet; starting empty", self._path)
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Could not read token file %s: %s", self._path, exc)
            return
        raw_records = data.get("records") if isinstance(data, dict) else None
        if not isinstance(raw_records, list):
            logger.warning("Token file %s has an invalid format; ignoring", self._path)
            return

        loaded = 0
        for raw in raw_records:
            try:
                record = RsRecord.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Skipping malformed token record: %s", exc)
                continue
            self._memory.load_record(record)
            loaded += 1
        logger.info("Loaded %d RS token records from %s", loaded, self._path)

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "records": [
                record.model_dump(mode="json") for record in self._memory.records()
            ]
        }

    def _flush(self, document: Dict[str, Any]) -> None:
        """Write ``document`` over the token file; raises ``OSError`` on failure."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            os.replace(tmp_name, self._path)
        except OSError:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    async def _persist(self, record: Optional[RsRecord]) -> Optional[RsRecord]:
        try:
            async with self._write_lock:
                await asyncio.to_thread(self._flush, self._snapshot())
        except OSError as exc:
            raise PersistenceError(
                f"Failed to write token file {self._path}: {exc}", record=record
            ) from exc
        return record

    async def store_rs_mapping(
        self,
        rs_access_token: str,
        provider_tokens: ProviderTokens,
        rs_refresh_token: Optional[str] = None,
    ) -> RsRecord:
        record = await self._memory.store_rs_mapping(
            rs_access_token, provider_tokens, rs_refresh_token
        )
        logger.debug("Stored RS mapping %s", mask_token(record.rs_access_token))
        return await self._persist(record)  # type: ignore[return-value]

    async def get_by_rs_access(self, rs_access_token: str) -> Optional[RsRecord]:
        return await self._memory.get_by_rs_access(rs_access_token)

    async def get_by_rs_refresh(self, rs_refresh_token: str) -> Optional[RsRecord]:
        return await self._memory.get_by_rs_refresh(rs_refresh_token)

    async def update_by_rs_refresh(
        self,
        rs_refresh_token: str,
        provider_tokens: ProviderTokens,
        new_rs_access_token: Optional[str] = None,
    ) -> Optional[RsRecord]:
        record = await self._memory.update_by_rs_refresh(
            rs_refresh_token, provider_tokens, new_rs_access_token
        )
        if record is None:
            return None
        return await self._persist(record)

    async def save_transaction(
        self, transaction: Transaction, ttl_seconds: int = DEFAULT_TRANSACTION_TTL
    ) -> None:
        await self._memory.save_transaction(transaction, ttl_seconds)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return await self._memory.get_transaction(transaction_id)

    async def delete_transaction(self, transaction_id: str) -> None:
        await self._memory.delete_transaction(transaction_id)

    async def save_code(
        self, code: str, transaction_id: str, ttl_seconds: int = DEFAULT_CODE_TTL
    ) -> None:
        await self._memory.save_code(code, transaction_id, ttl_seconds)

    async def get_txn_id_by_code(self, code: str) -> Optional[str]:
        return await self._memory.get_txn_id_by_code(code)

    async def consume_code(self, code: str) -> Optional[str]:
        return await self._memory.consume_code(code)

    async def delete_code(self, code: str) -> None:
        await self._memory.delete_code(code)

    async def sweep_transactions(
        self, max_age_seconds: int = DEFAULT_TRANSACTION_TTL
    ) -> int:
        return await self._memory.sweep_transactions(max_age_seconds)


__all__ = ["FileTokenStore"]
