"""Encryption at rest for records kept in the durable key-value store."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from typing import Any, Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet


def _derive_key(secret: str) -> bytes:
    """Use a 32-byte base64url key as-is; hash anything else into one."""
    try:
        raw = base64.urlsafe_b64decode(secret + "=" * (-len(secret) % 4))
    except (binascii.Error, ValueError):
        raw = b""
    if len(raw) != 32:
        raw = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(raw)


class TokenCipherService:
    """Seal JSON-serializable records with Fernet.

    The first secret encrypts; every secret is tried on decrypt, so a new
    secret can be prepended while records written under the old one remain
    readable.
    """

    def __init__(self, *, secret: str, previous_secrets: Sequence[str] = ()) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        keys = [Fernet(_derive_key(item)) for item in (secret, *previous_secrets) if item]
        self._fernet = MultiFernet(keys)

    @classmethod
    def from_setting(cls, value: str) -> "TokenCipherService":
        """Build from a comma-separated ``current,previous...`` setting."""
        secrets = [item.strip() for item in value.split(",") if item.strip()]
        if not secrets:
            raise ValueError("Token encryption secret must be provided.")
        return cls(secret=secrets[0], previous_secrets=secrets[1:])

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError) as exc:
            raise ValueError(
                "Failed to decrypt record; invalid ciphertext or unknown secret."
            ) from exc
        return plaintext.decode("utf-8")

    def seal(self, value: Any) -> str:
        """Serialize ``value`` as compact JSON and encrypt it."""
        return self.encrypt(json.dumps(value, separators=(",", ":")))

    def unseal(self, ciphertext: str) -> Any:
        return json.loads(self.decrypt(ciphertext))


__all__ = ["TokenCipherService"]
