"""PKCE verification and opaque token minting."""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

SUPPORTED_CHALLENGE_METHOD = "S256"


def b64url(data: bytes) -> str:
    """Base64url without padding (RFC 7636 appendix A)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def sha256_b64url(value: str) -> str:
    digest = hashlib.sha256(value.encode("utf-8")).digest()
    return b64url(digest)


def verify_pkce(code_verifier: str, code_challenge: str) -> bool:
    """Check ``base64url(sha256(verifier))`` against the stored challenge."""
    if not code_verifier or not code_challenge:
        return False
    expected = sha256_b64url(code_verifier)
    return hmac.compare_digest(expected.encode("ascii"), code_challenge.encode("utf-8"))


def generate_opaque_token(nbytes: int = 32) -> str:
    """Random URL-safe token, never derived from any provider credential."""
    return b64url(secrets.token_bytes(nbytes))


__all__ = [
    "SUPPORTED_CHALLENGE_METHOD",
    "b64url",
    "b64url_decode",
    "generate_opaque_token",
    "sha256_b64url",
    "verify_pkce",
]
