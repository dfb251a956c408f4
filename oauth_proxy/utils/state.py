"""
Composite state envelope carried through the provider's ``state`` parameter.

The provider redirect is the only thing that survives the round trip, so the
envelope holds everything needed to resume the flow: the transaction id, the
client's own state, the client's redirect URI and the agent session id.
"""

from __future__ import annotations

import binascii
import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from oauth_proxy.utils.pkce import b64url, b64url_decode

ENVELOPE_VERSION = 1


class CompositeState(BaseModel):
    """Decoded envelope. Unknown keys from newer versions are ignored."""

    model_config = ConfigDict(extra="ignore")

    v: int = ENVELOPE_VERSION
    tid: str
    cs: Optional[str] = None
    cr: Optional[str] = None
    sid: Optional[str] = None

    @property
    def transaction_id(self) -> str:
        return self.tid

    @property
    def client_state(self) -> Optional[str]:
        return self.cs

    @property
    def client_redirect_uri(self) -> Optional[str]:
        return self.cr


class CompositeStateCodec:
    """Encode and decode the versioned composite state envelope."""

    def encode(
        self,
        *,
        transaction_id: str,
        client_state: Optional[str] = None,
        client_redirect_uri: Optional[str] = None,
        sid: Optional[str] = None,
    ) -> str:
        payload: Dict[str, Any] = {"v": ENVELOPE_VERSION, "tid": transaction_id}
        if client_state is not None:
            payload["cs"] = client_state
        if client_redirect_uri is not None:
            payload["cr"] = client_redirect_uri
        if sid is not None:
            payload["sid"] = sid
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        return b64url(serialized.encode("utf-8"))

    def decode(self, value: str) -> Optional[CompositeState]:
        """Return the envelope, or ``None`` when ``value`` is not one."""
        if not value:
            return None
        try:
            raw = json.loads(b64url_decode(value).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return None
        if not isinstance(raw, dict):
            return None
        # Envelopes minted before versioning carry no "v" key.
        raw.setdefault("v", ENVELOPE_VERSION)
        try:
            return CompositeState.model_validate(raw)
        except ValidationError:
            return None

    def resolve(self, value: str) -> CompositeState:
        """Decode ``value``, treating anything undecodable as a bare transaction id."""
        decoded = self.decode(value)
        if decoded is not None:
            return decoded
        return CompositeState(tid=value)


__all__ = ["CompositeState", "CompositeStateCodec", "ENVELOPE_VERSION"]
