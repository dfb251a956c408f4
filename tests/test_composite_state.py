try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json

from oauth_proxy.utils.pkce import b64url, b64url_decode
from oauth_proxy.utils.state import ENVELOPE_VERSION, CompositeStateCodec


def test_encode_produces_versioned_envelope() -> None:
    codec = CompositeStateCodec()

    value = codec.encode(
        transaction_id="txn-1",
        client_state="xyz",
        client_redirect_uri="https://client/cb",
        sid="session-9",
    )

    payload = json.loads(b64url_decode(value))
    assert payload == {
        "v": ENVELOPE_VERSION,
        "tid": "txn-1",
        "cs": "xyz",
        "cr": "https://client/cb",
        "sid": "session-9",
    }
    assert "=" not in value


def test_decode_restores_fields() -> None:
    codec = CompositeStateCodec()
    value = codec.encode(transaction_id="txn-2", client_redirect_uri="https://client/cb")

    decoded = codec.decode(value)

    assert decoded is not None
    assert decoded.transaction_id == "txn-2"
    assert decoded.client_redirect_uri == "https://client/cb"
    assert decoded.client_state is None
    assert decoded.sid is None


def test_decode_accepts_unversioned_and_extended_envelopes() -> None:
    codec = CompositeStateCodec()
    legacy = b64url(json.dumps({"tid": "txn-3", "cs": "s"}).encode())
    newer = b64url(json.dumps({"v": 2, "tid": "txn-4", "extra": True}).encode())

    assert codec.decode(legacy).transaction_id == "txn-3"
    assert codec.decode(legacy).v == ENVELOPE_VERSION
    assert codec.decode(newer).transaction_id == "txn-4"


def test_decode_rejects_garbage() -> None:
    codec = CompositeStateCodec()

    assert codec.decode("") is None
    assert codec.decode("not base64 !!") is None
    assert codec.decode(b64url(b"[1, 2]")) is None
    assert codec.decode(b64url(json.dumps({"cs": "no-tid"}).encode())) is None


def test_resolve_falls_back_to_bare_transaction_id() -> None:
    codec = CompositeStateCodec()

    resolved = codec.resolve("plain-transaction-id")

    assert resolved.transaction_id == "plain-transaction-id"
    assert resolved.client_redirect_uri is None
