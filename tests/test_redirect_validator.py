try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from oauth_proxy.core.errors import InvalidRequestError
from oauth_proxy.utils.redirects import RedirectValidator

DEFAULT = "alice://oauth/callback"


def _validator(**kwargs) -> RedirectValidator:
    kwargs.setdefault("default_redirect_uri", DEFAULT)
    kwargs.setdefault("allowlist", ("https://client.example.com/cb",))
    return RedirectValidator(**kwargs)


def test_allowlisted_uri_is_accepted_ignoring_query() -> None:
    validator = _validator()

    assert validator.is_allowed("https://client.example.com/cb")
    assert validator.is_allowed("https://client.example.com/cb?tab=1")
    assert validator.resolve("https://client.example.com/cb") == "https://client.example.com/cb"


def test_default_redirect_is_always_allowed() -> None:
    validator = _validator(allowlist=())

    assert validator.is_allowed(DEFAULT)
    assert validator.resolve(None) == DEFAULT


def test_unlisted_uri_falls_back_to_default() -> None:
    validator = _validator()

    assert not validator.is_allowed("https://evil.example.com/cb")
    assert validator.resolve("https://evil.example.com/cb") == DEFAULT


def test_strict_mode_rejects_unlisted_uri() -> None:
    validator = _validator(strict=True)

    with pytest.raises(InvalidRequestError) as excinfo:
        validator.resolve("https://evil.example.com/cb")

    assert excinfo.value.to_payload()["error"] == "invalid_request"


def test_loopback_allowed_only_in_development() -> None:
    dev = _validator(development=True)
    prod = _validator(development=False)

    for uri in ("http://localhost:8765/cb", "http://127.0.0.1/cb", "http://[::1]:9000/cb"):
        assert dev.is_allowed(uri)
        assert not prod.is_allowed(uri)


def test_allow_all_accepts_any_absolute_uri() -> None:
    validator = _validator(allow_all=True)

    assert validator.is_allowed("https://anything.example.org/path")
    assert not validator.is_allowed("relative/path")
    assert not validator.is_allowed("")
