try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import base64
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from oauth_proxy.clients.spotify_auth import SpotifyOAuthClient, callback_url
from oauth_proxy.core.config import ProviderSettings
from oauth_proxy.core.errors import ProviderError


def _settings(**overrides) -> ProviderSettings:
    values = {
        "client_id": "client-123",
        "client_secret": "secret-456",
        "accounts_url": "https://accounts.example.com",
    }
    values.update(overrides)
    return ProviderSettings(**values)


def test_build_authorization_url_targets_provider() -> None:
    client = SpotifyOAuthClient(_settings())

    url = client.build_authorization_url(
        state="opaque-state",
        redirect_uri=callback_url("https://proxy.example.com/"),
        scope="user-read-email playlist-read-private",
    )

    parts = urlsplit(url)
    query = parse_qs(parts.query)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://accounts.example.com/authorize"
    assert query["client_id"] == ["client-123"]
    assert query["response_type"] == ["code"]
    assert query["redirect_uri"] == ["https://proxy.example.com/spotify/callback"]
    assert query["scope"] == ["user-read-email playlist-read-private"]
    assert query["state"] == ["opaque-state"]


@pytest.mark.asyncio
async def test_exchange_uses_basic_auth_and_form_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"access_token": "sp-access", "refresh_token": "sp-refresh", "expires_in": 3600},
        )

    client = SpotifyOAuthClient(_settings(), transport=httpx.MockTransport(handler))

    payload = await client.exchange_authorization_code(
        "abc", redirect_uri="https://proxy.example.com/spotify/callback"
    )

    assert payload["access_token"] == "sp-access"
    (request,) = seen
    assert str(request.url) == "https://accounts.example.com/api/token"
    expected = base64.b64encode(b"client-123:secret-456").decode()
    assert request.headers["authorization"] == f"Basic {expected}"
    form = parse_qs(request.content.decode())
    assert form == {
        "grant_type": ["authorization_code"],
        "code": ["abc"],
        "redirect_uri": ["https://proxy.example.com/spotify/callback"],
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, retryable",
    [(400, False), (401, False), (429, True), (500, True), (503, True)],
)
async def test_non_success_status_raises_provider_error(status: int, retryable: bool) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text='{"error":"invalid_grant"}')

    client = SpotifyOAuthClient(_settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(ProviderError) as excinfo:
        await client.refresh_token("sp-refresh")

    assert excinfo.value.provider_status == status
    assert excinfo.value.retryable is retryable
    assert "invalid_grant" in excinfo.value.body
    assert excinfo.value.to_payload()["error"] == "provider_error"


@pytest.mark.asyncio
async def test_network_failure_is_retryable_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = SpotifyOAuthClient(_settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(ProviderError) as excinfo:
        await client.refresh_token("sp-refresh")

    assert excinfo.value.provider_status is None
    assert excinfo.value.retryable


@pytest.mark.asyncio
async def test_exchange_without_access_token_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "  "})

    client = SpotifyOAuthClient(_settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(ProviderError):
        await client.exchange_authorization_code("abc", redirect_uri="https://x/cb")


@pytest.mark.asyncio
async def test_refresh_requires_token_and_credentials() -> None:
    client = SpotifyOAuthClient(_settings(client_id=None, client_secret=None))

    assert not client.configured
    with pytest.raises(ProviderError) as excinfo:
        await client.refresh_token("sp-refresh")
    assert not excinfo.value.retryable

    with pytest.raises(ProviderError):
        await SpotifyOAuthClient(_settings()).refresh_token("")


@pytest.mark.asyncio
async def test_revoke_is_best_effort() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502)

    unconfigured = SpotifyOAuthClient(_settings(), transport=httpx.MockTransport(handler))
    failing = SpotifyOAuthClient(
        _settings(),
        revocation_url="https://accounts.example.com/revoke",
        transport=httpx.MockTransport(handler),
    )

    assert await unconfigured.revoke({"token": "t"}) is False
    assert not calls
    assert await failing.revoke({"token": "t"}) is False
    assert len(calls) == 1
