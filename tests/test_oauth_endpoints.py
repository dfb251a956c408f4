try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from oauth_proxy import dependencies
from oauth_proxy.clients.memory_store import MemoryTokenStore
from oauth_proxy.clients.spotify_auth import SpotifyOAuthClient
from oauth_proxy.core.config import AppSettings, OAuthSettings, ProviderSettings
from oauth_proxy.main import app
from oauth_proxy.services.oauth_flow import OAuthFlowService
from oauth_proxy.services.sessions import MemorySessionStore
from oauth_proxy.utils.redirects import RedirectValidator
from oauth_proxy.utils.state import CompositeStateCodec

pytestmark = pytest.mark.anyio("asyncio")

VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
CLIENT_CB = "https://client/cb"
DEFAULT_CB = "alice://oauth/callback"


class FakeSpotify:
    """Stands in for the accounts service behind httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/revoke":
            return httpx.Response(200)
        if self.token_status != 200:
            return httpx.Response(self.token_status, json={"error": "server_error"})
        return httpx.Response(
            200,
            json={
                "access_token": "sp-access",
                "refresh_token": "sp-refresh",
                "expires_in": 3600,
                "scope": "user-read-email",
            },
        )


class ExplodingFlow:
    async def exchange_token(self, request):
        raise RuntimeError("store offline")


def _query(url: str) -> dict:
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


@pytest.fixture()
def overrides():
    spotify = FakeSpotify()
    store = MemoryTokenStore()
    oauth_settings = OAuthSettings(
        redirect_uri=DEFAULT_CB,
        redirect_allowlist_raw=CLIENT_CB,
        scopes="user-read-email playlist-read-private",
    )
    settings = AppSettings(
        environment="production",
        public_base_url=None,
        resource_uri=None,
        discovery_url=None,
        oauth=oauth_settings,
    )
    provider = SpotifyOAuthClient(
        ProviderSettings(
            client_id="client-123",
            client_secret="secret-456",
            accounts_url="https://accounts.example.com",
        ),
        revocation_url="https://accounts.example.com/revoke",
        transport=httpx.MockTransport(spotify),
    )
    flow = OAuthFlowService(
        store=store,
        provider=provider,
        redirect_validator=RedirectValidator(
            default_redirect_uri=DEFAULT_CB, allowlist=oauth_settings.redirect_allowlist
        ),
        state_codec=CompositeStateCodec(),
        oauth_settings=oauth_settings,
        session_store=MemorySessionStore(),
    )

    app.dependency_overrides.update(
        {
            dependencies.get_app_settings: lambda: settings,
            dependencies.get_oauth_flow_service: lambda: flow,
        }
    )

    yield {"spotify": spotify, "store": store, "settings": settings}

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(overrides):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as async_client:
        yield async_client


async def _authorize(client: httpx.AsyncClient, **params) -> httpx.Response:
    query = {
        "code_challenge": CHALLENGE,
        "code_challenge_method": "S256",
        "redirect_uri": CLIENT_CB,
        "state": "original-state",
    }
    query.update(params)
    return await client.get("/authorize", params=query)


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_authorization_server_metadata(client):
    response = await client.get("/.well-known/oauth-authorization-server")

    assert response.status_code == 200
    assert response.json() == {
        "issuer": "http://testserver",
        "authorization_endpoint": "http://testserver/authorize",
        "token_endpoint": "http://testserver/token",
        "revocation_endpoint": "http://testserver/revoke",
        "registration_endpoint": "http://testserver/register",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "code_challenge_methods_supported": ["S256"],
        "token_endpoint_auth_methods_supported": ["none"],
        "scopes_supported": ["user-read-email", "playlist-read-private"],
    }


async def test_protected_resource_metadata(overrides, client):
    response = await client.get("/.well-known/oauth-protected-resource")
    assert response.json() == {
        "authorization_servers": ["http://testserver"],
        "resource": "http://testserver/mcp",
    }

    settings = overrides["settings"]
    settings.resource_uri = "https://mcp.example.com/mcp"
    settings.discovery_url = "https://auth.example.com"
    settings.public_base_url = "https://proxy.example.com/"
    response = await client.get("/.well-known/oauth-protected-resource", params={"sid": "s 1"})
    assert response.json() == {
        "authorization_servers": ["https://auth.example.com"],
        "resource": "https://mcp.example.com/mcp?sid=s+1",
    }

    metadata = await client.get("/.well-known/oauth-authorization-server")
    assert metadata.json()["token_endpoint"] == "https://proxy.example.com/token"


async def test_full_authorization_code_flow(overrides, client):
    authorize = await _authorize(client)

    assert authorize.status_code == 302
    location = authorize.headers["location"]
    assert location.startswith("https://accounts.example.com/authorize?")
    provider_query = _query(location)
    assert provider_query["redirect_uri"] == "http://testserver/spotify/callback"
    envelope = CompositeStateCodec().decode(provider_query["state"])
    assert envelope.client_redirect_uri == CLIENT_CB

    callback = await client.get(
        "/spotify/callback", params={"code": "abc", "state": provider_query["state"]}
    )

    assert callback.status_code == 302
    client_location = callback.headers["location"]
    assert client_location.startswith(f"{CLIENT_CB}?")
    client_query = _query(client_location)
    assert client_query["state"] == "original-state"
    exchange = overrides["spotify"].requests[-1]
    assert parse_qs(exchange.content.decode())["code"] == ["abc"]

    token = await client.post(
        "/token",
        data={
            "grant_type": "authorization_code",
            "code": client_query["code"],
            "code_verifier": VERIFIER,
        },
    )

    assert token.status_code == 200
    assert token.headers["cache-control"] == "no-store"
    body = token.json()
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == 3600
    assert body["scope"] == "user-read-email"
    assert set(body) == {"access_token", "refresh_token", "token_type", "expires_in", "scope"}

    replay = await client.post(
        "/token",
        data={
            "grant_type": "authorization_code",
            "code": client_query["code"],
            "code_verifier": VERIFIER,
        },
    )
    assert replay.status_code == 400
    assert replay.json() == {"error": "invalid_grant"}

    refreshed = await client.post(
        "/token",
        json={"grant_type": "refresh_token", "refresh_token": body["refresh_token"]},
    )
    assert refreshed.status_code == 200
    assert refreshed.json()["refresh_token"] == body["refresh_token"]
    assert refreshed.json()["access_token"] != body["access_token"]
    store = overrides["store"]
    assert await store.get_by_rs_access(body["access_token"]) is None


async def test_authorize_rejects_bad_method(client):
    response = await _authorize(client, code_challenge_method="plain")

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


async def test_callback_requires_code_and_state(client):
    response = await client.get("/spotify/callback", params={"state": "x"})

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


async def test_callback_reports_provider_failures(overrides, client):
    denied = await client.get("/spotify/callback", params={"error": "access_denied"})
    assert denied.status_code == 502
    assert denied.json()["error"] == "provider_error"

    overrides["spotify"].token_status = 503
    authorize = await _authorize(client)
    state = _query(authorize.headers["location"])["state"]
    failed = await client.get("/spotify/callback", params={"code": "abc", "state": state})

    assert failed.status_code == 502
    assert failed.json()["error"] == "provider_error"
    assert failed.json()["provider_status"] == 503


async def test_token_errors(client):
    unsupported = await client.post("/token", data={"grant_type": "password"})
    assert unsupported.status_code == 400
    assert unsupported.json() == {"error": "unsupported_grant_type"}

    unknown = await client.post(
        "/token", json={"grant_type": "refresh_token", "refresh_token": "nope"}
    )
    assert unknown.status_code == 400
    assert unknown.json() == {"error": "invalid_grant"}
    assert unknown.headers["cache-control"] == "no-store"

    malformed = await client.post(
        "/token", content=b"[1, 2]", headers={"content-type": "application/json"}
    )
    assert malformed.status_code == 400
    assert malformed.json()["error"] == "invalid_request"


async def test_revoke_forwards_and_always_succeeds(overrides, client):
    response = await client.post("/revoke", data={"token": "rs-token"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    forwarded = overrides["spotify"].requests[-1]
    assert forwarded.url.path == "/revoke"
    assert parse_qs(forwarded.content.decode()) == {"token": ["rs-token"]}


async def test_register_returns_created_client(client):
    response = await client.post(
        "/register", json={"redirect_uris": [CLIENT_CB], "client_name": "agent"}
    )

    assert response.status_code == 201
    body = response.json()
    assert body["client_id"]
    assert body["redirect_uris"] == [CLIENT_CB]
    assert body["token_endpoint_auth_method"] == "none"

    empty = await client.post("/register")
    assert empty.status_code == 201
    assert empty.json()["redirect_uris"] == [DEFAULT_CB]


async def test_unexpected_errors_render_server_error(overrides):
    app.dependency_overrides[dependencies.get_oauth_flow_service] = lambda: ExplodingFlow()
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://testserver",
    ) as client:
        response = await client.post("/token", data={"grant_type": "refresh_token"})

    assert response.status_code == 500
    assert response.json() == {"error": "server_error"}
