try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from pathlib import Path

import pytest

from oauth_proxy.clients import DynamoDBTokenStore, FileTokenStore, MemoryTokenStore
from oauth_proxy.core.config import (
    AppSettings,
    OAuthSettings,
    ProviderSettings,
    StorageSettings,
)
from oauth_proxy.core.logging import mask_token
from oauth_proxy.dependencies import build_token_store


def test_backend_resolution() -> None:
    assert StorageSettings(backend=None, tokens_file=None).resolved_backend == "memory"
    assert StorageSettings(backend=None, tokens_file="/tmp/t.json").resolved_backend == "file"
    assert StorageSettings(backend=" DynamoDB ", tokens_file=None).resolved_backend == "dynamodb"


def test_scopes_and_allowlist_are_normalized() -> None:
    settings = OAuthSettings(
        scopes="user-read-email,  playlist-read-private",
        redirect_allowlist_raw="https://a/cb, ,https://b/cb",
    )

    assert settings.scopes == "user-read-email playlist-read-private"
    assert settings.scope_list == ["user-read-email", "playlist-read-private"]
    assert settings.redirect_allowlist == ("https://a/cb", "https://b/cb")


def test_blank_provider_credentials_mean_unconfigured() -> None:
    assert not ProviderSettings(client_id="  ", client_secret="secret").configured
    assert ProviderSettings(client_id="id", client_secret="secret").configured


def test_nested_groups_read_dotenv_file(tmp_path: Path, monkeypatch) -> None:
    (tmp_path / ".env").write_text(
        "SPOTIFY_ACCOUNTS_URL=https://accounts.dotenv.example\n"
        "DYNAMODB_TABLE_NAME=dotenv-table\n",
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SPOTIFY_ACCOUNTS_URL", raising=False)
    monkeypatch.delenv("DYNAMODB_TABLE_NAME", raising=False)

    settings = AppSettings()

    assert settings.provider.accounts_url == "https://accounts.dotenv.example"
    assert settings.storage.dynamodb_table_name == "dotenv-table"


def test_development_detection() -> None:
    assert AppSettings(environment="development").is_development
    assert not AppSettings(environment="production").is_development


def test_build_token_store_selects_backend_once(tmp_path: Path) -> None:
    memory = AppSettings(storage=StorageSettings(backend="memory", tokens_file=None))
    file_backed = AppSettings(
        storage=StorageSettings(backend=None, tokens_file=str(tmp_path / "tokens.json"))
    )

    assert isinstance(build_token_store(memory), MemoryTokenStore)
    assert isinstance(build_token_store(file_backed), FileTokenStore)


def test_build_token_store_rejects_incomplete_configuration() -> None:
    with pytest.raises(ValueError):
        build_token_store(AppSettings(storage=StorageSettings(backend="file", tokens_file=None)))
    with pytest.raises(ValueError):
        build_token_store(
            AppSettings(storage=StorageSettings(backend="dynamodb", dynamodb_table_name=None))
        )
    with pytest.raises(ValueError):
        build_token_store(AppSettings(storage=StorageSettings(backend="redis")))


def test_dynamodb_backend_is_built_from_settings(monkeypatch) -> None:
    created: dict = {}

    class FakeResource:
        def Table(self, name):
            created["table"] = name
            return object()

    def fake_resource(service, region_name=None):
        created["service"] = service
        created["region"] = region_name
        return FakeResource()

    monkeypatch.setattr("oauth_proxy.clients.dynamodb_store.boto3.resource", fake_resource)
    settings = AppSettings(
        storage=StorageSettings(
            backend="dynamodb", dynamodb_table_name="oauth-tokens", region_name="eu-west-1"
        )
    )

    store = build_token_store(settings)

    assert isinstance(store, DynamoDBTokenStore)
    assert created == {"service": "dynamodb", "region": "eu-west-1", "table": "oauth-tokens"}


def test_mask_token() -> None:
    assert mask_token(None) == "<none>"
    assert mask_token("abcdefghijkl") == "abcdef..."
