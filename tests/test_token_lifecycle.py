import asyncio
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from support import TEST_ENDPOINTS, form_of, json_response, mock_client

from lumen.config import Settings
from lumen.crypto.cipher import SecretCipher
from lumen.errors import ConfigMissing, CredentialMissing, DecryptionError
from lumen.oauth.lifecycle import TokenLifecycle
from lumen.oauth.tokens import TokenSet, is_expired
from lumen.store.database import LocalStore

API_URL = "https://api.test/resource"


class FakeGoogle:
    """Token endpoint plus one protected resource."""

    def __init__(self, resource_statuses: list[int] | None = None) -> None:
        self.refreshes: list[dict[str, str]] = []
        self.resource_calls: list[str] = []
        self.resource_statuses = list(resource_statuses or [])
        self.refresh_payload: dict[str, object] = {"access_token": "fresh", "expires_in": 3600}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TEST_ENDPOINTS.token_url:
            self.refreshes.append(form_of(request))
            return json_response(self.refresh_payload)
        self.resource_calls.append(request.headers["Authorization"])
        status = self.resource_statuses.pop(0) if self.resource_statuses else 200
        return json_response({"status": status}, status)


def _lifecycle(store: LocalStore, cipher: SecretCipher, fake: FakeGoogle) -> TokenLifecycle:
    lifecycle = TokenLifecycle(store, cipher, mock_client(fake), endpoints={"google": TEST_ENDPOINTS})
    lifecycle.save_client_config("google", "client-id", "client-secret")
    return lifecycle


def _stale(access_token: str = "stale", refresh_token: str | None = "rt") -> TokenSet:
    return TokenSet(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=datetime.now(UTC) - timedelta(minutes=1),
    )


def _fresh(access_token: str = "current") -> TokenSet:
    return TokenSet(access_token=access_token, refresh_token="rt", expires_at=datetime.now(UTC) + timedelta(hours=1))


def test_is_expired_applies_five_minute_skew() -> None:
    now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    assert is_expired(TokenSet(access_token="a"), now=now)
    assert is_expired(TokenSet(access_token="a", expires_at=now + timedelta(minutes=4)), now=now)
    assert is_expired(TokenSet(access_token="a", expires_at=now + timedelta(minutes=5)), now=now)
    assert not is_expired(TokenSet(access_token="a", expires_at=now + timedelta(minutes=6)), now=now)


@pytest.mark.asyncio
async def test_valid_token_is_returned_without_network(store: LocalStore, cipher: SecretCipher) -> None:
    fake = FakeGoogle()
    lifecycle = _lifecycle(store, cipher, fake)
    lifecycle.save_initial_tokens("google", _fresh())

    tokens = await lifecycle.get_valid_token("google")

    assert tokens.access_token == "current"
    assert fake.refreshes == []


@pytest.mark.asyncio
async def test_stale_token_is_refreshed_and_refresh_token_preserved(store: LocalStore, cipher: SecretCipher) -> None:
    fake = FakeGoogle()
    lifecycle = _lifecycle(store, cipher, fake)
    lifecycle.save_initial_tokens("google", _stale())

    tokens = await lifecycle.get_valid_token("google")

    assert tokens.access_token == "fresh"
    assert tokens.refresh_token == "rt"
    assert fake.refreshes == [
        {"client_id": "client-id", "client_secret": "client-secret", "grant_type": "refresh_token", "refresh_token": "rt"}
    ]
    stored = store.get_token("google")
    assert stored is not None
    assert "fresh" not in stored
    assert lifecycle.load_tokens("google") == tokens


@pytest.mark.asyncio
async def test_new_refresh_token_replaces_old_one(store: LocalStore, cipher: SecretCipher) -> None:
    fake = FakeGoogle()
    fake.refresh_payload = {"access_token": "fresh", "refresh_token": "rt-2", "expires_in": 3600}
    lifecycle = _lifecycle(store, cipher, fake)
    lifecycle.save_initial_tokens("google", _stale())

    tokens = await lifecycle.get_valid_token("google")

    assert tokens.refresh_token == "rt-2"


@pytest.mark.asyncio
async def test_missing_credentials(store: LocalStore, cipher: SecretCipher) -> None:
    lifecycle = _lifecycle(store, cipher, FakeGoogle())

    with pytest.raises(CredentialMissing):
        await lifecycle.get_valid_token("google")


@pytest.mark.asyncio
async def test_stale_token_without_refresh_token_needs_reconnect(store: LocalStore, cipher: SecretCipher) -> None:
    lifecycle = _lifecycle(store, cipher, FakeGoogle())
    lifecycle.save_initial_tokens("google", _stale(refresh_token=None))

    with pytest.raises(CredentialMissing):
        await lifecycle.get_valid_token("google")


@pytest.mark.asyncio
async def test_missing_client_config(store: LocalStore, cipher: SecretCipher) -> None:
    lifecycle = TokenLifecycle(store, cipher, mock_client(FakeGoogle()), endpoints={"google": TEST_ENDPOINTS})
    lifecycle.save_tokens("google", _stale())

    with pytest.raises(ConfigMissing):
        await lifecycle.get_valid_token("google")


def test_settings_override_stored_client_config(store: LocalStore, cipher: SecretCipher, settings: Settings) -> None:
    overridden = settings.model_copy(update={"google_client_id": "env-id", "google_client_secret": "env-secret"})
    lifecycle = TokenLifecycle(store, cipher, mock_client(FakeGoogle()), settings=overridden)
    lifecycle.save_client_config("google", "stored-id", "stored-secret")

    assert lifecycle.client_config("google") == ("env-id", "env-secret")


def test_stored_client_secret_is_encrypted(store: LocalStore, cipher: SecretCipher) -> None:
    lifecycle = _lifecycle(store, cipher, FakeGoogle())

    integration = store.get_integration("google")

    assert integration is not None
    assert "client-secret" not in str(integration.config)
    assert lifecycle.client_config("google") == ("client-id", "client-secret")


@pytest.mark.asyncio
async def test_corrupt_stored_token_raises(store: LocalStore, cipher: SecretCipher) -> None:
    lifecycle = _lifecycle(store, cipher, FakeGoogle())
    store.save_token("google", "garbage")

    with pytest.raises(DecryptionError):
        await lifecycle.get_valid_token("google")


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(store: LocalStore, cipher: SecretCipher) -> None:
    fake = FakeGoogle()
    lifecycle = _lifecycle(store, cipher, fake)
    lifecycle.save_initial_tokens("google", _stale())

    results = await asyncio.gather(*(lifecycle.get_valid_token("google") for _ in range(5)))

    assert len(fake.refreshes) == 1
    assert {tokens.access_token for tokens in results} == {"fresh"}


@pytest.mark.asyncio
async def test_request_retries_once_after_401(store: LocalStore, cipher: SecretCipher) -> None:
    fake = FakeGoogle(resource_statuses=[401, 200])
    lifecycle = _lifecycle(store, cipher, fake)
    lifecycle.save_initial_tokens("google", _fresh("revoked"))

    response = await lifecycle.request("google", "GET", API_URL)

    assert response.status_code == 200
    assert fake.resource_calls == ["Bearer revoked", "Bearer fresh"]
    assert len(fake.refreshes) == 1


@pytest.mark.asyncio
async def test_request_does_not_retry_twice(store: LocalStore, cipher: SecretCipher) -> None:
    fake = FakeGoogle(resource_statuses=[401, 401, 200])
    lifecycle = _lifecycle(store, cipher, fake)
    lifecycle.save_initial_tokens("google", _fresh("revoked"))

    response = await lifecycle.request("google", "GET", API_URL)

    assert response.status_code == 401
    assert len(fake.resource_calls) == 2
    assert len(fake.refreshes) == 1


@pytest.mark.asyncio
async def test_request_passes_other_statuses_through(store: LocalStore, cipher: SecretCipher) -> None:
    fake = FakeGoogle(resource_statuses=[403])
    lifecycle = _lifecycle(store, cipher, fake)
    lifecycle.save_initial_tokens("google", _fresh())

    response = await lifecycle.request("google", "GET", API_URL, headers={"X-Trace": "1"})

    assert response.status_code == 403
    assert fake.refreshes == []
