"""Keeps stored OAuth tokens fresh and retries authenticated calls once on 401."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from lumen.config import Settings
from lumen.crypto.cipher import SecretCipher
from lumen.errors import ConfigMissing, CredentialMissing, DecryptionError
from lumen.oauth.session import GOOGLE, OAuthSession, ProviderEndpoints
from lumen.oauth.tokens import TokenSet, is_expired
from lumen.store.database import Integration, LocalStore

PROVIDER_ENDPOINTS: dict[str, ProviderEndpoints] = {"google": GOOGLE}


class TokenLifecycle:
    """Loads, refreshes and persists encrypted token sets per provider.

    Refreshes for one provider are serialized by an ``asyncio.Lock``. A caller
    that waited on the lock re-reads the store first and reuses a token another
    caller already refreshed. The store's own lock is only held for the single
    read or write, never across the refresh request.
    """

    def __init__(
        self,
        store: LocalStore,
        cipher: SecretCipher,
        http_client: httpx.AsyncClient,
        *,
        settings: Settings | None = None,
        endpoints: Mapping[str, ProviderEndpoints] | None = None,
    ) -> None:
        self._store = store
        self._cipher = cipher
        self._http_client = http_client
        self._settings = settings
        self._endpoints = dict(endpoints or PROVIDER_ENDPOINTS)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, provider: str) -> asyncio.Lock:
        lock = self._locks.get(provider)
        if lock is None:
            lock = self._locks[provider] = asyncio.Lock()
        return lock

    def client_config(self, provider: str) -> tuple[str, str]:
        """Return ``(client_id, client_secret)`` from settings, then the integration row."""
        if provider == "google" and self._settings is not None:
            client_id = self._settings.google_client_id
            client_secret = self._settings.google_client_secret
            if client_id and client_secret:
                return client_id, client_secret

        integration = self._store.get_integration(provider)
        if integration is not None:
            client_id = integration.config.get("client_id")
            encrypted_secret = integration.config.get("client_secret_encrypted")
            if client_id and encrypted_secret:
                return str(client_id), self._cipher.decrypt(str(encrypted_secret))
        raise ConfigMissing(provider)

    def save_client_config(self, provider: str, client_id: str, client_secret: str) -> None:
        integration = self._store.get_integration(provider) or Integration(name=provider)
        integration.config = {
            **integration.config,
            "client_id": client_id,
            "client_secret_encrypted": self._cipher.encrypt(client_secret),
        }
        self._store.save_integration(integration)
        logger.info("oauth.client.configured provider={}", provider)

    def session(self, provider: str) -> OAuthSession:
        endpoints = self._endpoints.get(provider)
        if endpoints is None:
            raise ConfigMissing(provider, f"no OAuth endpoints known for {provider}")
        client_id, client_secret = self.client_config(provider)
        redirect_port = self._settings.oauth_redirect_port if self._settings is not None else None
        kwargs: dict[str, Any] = {"http_client": self._http_client, "endpoints": endpoints}
        if redirect_port is not None:
            kwargs["redirect_port"] = redirect_port
        return OAuthSession(client_id, client_secret, **kwargs)

    def load_tokens(self, provider: str) -> TokenSet | None:
        secret = self._store.get_token(provider)
        if secret is None:
            return None
        plaintext = self._cipher.decrypt(secret)
        try:
            return TokenSet.from_json(plaintext)
        except ValidationError as exc:
            raise DecryptionError(f"stored {provider} token is not a valid token set") from exc

    def save_tokens(self, provider: str, tokens: TokenSet) -> None:
        self._store.save_token(provider, self._cipher.encrypt(tokens.to_json()), "oauth2")

    def save_initial_tokens(self, provider: str, tokens: TokenSet) -> None:
        self.save_tokens(provider, tokens)
        logger.info("oauth.tokens.saved provider={} refresh_token={}", provider, tokens.refresh_token is not None)

    def _require_tokens(self, provider: str) -> TokenSet:
        tokens = self.load_tokens(provider)
        if tokens is None:
            raise CredentialMissing(provider)
        return tokens

    async def get_valid_token(self, provider: str) -> TokenSet:
        tokens = self._require_tokens(provider)
        if not is_expired(tokens):
            return tokens
        return await self._refresh(provider, tokens, force=False)

    async def force_refresh(self, provider: str, stale: TokenSet) -> TokenSet:
        return await self._refresh(provider, stale, force=True)

    async def _refresh(self, provider: str, stale: TokenSet, *, force: bool) -> TokenSet:
        async with self._lock_for(provider):
            current = self._require_tokens(provider)
            refreshed_elsewhere = current.access_token != stale.access_token
            if not is_expired(current) and (refreshed_elsewhere or not force):
                return current

            refresh_token = current.refresh_token
            if not refresh_token:
                raise CredentialMissing(provider, f"{provider} token cannot be refreshed; reconnect the account")

            logger.info("oauth.refresh.start provider={} forced={}", provider, force)
            fresh = await self.session(provider).refresh_access_token(refresh_token)
            if fresh.refresh_token is None:
                fresh = fresh.model_copy(update={"refresh_token": refresh_token})
            self.save_tokens(provider, fresh)
            logger.info("oauth.refresh.done provider={} expires_at={}", provider, fresh.expires_at)
            return fresh

    async def request(self, provider: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send an authenticated request; on 401 refresh once and retry exactly once."""
        tokens = await self.get_valid_token(provider)
        response = await self._send(tokens, method, url, **kwargs)
        if response.status_code != 401:
            return response

        logger.warning("oauth.request.unauthorized provider={} url={}", provider, url)
        tokens = await self.force_refresh(provider, tokens)
        return await self._send(tokens, method, url, **kwargs)

    async def _send(self, tokens: TokenSet, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {tokens.access_token}"
        return await self._http_client.request(method, url, headers=headers, **kwargs)
