"""Three-legged OAuth2 authorization-code flow with a one-shot loopback listener."""

from __future__ import annotations

import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from http.server import BaseHTTPRequestHandler, HTTPServer
from types import TracebackType
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit

import httpx
from loguru import logger

from lumen.errors import (
    OAuthCallbackError,
    OAuthCallbackMismatch,
    OAuthCallbackTimeout,
    OAuthListenerBusy,
    OAuthTokenError,
)
from lumen.logging_utils import redact
from lumen.oauth.tokens import TokenSet

DEFAULT_REDIRECT_PORT = 18247
LOOPBACK_HOST = "127.0.0.1"
# A connection that sends no request line is dropped after this long.
CONNECTION_TIMEOUT_SECONDS = 2.0

SUCCESS_PAGE = "Authentication successful! You can close this window now."
FAILURE_PAGE = "Authentication failed. State mismatch or no code received."

# Only one authorization attempt may own the callback port per process.
_ATTEMPT_LOCK = threading.Lock()


@dataclass(frozen=True)
class ProviderEndpoints:
    authorize_url: str
    token_url: str
    scopes: tuple[str, ...]


GOOGLE = ProviderEndpoints(
    authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
    token_url="https://oauth2.googleapis.com/token",
    scopes=(
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/gmail.send",
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/tasks",
        "https://www.googleapis.com/auth/userinfo.email",
    ),
)


@dataclass(frozen=True)
class OAuthSessionState:
    client_id: str
    client_secret: str
    redirect_endpoint: str
    csrf_token: str


class _CallbackServer(HTTPServer):
    def __init__(self, address: tuple[str, int]) -> None:
        super().__init__(address, _CallbackHandler)
        self.expected_state = ""
        self.params: dict[str, str] | None = None
        self.connection_timeout: float = CONNECTION_TIMEOUT_SECONDS


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer

    def setup(self) -> None:
        self.timeout = self.server.connection_timeout
        super().setup()

    def do_GET(self) -> None:
        params = dict(parse_qsl(urlsplit(self.path).query))
        self.server.params = params
        accepted = _callback_outcome(params, self.server.expected_state) is None
        body = (SUCCESS_PAGE if accepted else FAILURE_PAGE).encode("utf-8")
        self.send_response(200 if accepted else 400)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("oauth.callback.http " + format, *args)


def _callback_outcome(params: dict[str, str], expected_state: str) -> Exception | None:
    state = params.get("state")
    if state is None or not secrets.compare_digest(state, expected_state):
        return OAuthCallbackMismatch("OAuth callback state does not match the issued CSRF token")
    if error := params.get("error"):
        return OAuthCallbackError(f"authorization was denied: {error}")
    if not params.get("code"):
        return OAuthCallbackError("OAuth callback carried no authorization code")
    return None


class CallbackListener:
    """Bound loopback listener that accepts exactly one callback request."""

    def __init__(self, host: str = LOOPBACK_HOST, port: int = DEFAULT_REDIRECT_PORT) -> None:
        self._address = (host, port)
        self._server: _CallbackServer | None = None

    def __enter__(self) -> CallbackListener:
        if not _ATTEMPT_LOCK.acquire(blocking=False):
            raise OAuthListenerBusy("another authorization attempt is already in progress")
        try:
            self._server = _CallbackServer(self._address)
        except OSError as exc:
            _ATTEMPT_LOCK.release()
            raise OAuthListenerBusy(f"cannot listen on {self._address[0]}:{self._address[1]}: {exc}") from exc
        logger.info("oauth.listener.start port={}", self.port)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._server is not None:
            self._server.server_close()
            self._server = None
        _ATTEMPT_LOCK.release()
        logger.info("oauth.listener.stop")

    @property
    def port(self) -> int:
        assert self._server is not None
        return int(self._server.server_address[1])

    def wait(self, expected_state: str, *, timeout: float | None = None) -> str:
        """Serve requests until one GET arrives and return its authorization code.

        Connections that never send a request are dropped after
        ``CONNECTION_TIMEOUT_SECONDS`` and the wait continues against the
        same overall ``timeout``.
        """
        server = self._server
        if server is None:
            raise RuntimeError("listener is not bound; use it as a context manager")
        server.expected_state = expected_state
        server.params = None
        deadline = None if timeout is None else time.monotonic() + timeout
        while server.params is None:
            if deadline is None:
                server.timeout = None
                server.connection_timeout = CONNECTION_TIMEOUT_SECONDS
            else:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                server.timeout = remaining
                server.connection_timeout = min(CONNECTION_TIMEOUT_SECONDS, remaining)
            server.handle_request()

        if server.params is None:
            raise OAuthCallbackTimeout(f"no OAuth callback received within {timeout}s")
        failure = _callback_outcome(server.params, expected_state)
        if failure is not None:
            logger.warning("oauth.callback.rejected reason={}", failure)
            raise failure
        return server.params["code"]


class OAuthSession:
    """Authorization-code and refresh-token grants for one provider."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        http_client: httpx.AsyncClient,
        endpoints: ProviderEndpoints = GOOGLE,
        redirect_port: int = DEFAULT_REDIRECT_PORT,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._http_client = http_client
        self._endpoints = endpoints
        self._redirect_port = redirect_port
        self._state: OAuthSessionState | None = None

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self._redirect_port}"

    @property
    def pending_state(self) -> OAuthSessionState | None:
        return self._state

    def start_auth_flow(self) -> tuple[str, str]:
        csrf_token = secrets.token_urlsafe(24)
        self._state = OAuthSessionState(
            client_id=self._client_id,
            client_secret=self._client_secret,
            redirect_endpoint=self.redirect_uri,
            csrf_token=csrf_token,
        )
        query = urlencode({
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self._endpoints.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": csrf_token,
        })
        return f"{self._endpoints.authorize_url}?{query}", csrf_token

    def open_listener(self) -> CallbackListener:
        return CallbackListener(LOOPBACK_HOST, self._redirect_port)

    def listen_for_code(
        self,
        expected_state: str,
        *,
        timeout: float | None = None,
        on_listening: Callable[[], object] | None = None,
    ) -> str:
        """Block until the browser hits the callback; the CSRF token is spent either way.

        ``on_listening`` runs once the port is bound, which is the earliest safe
        moment to send the user to the consent screen.
        """
        try:
            with self.open_listener() as listener:
                if on_listening is not None:
                    on_listening()
                return listener.wait(expected_state, timeout=timeout)
        finally:
            self._state = None

    async def exchange_code(self, code: str) -> TokenSet:
        return await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        })

    async def refresh_access_token(self, refresh_token: str) -> TokenSet:
        """The returned set may lack a refresh token; callers keep the previous one."""
        return await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    async def _token_request(self, form: dict[str, str]) -> TokenSet:
        grant = form["grant_type"]
        data = {"client_id": self._client_id, "client_secret": self._client_secret, **form}
        try:
            response = await self._http_client.post(
                self._endpoints.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise OAuthTokenError(f"token request ({grant}) failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise OAuthTokenError(
                f"token endpoint rejected {grant} ({response.status_code}): {_safe_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise OAuthTokenError("token endpoint returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise OAuthTokenError("token endpoint returned an unexpected payload")
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise OAuthTokenError("token response is missing a non-empty access_token")

        refresh_token = payload.get("refresh_token")
        expires_at = None
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, int | float) and not isinstance(expires_in, bool):
            expires_at = datetime.now(UTC) + timedelta(seconds=max(expires_in, 0))

        logger.info("oauth.token.issued grant={} refresh_token={}", grant, bool(refresh_token))
        return TokenSet(
            access_token=access_token.strip(),
            refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
            expires_at=expires_at,
        )


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    message = ""
    if isinstance(payload, dict):
        description = payload.get("error_description")
        error = payload.get("error")
        if isinstance(description, str) and description.strip():
            message = description
        elif isinstance(error, str) and error.strip():
            message = error
        elif isinstance(error, dict) and isinstance(error.get("message"), str):
            message = error["message"]
    if not message:
        message = response.text.strip() or "request failed without an error payload"
    return redact(" ".join(message.split()))[:200]
