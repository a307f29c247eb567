import socket
import time
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from support import TEST_ENDPOINTS, form_of, hit_callback, json_response, mock_client

from lumen.errors import (
    OAuthCallbackError,
    OAuthCallbackMismatch,
    OAuthCallbackTimeout,
    OAuthListenerBusy,
    OAuthTokenError,
)
from lumen.oauth.session import FAILURE_PAGE, SUCCESS_PAGE, CallbackListener, OAuthSession


def _session(handler=None, *, redirect_port: int = 18999) -> OAuthSession:
    client = mock_client(handler or (lambda request: json_response({})))
    return OAuthSession(
        "client-id", "client-secret", http_client=client, endpoints=TEST_ENDPOINTS, redirect_port=redirect_port
    )


def test_start_auth_flow_builds_consent_url() -> None:
    session = _session()

    url, state = session.start_auth_flow()

    parts = urlsplit(url)
    params = {key: values[0] for key, values in parse_qs(parts.query).items()}
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == TEST_ENDPOINTS.authorize_url
    assert params == {
        "response_type": "code",
        "client_id": "client-id",
        "redirect_uri": "http://localhost:18999",
        "scope": "scope.a scope.b",
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    assert session.pending_state is not None
    assert session.pending_state.csrf_token == state


def test_start_auth_flow_issues_new_state_each_time() -> None:
    session = _session()

    _, first = session.start_auth_flow()
    _, second = session.start_auth_flow()

    assert first != second


def test_listener_returns_code_for_matching_state() -> None:
    responses: list[httpx.Response] = []
    with CallbackListener(port=0) as listener:
        thread = hit_callback(listener.port, "code=abc&state=s1", responses)
        code = listener.wait("s1", timeout=5)
    thread.join()

    assert code == "abc"
    assert responses[0].status_code == 200
    assert responses[0].text == SUCCESS_PAGE


def test_listener_rejects_mismatched_state() -> None:
    responses: list[httpx.Response] = []
    with CallbackListener(port=0) as listener:
        thread = hit_callback(listener.port, "code=abc&state=forged", responses)
        with pytest.raises(OAuthCallbackMismatch):
            listener.wait("s1", timeout=5)
    thread.join()

    assert responses[0].status_code == 400
    assert responses[0].text == FAILURE_PAGE


@pytest.mark.parametrize("query", ["state=s1", "error=access_denied&state=s1"])
def test_listener_requires_a_code(query: str) -> None:
    responses: list[httpx.Response] = []
    with CallbackListener(port=0) as listener:
        thread = hit_callback(listener.port, query, responses)
        with pytest.raises(OAuthCallbackError) as exc_info:
            listener.wait("s1", timeout=5)
    thread.join()

    assert not isinstance(exc_info.value, OAuthCallbackMismatch)
    assert responses[0].text == FAILURE_PAGE


def test_listener_times_out_and_releases_port() -> None:
    with CallbackListener(port=0) as listener:
        port = listener.port
        with pytest.raises(OAuthCallbackTimeout):
            listener.wait("s1", timeout=0.05)

    with CallbackListener(port=port) as again:
        assert again.port == port


def test_silent_connection_does_not_outlive_the_callback_timeout() -> None:
    with CallbackListener(port=0) as listener:
        with socket.create_connection(("127.0.0.1", listener.port)):
            started = time.monotonic()
            with pytest.raises(OAuthCallbackTimeout):
                listener.wait("s1", timeout=0.5)
            elapsed = time.monotonic() - started

    assert elapsed < 3
    with CallbackListener(port=0):
        pass


def test_callback_after_a_silent_connection_is_still_served() -> None:
    responses: list[httpx.Response] = []
    with CallbackListener(port=0) as listener:
        with socket.create_connection(("127.0.0.1", listener.port)):
            thread = hit_callback(listener.port, "code=abc&state=s1", responses)
            code = listener.wait("s1", timeout=10)
    thread.join()

    assert code == "abc"
    assert responses[0].status_code == 200


def test_second_attempt_while_one_is_in_flight_is_rejected() -> None:
    with CallbackListener(port=0), pytest.raises(OAuthListenerBusy):
        with CallbackListener(port=0):
            pass

    with CallbackListener(port=0):
        pass


def test_occupied_port_is_reported_as_busy() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as squatter:
        squatter.bind(("127.0.0.1", 0))
        squatter.listen(1)
        port = squatter.getsockname()[1]

        with pytest.raises(OAuthListenerBusy):
            with CallbackListener(port=port):
                pass


@pytest.mark.asyncio
async def test_exchange_code_posts_form_and_computes_expiry() -> None:
    seen: list[dict[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == TEST_ENDPOINTS.token_url
        seen.append(form_of(request))
        return json_response({"access_token": "at", "refresh_token": "rt", "expires_in": 3600})

    before = datetime.now(UTC)
    tokens = await _session(handler).exchange_code("the-code")

    assert seen == [
        {
            "client_id": "client-id",
            "client_secret": "client-secret",
            "grant_type": "authorization_code",
            "code": "the-code",
            "redirect_uri": "http://localhost:18999",
        }
    ]
    assert tokens.access_token == "at"
    assert tokens.refresh_token == "rt"
    assert tokens.expires_at is not None
    assert before + timedelta(seconds=3590) < tokens.expires_at <= datetime.now(UTC) + timedelta(seconds=3600)


@pytest.mark.asyncio
async def test_refresh_may_omit_refresh_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert form_of(request)["grant_type"] == "refresh_token"
        assert form_of(request)["refresh_token"] == "rt"
        return json_response({"access_token": "new", "expires_in": 60})

    tokens = await _session(handler).refresh_access_token("rt")

    assert tokens.access_token == "new"
    assert tokens.refresh_token is None


@pytest.mark.asyncio
async def test_token_errors_are_redacted() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return json_response({"error": "invalid_grant", "error_description": "bad refresh_token=rt-secret"}, 400)

    with pytest.raises(OAuthTokenError) as exc_info:
        await _session(handler).refresh_access_token("rt-secret")

    assert "rt-secret" not in str(exc_info.value)
    assert "400" in str(exc_info.value)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"token_type": "Bearer"}),
        httpx.Response(200, json={"access_token": "   "}),
    ],
)
async def test_unusable_token_responses_raise(response: httpx.Response) -> None:
    with pytest.raises(OAuthTokenError):
        await _session(lambda request: response).exchange_code("code")


@pytest.mark.asyncio
async def test_transport_failure_raises_token_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(OAuthTokenError):
        await _session(handler).exchange_code("code")


def test_listen_for_code_spends_the_pending_state() -> None:
    session = _session(redirect_port=0)
    _, state = session.start_auth_flow()

    with pytest.raises(OAuthCallbackTimeout):
        session.listen_for_code(state, timeout=0.05)

    assert session.pending_state is None
