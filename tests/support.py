from __future__ import annotations

import json
import socket
import threading
from collections.abc import Callable
from typing import Any

import httpx

from lumen.oauth.session import ProviderEndpoints

TEST_ENDPOINTS = ProviderEndpoints(
    authorize_url="https://auth.test/authorize",
    token_url="https://auth.test/token",
    scopes=("scope.a", "scope.b"),
)

Handler = Callable[[httpx.Request], httpx.Response]


def mock_client(handler: Handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=payload)


def form_of(request: httpx.Request) -> dict[str, str]:
    return dict(httpx.QueryParams(request.content.decode("utf-8")))


def body_of(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content)


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


def hit_callback(port: int, query: str, responses: list[httpx.Response]) -> threading.Thread:
    """Play the browser redirect against a loopback listener from another thread."""

    def run() -> None:
        with httpx.Client(trust_env=False, timeout=5) as client:
            responses.append(client.get(f"http://127.0.0.1:{port}/?{query}"))

    thread = threading.Thread(target=run)
    thread.start()
    return thread
