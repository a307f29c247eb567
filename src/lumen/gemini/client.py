"""Minimal async client for the Gemini ``generateContent`` endpoint."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger

from lumen.errors import ModelRequestFailed
from lumen.gemini.types import MalformedPart, Part, TextPart, Turn, part_from_wire

if TYPE_CHECKING:
    from lumen.tools.registry import ToolDeclaration

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GeminiClient:
    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        http_client: httpx.AsyncClient,
        api_base: str = DEFAULT_API_BASE,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._http_client = http_client
        self._api_base = api_base.rstrip("/")

    @property
    def model(self) -> str:
        return self._model

    @property
    def endpoint(self) -> str:
        return f"{self._api_base}/models/{self._model}:generateContent"

    async def send_chat(
        self,
        turns: Sequence[Turn],
        *,
        system_instruction: str | None = None,
        tools: Sequence[ToolDeclaration] | None = None,
    ) -> list[Part]:
        """Send the whole conversation and return the first candidate's parts."""
        body: dict[str, Any] = {"contents": [turn.to_wire() for turn in turns]}
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        if tools:
            body["tools"] = [{"functionDeclarations": [tool.to_wire() for tool in tools]}]

        payload = await self._post(body)
        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            raise ModelRequestFailed("model returned no candidates")

        content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
        raw_parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(raw_parts, list):
            finish_reason = candidates[0].get("finishReason") if isinstance(candidates[0], dict) else None
            raise ModelRequestFailed(f"model candidate has no content (finishReason={finish_reason})")

        try:
            return [part_from_wire(raw) for raw in raw_parts]
        except MalformedPart as exc:
            raise ModelRequestFailed(f"malformed model response: {exc}") from exc

    async def generate_text(self, prompt: str) -> str:
        parts = await self.send_chat([Turn.user_text(prompt)])
        return "".join(part.text for part in parts if isinstance(part, TextPart)).strip()

    async def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        logger.debug("gemini.request model={} turns={}", self._model, len(body["contents"]))
        try:
            response = await self._http_client.post(
                self.endpoint,
                json=body,
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.TimeoutException as exc:
            raise ModelRequestFailed(f"model request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ModelRequestFailed(f"model request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ModelRequestFailed(f"model returned a non-JSON body ({response.status_code})") from exc

        if not isinstance(payload, dict):
            raise ModelRequestFailed("model returned an unexpected payload")
        error = payload.get("error")
        if error is not None:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ModelRequestFailed(f"model API error ({response.status_code}): {message}")
        if response.is_error:
            raise ModelRequestFailed(f"model API returned HTTP {response.status_code}")
        return payload
