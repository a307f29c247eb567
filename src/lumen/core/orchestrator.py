"""Bounded model/tool conversation loop."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from lumen.gemini.types import (
    FunctionCallPart,
    FunctionResponsePart,
    InlineDataPart,
    Part,
    TextPart,
    Turn,
)
from lumen.tools.registry import ToolDeclaration, ToolRegistry

DEFAULT_MAX_STEPS = 5


class ModelClient(Protocol):
    async def send_chat(
        self,
        turns: Sequence[Turn],
        *,
        system_instruction: str | None = None,
        tools: Sequence[ToolDeclaration] | None = None,
    ) -> list[Part]: ...


@dataclass(frozen=True)
class OrchestrationResult:
    """Result of one orchestration run."""

    text: str
    steps: int
    tool_calls: int
    conversation: list[Turn]
    max_steps_reached: bool = False


class TextAccumulator:
    """Collects model text, dropping blank, repeated or trailing-echo fragments."""

    def __init__(self) -> None:
        self._fragments: list[str] = []

    @staticmethod
    def _normalize(text: str) -> str:
        return " ".join(text.split())

    def add(self, fragment: str) -> bool:
        normalized = self._normalize(fragment)
        if not normalized:
            return False
        accumulated = self._normalize(self.text)
        if any(self._normalize(kept) == normalized for kept in self._fragments):
            return False
        if accumulated.endswith(normalized):
            return False
        self._fragments.append(fragment.strip())
        return True

    @property
    def text(self) -> str:
        return "\n\n".join(self._fragments)


@dataclass
class _LoopState:
    conversation: list[Turn]
    step: int = 0
    tool_calls: int = 0
    text: TextAccumulator = field(default_factory=TextAccumulator)


class ConversationOrchestrator:
    """Lets the model call tools and see their results before it answers."""

    def __init__(
        self,
        *,
        model: ModelClient,
        registry: ToolRegistry,
        max_steps: int = DEFAULT_MAX_STEPS,
        system_instruction: str | None = None,
    ) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self._model = model
        self._registry = registry
        self._max_steps = max_steps
        self._system_instruction = system_instruction

    async def run(self, turns: Sequence[Turn], *, system_instruction: str | None = None) -> OrchestrationResult:
        state = _LoopState(conversation=list(turns))
        declarations = self._registry.declarations()
        instruction = system_instruction or self._system_instruction
        max_steps_reached = False

        while state.step < self._max_steps:
            state.step += 1
            logger.info("orchestrator.step step={} turns={}", state.step, len(state.conversation))
            parts = await self._model.send_chat(
                state.conversation,
                system_instruction=instruction,
                tools=declarations,
            )
            state.conversation.append(Turn(role="model", parts=list(parts)))

            calls: list[FunctionCallPart] = []
            for part in parts:
                if isinstance(part, TextPart):
                    state.text.add(part.text)
                elif isinstance(part, FunctionCallPart):
                    calls.append(part)
            if not calls:
                break

            await self._dispatch(state, calls)
        else:
            max_steps_reached = True
            logger.warning("orchestrator.max_steps max_steps={} tool_calls={}", self._max_steps, state.tool_calls)

        return OrchestrationResult(
            text=state.text.text,
            steps=state.step,
            tool_calls=state.tool_calls,
            conversation=state.conversation,
            max_steps_reached=max_steps_reached,
        )

    async def _dispatch(self, state: _LoopState, calls: list[FunctionCallPart]) -> None:
        results = await asyncio.gather(*(self._registry.execute(call.name, call.args) for call in calls))
        state.tool_calls += len(calls)
        state.conversation.append(
            Turn(
                role="function",
                parts=[
                    FunctionResponsePart(name=call.name, response=result.response)
                    for call, result in zip(calls, results, strict=True)
                ],
            )
        )

        media: list[InlineDataPart] = [part for result in results for part in result.media]
        if media:
            names = ", ".join(result.name for result in results if result.media)
            state.conversation.append(Turn(role="user", parts=[TextPart(f"Attached: output of {names}"), *media]))
