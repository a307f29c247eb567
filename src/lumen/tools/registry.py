"""Tool catalog and dispatcher."""

from __future__ import annotations

import inspect
import json
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from lumen.errors import LumenError
from lumen.gemini.types import InlineDataPart

ToolKind = Literal["local", "remote"]
ToolHandler = Callable[[Any], Any] | Callable[[Any], Awaitable[Any]]

# Keys the function-declaration schema dialect understands.
_SCHEMA_KEYS = frozenset({"type", "properties", "required", "description", "items", "enum", "format"})


def _shorten_text(text: str, width: int = 30, placeholder: str = "...") -> str:
    """Shorten text to width characters, cutting in the middle of words if needed."""
    if len(text) <= width:
        return text
    available = width - len(placeholder)
    if available <= 0:
        return placeholder
    return text[:available] + placeholder


class EmptyInput(BaseModel):
    pass


@dataclass(frozen=True)
class ToolDeclaration:
    """What the model is told about one capability."""

    name: str
    description: str
    parameters: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {"name": self.name, "description": self.description}
        if self.parameters is not None:
            wire["parameters"] = self.parameters
        return wire


@dataclass(frozen=True)
class MediaResult:
    """Handler result carrying binary attachments for the next model turn."""

    summary: str
    media: tuple[InlineDataPart, ...]


@dataclass(frozen=True)
class ToolResult:
    name: str
    response: dict[str, Any]
    media: tuple[InlineDataPart, ...] = ()

    @property
    def is_error(self) -> bool:
        return "error" in self.response


@dataclass(frozen=True)
class _RegisteredTool:
    declaration: ToolDeclaration
    model: type[BaseModel]
    handler: ToolHandler
    kind: ToolKind


def gemini_schema(model: type[BaseModel]) -> dict[str, Any] | None:
    """Reduce a pydantic JSON schema to what function declarations accept."""
    schema = model.model_json_schema()
    defs = schema.get("$defs", {})
    reduced = _reduce_schema(schema, defs)
    if not reduced.get("properties"):
        return None
    return reduced


def _reduce_schema(node: Mapping[str, Any], defs: Mapping[str, Any]) -> dict[str, Any]:
    if "$ref" in node:
        node = defs[node["$ref"].rsplit("/", 1)[-1]]
    if "anyOf" in node:
        branches = [branch for branch in node["anyOf"] if branch.get("type") != "null"]
        if len(branches) == 1:
            merged = {**branches[0], **{k: v for k, v in node.items() if k != "anyOf"}}
            return _reduce_schema(merged, defs)

    reduced: dict[str, Any] = {}
    for key, value in node.items():
        if key not in _SCHEMA_KEYS:
            continue
        if key == "properties":
            reduced[key] = {name: _reduce_schema(prop, defs) for name, prop in value.items()}
        elif key == "items":
            reduced[key] = _reduce_schema(value, defs)
        else:
            reduced[key] = value
    return reduced


class ToolRegistry:
    """Registry of callable tools keyed by the name the model uses."""

    def __init__(self) -> None:
        self._tools: dict[str, _RegisteredTool] = {}
        self._declarations: tuple[ToolDeclaration, ...] | None = None

    def register(
        self,
        *,
        name: str,
        description: str,
        model: type[BaseModel] = EmptyInput,
        kind: ToolKind = "local",
    ) -> Callable[[ToolHandler], ToolHandler]:
        def decorator(handler: ToolHandler) -> ToolHandler:
            if name in self._tools:
                raise ValueError(f"duplicate tool name: {name}")
            if self._declarations is not None:
                raise RuntimeError("tool catalog is already frozen")
            declaration = ToolDeclaration(name=name, description=description, parameters=gemini_schema(model))
            self._tools[name] = _RegisteredTool(declaration, model, handler, kind)
            return handler

        return decorator

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return sorted(self._tools)

    def declarations(self) -> list[ToolDeclaration]:
        """Catalog sent with every model request; built once then frozen."""
        if self._declarations is None:
            self._declarations = tuple(self._tools[name].declaration for name in sorted(self._tools))
        return list(self._declarations)

    async def execute(self, name: str, args: Mapping[str, Any] | None = None) -> ToolResult:
        """Run a tool and fold any failure into an ``{"error": ...}`` response."""
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("tool.call.unknown name={}", name)
            return ToolResult(name=name, response={"error": f"unknown tool: {name}"})

        args = dict(args or {})
        self._log_tool_call(name, args)
        start = time.monotonic()
        try:
            params = tool.model.model_validate(args)
            outcome = tool.handler(params)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return _to_result(name, outcome)
        except ValidationError as exc:
            message = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'args'}: {err['msg']}" for err in exc.errors()
            )
            logger.warning("tool.call.invalid name={} error={}", name, message)
            return ToolResult(name=name, response={"error": f"invalid arguments: {message}"})
        except (LumenError, httpx.HTTPError) as exc:
            logger.warning("tool.call.error name={} error={}", name, exc)
            return ToolResult(name=name, response={"error": str(exc) or type(exc).__name__})
        except Exception as exc:
            logger.exception("tool.call.error name={}", name)
            return ToolResult(name=name, response={"error": str(exc) or type(exc).__name__})
        finally:
            duration = time.monotonic() - start
            logger.info("tool.call.end name={} duration={:.3f}ms", name, duration * 1000)

    def _log_tool_call(self, name: str, kwargs: dict[str, Any]) -> None:
        params: list[str] = []
        for key, value in kwargs.items():
            try:
                rendered = json.dumps(value, ensure_ascii=False)
            except TypeError:
                rendered = repr(value)
            value = _shorten_text(rendered, width=30, placeholder="...")
            if value.startswith('"') and not value.endswith('"'):
                value = value + '"'
            params.append(f"{key}={value}")
        logger.info("tool.call.start name={} {{ {} }}", name, ", ".join(params))


def _to_result(name: str, outcome: Any) -> ToolResult:
    if isinstance(outcome, MediaResult):
        return ToolResult(
            name=name,
            response={"result": outcome.summary, "attachments": len(outcome.media)},
            media=outcome.media,
        )
    if isinstance(outcome, BaseModel):
        return ToolResult(name=name, response=outcome.model_dump(mode="json"))
    if isinstance(outcome, dict):
        return ToolResult(name=name, response=outcome)
    if isinstance(outcome, list | tuple):
        return ToolResult(name=name, response={"items": list(outcome)})
    if outcome is None:
        return ToolResult(name=name, response={"status": "success"})
    return ToolResult(name=name, response={"result": str(outcome)})
