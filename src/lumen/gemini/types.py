"""Conversation turns and parts, and their generateContent JSON form."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "model", "function"]


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class FunctionCallPart:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FunctionResponsePart:
    name: str
    response: dict[str, Any]


@dataclass(frozen=True)
class InlineDataPart:
    mime_type: str
    data: str  # base64


Part = TextPart | FunctionCallPart | FunctionResponsePart | InlineDataPart


@dataclass
class Turn:
    role: Role
    parts: list[Part]

    @classmethod
    def user_text(cls, text: str) -> Turn:
        return cls(role="user", parts=[TextPart(text)])

    @classmethod
    def model_text(cls, text: str) -> Turn:
        return cls(role="model", parts=[TextPart(text)])

    def to_wire(self) -> dict[str, Any]:
        return {"role": self.role, "parts": [part_to_wire(part) for part in self.parts]}


class MalformedPart(ValueError):
    """Raised for a wire part of an unknown or incomplete shape."""


def part_to_wire(part: Part) -> dict[str, Any]:
    match part:
        case TextPart(text=text):
            return {"text": text}
        case FunctionCallPart(name=name, args=args):
            return {"functionCall": {"name": name, "args": args}}
        case FunctionResponsePart(name=name, response=response):
            return {"functionResponse": {"name": name, "response": response}}
        case InlineDataPart(mime_type=mime_type, data=data):
            return {"inlineData": {"mimeType": mime_type, "data": data}}
    raise TypeError(f"unsupported part: {part!r}")


def part_from_wire(raw: Any) -> Part:
    if not isinstance(raw, dict):
        raise MalformedPart(f"part is not an object: {raw!r}")
    if "text" in raw and isinstance(raw["text"], str):
        return TextPart(raw["text"])
    if "functionCall" in raw:
        call = raw["functionCall"]
        if not isinstance(call, dict) or not isinstance(call.get("name"), str):
            raise MalformedPart("functionCall without a name")
        args = call.get("args") or {}
        if not isinstance(args, dict):
            raise MalformedPart(f"functionCall {call['name']} has non-object args")
        return FunctionCallPart(name=call["name"], args=args)
    if "functionResponse" in raw:
        response = raw["functionResponse"]
        if not isinstance(response, dict) or not isinstance(response.get("name"), str):
            raise MalformedPart("functionResponse without a name")
        return FunctionResponsePart(name=response["name"], response=dict(response.get("response") or {}))
    if "inlineData" in raw:
        inline = raw["inlineData"]
        if not isinstance(inline, dict) or "mimeType" not in inline or "data" not in inline:
            raise MalformedPart("inlineData without mimeType or data")
        return InlineDataPart(mime_type=str(inline["mimeType"]), data=str(inline["data"]))
    raise MalformedPart(f"unknown part keys: {sorted(raw)}")
