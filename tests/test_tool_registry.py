import asyncio

import pytest
from pydantic import BaseModel, Field

from lumen.errors import ToolExecutionError
from lumen.gemini.types import InlineDataPart
from lumen.tools.registry import MediaResult, ToolRegistry, gemini_schema


class AddInput(BaseModel):
    a: int = Field(..., description="Left operand")
    b: int = Field(..., description="Right operand")


class SearchInput(BaseModel):
    query: str
    path: str | None = Field(default=None, description="Folder to search")
    tags: list[str] = Field(default_factory=list)


@pytest.mark.asyncio
async def test_registry_logs_once_for_execute(monkeypatch) -> None:
    logs: list[str] = []

    def _capture(message: str, *args: object) -> None:
        logs.append(message)

    monkeypatch.setattr("lumen.tools.registry.logger.info", _capture)
    monkeypatch.setattr("lumen.tools.registry.logger.exception", _capture)

    registry = ToolRegistry()

    @registry.register(name="math_add", description="add", model=AddInput)
    def add(params: AddInput) -> int:
        return params.a + params.b

    result = await registry.execute("math_add", {"a": 1, "b": 2})

    assert result.response == {"result": "3"}
    assert logs.count("tool.call.start name={} {{ {} }}") == 1
    assert logs.count("tool.call.end name={} duration={:.3f}ms") == 1


@pytest.mark.asyncio
async def test_unknown_tool_is_folded_into_response() -> None:
    result = await ToolRegistry().execute("teleport", {})

    assert result.is_error
    assert result.response == {"error": "unknown tool: teleport"}


@pytest.mark.asyncio
async def test_invalid_arguments_are_folded_into_response() -> None:
    registry = ToolRegistry()

    @registry.register(name="math_add", description="add", model=AddInput)
    def add(params: AddInput) -> int:
        return params.a + params.b

    result = await registry.execute("math_add", {"a": "one"})

    assert result.is_error
    assert result.response["error"].startswith("invalid arguments:")
    assert "a:" in result.response["error"]
    assert "b:" in result.response["error"]


@pytest.mark.asyncio
async def test_handler_failures_are_folded_into_response() -> None:
    registry = ToolRegistry()

    @registry.register(name="expected", description="raises a tool error")
    def expected(params: object) -> None:
        raise ToolExecutionError("Reminder not found")

    @registry.register(name="unexpected", description="raises anything")
    def unexpected(params: object) -> None:
        raise KeyError("boom")

    first = await registry.execute("expected")
    second = await registry.execute("unexpected")

    assert first.response == {"error": "Reminder not found"}
    assert second.is_error
    assert "boom" in second.response["error"]


@pytest.mark.asyncio
async def test_async_handlers_are_awaited() -> None:
    registry = ToolRegistry()

    @registry.register(name="slow_echo", description="echo", model=SearchInput)
    async def slow_echo(params: SearchInput) -> dict[str, object]:
        await asyncio.sleep(0)
        return {"query": params.query, "path": params.path}

    result = await registry.execute("slow_echo", {"query": "tax"})

    assert result.response == {"query": "tax", "path": None}


@pytest.mark.asyncio
async def test_result_conversions() -> None:
    registry = ToolRegistry()
    image = InlineDataPart(mime_type="image/png", data="aGk=")

    @registry.register(name="nothing", description="returns None")
    def nothing(params: object) -> None:
        return None

    @registry.register(name="listing", description="returns a list")
    def listing(params: object) -> list[int]:
        return [1, 2]

    @registry.register(name="model", description="returns a model")
    def model(params: object) -> AddInput:
        return AddInput(a=1, b=2)

    @registry.register(name="picture", description="returns media")
    def picture(params: object) -> MediaResult:
        return MediaResult(summary="Screenshot captured", media=(image,))

    assert (await registry.execute("nothing")).response == {"status": "success"}
    assert (await registry.execute("listing")).response == {"items": [1, 2]}
    assert (await registry.execute("model")).response == {"a": 1, "b": 2}
    media = await registry.execute("picture")
    assert media.response == {"result": "Screenshot captured", "attachments": 1}
    assert media.media == (image,)


def test_declarations_are_sorted_and_schemas_reduced() -> None:
    registry = ToolRegistry()

    @registry.register(name="search_notes", description="search", model=SearchInput)
    def search(params: SearchInput) -> None:
        return None

    @registry.register(name="list_reminders", description="list")
    def list_reminders(params: object) -> None:
        return None

    declarations = registry.declarations()

    assert [declaration.name for declaration in declarations] == ["list_reminders", "search_notes"]
    assert declarations[0].parameters is None
    assert declarations[0].to_wire() == {"name": "list_reminders", "description": "list"}
    assert declarations[1].parameters == {
        "type": "object",
        "properties": {
            "query": {"type": "string"},
            "path": {"type": "string", "description": "Folder to search"},
            "tags": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["query"],
    }


def test_gemini_schema_resolves_nested_models() -> None:
    class Attendee(BaseModel):
        email: str

    class EventInput(BaseModel):
        summary: str
        attendees: list[Attendee] = Field(default_factory=list)

    schema = gemini_schema(EventInput)

    assert schema is not None
    assert schema["properties"]["attendees"] == {
        "type": "array",
        "items": {"type": "object", "properties": {"email": {"type": "string"}}, "required": ["email"]},
    }


def test_duplicate_names_and_late_registration_are_rejected() -> None:
    registry = ToolRegistry()

    @registry.register(name="read_file", description="read")
    def read(params: object) -> None:
        return None

    with pytest.raises(ValueError):
        registry.register(name="read_file", description="again")(read)

    registry.declarations()
    with pytest.raises(RuntimeError):
        registry.register(name="write_file", description="late")(read)

    assert registry.names() == ["read_file"]
    assert registry.has("read_file")
    assert not registry.has("write_file")
