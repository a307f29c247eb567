"""Local tools: notes files, reminders, clipboard history and web search."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from urllib import parse as urllib_parse

from pydantic import BaseModel, Field

from lumen.errors import ToolExecutionError
from lumen.store.database import LocalStore
from lumen.tools.registry import EmptyInput, ToolRegistry

MAX_NOTE_MATCHES = 10
SEARCH_CACHE_TTL = timedelta(hours=1)


class ReadInput(BaseModel):
    path: str = Field(..., description="Path of the file to read")


class WriteInput(BaseModel):
    path: str = Field(..., description="Path of the file")
    content: str = Field(..., description="Content to write; overwrites an existing file")


class ListInput(BaseModel):
    path: str = Field(default=".", description="Directory to list")


class EditInput(BaseModel):
    path: str = Field(..., description="Path of the file")
    start_line: int = Field(..., ge=1, description="First line to replace (1-based)")
    end_line: int = Field(..., ge=1, description="Last line to replace (inclusive)")
    content: str = Field(..., description="Replacement text for the line range")


class SearchNotesInput(BaseModel):
    query: str = Field(..., description="Keyword to search for")
    path: str | None = Field(default=None, description="Directory to search, defaults to the notes vault")


class AddReminderInput(BaseModel):
    content: str = Field(..., description="The reminder text")
    due_at: str | None = Field(default=None, description="When the reminder is due, e.g. '2026-01-20T10:00:00Z'")


class ReminderIdInput(BaseModel):
    id: int = Field(..., description="Reminder id")


class ClipboardSearchInput(BaseModel):
    query: str = Field(..., description="Text to look for in clipboard history")
    limit: int = Field(default=10, ge=1, le=50)


class WebSearchInput(BaseModel):
    query: str = Field(..., description="Search query")


def _resolve_path(workspace: Path, raw: str) -> Path:
    path = Path(raw).expanduser()
    if path.is_absolute():
        return path
    return workspace / path


def register_local_tools(
    registry: ToolRegistry,
    *,
    store: LocalStore,
    workspace: Path,
    vault_path: Path | None = None,
) -> None:
    """Register tools that only touch the local machine."""

    register = registry.register
    base = vault_path.expanduser() if vault_path is not None else workspace

    @register(name="read_file", description="Reads the content of a file at the specified path.", model=ReadInput)
    def read_file(params: ReadInput) -> dict[str, str]:
        file_path = _resolve_path(base, params.path)
        try:
            return {"content": file_path.read_text(encoding="utf-8")}
        except (OSError, UnicodeDecodeError) as exc:
            raise ToolExecutionError(f"failed to read file: {exc}") from exc

    @register(
        name="write_file",
        description="Writes content to a file at the specified path. Overwrites if it exists.",
        model=WriteInput,
    )
    def write_file(params: WriteInput) -> dict[str, str]:
        file_path = _resolve_path(base, params.path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(params.content, encoding="utf-8")
        except OSError as exc:
            raise ToolExecutionError(f"failed to write file: {exc}") from exc
        return {"status": "success", "path": str(file_path)}

    @register(name="list_files", description="Lists files in a directory.", model=ListInput)
    def list_files(params: ListInput) -> dict[str, object]:
        directory = _resolve_path(base, params.path)
        try:
            entries = [f"{entry.name}/" if entry.is_dir() else entry.name for entry in sorted(directory.iterdir())]
        except OSError as exc:
            raise ToolExecutionError(f"failed to list directory: {exc}") from exc
        return {"entries": entries, "current_path": str(directory)}

    @register(
        name="edit_file",
        description="Replaces an inclusive range of lines in a text file with new content.",
        model=EditInput,
    )
    def edit_file(params: EditInput) -> dict[str, object]:
        file_path = _resolve_path(base, params.path)
        if params.end_line < params.start_line:
            raise ToolExecutionError("end_line must not be before start_line")
        try:
            lines = file_path.read_text(encoding="utf-8").splitlines(keepends=True)
        except (OSError, UnicodeDecodeError) as exc:
            raise ToolExecutionError(f"failed to read file: {exc}") from exc
        if params.start_line > len(lines) + 1:
            raise ToolExecutionError(f"start_line {params.start_line} is past the end of the file ({len(lines)} lines)")

        replacement = params.content
        if replacement and not replacement.endswith("\n") and params.end_line < len(lines):
            replacement += "\n"
        updated = lines[: params.start_line - 1] + [replacement] + lines[params.end_line :]
        file_path.write_text("".join(updated), encoding="utf-8")
        return {"status": "success", "path": str(file_path), "replaced_lines": [params.start_line, params.end_line]}

    @register(
        name="search_notes",
        description="Searches for a keyword inside all markdown files in a directory.",
        model=SearchNotesInput,
    )
    def search_notes(params: SearchNotesInput) -> dict[str, list[str]]:
        root = _resolve_path(base, params.path) if params.path else base
        query = params.query.lower()
        if not query.strip():
            raise ToolExecutionError("query is required for searching")

        matches: list[str] = []
        for path in sorted(root.rglob("*.md")):
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            if query in content.lower():
                matches.append(str(path))
                if len(matches) >= MAX_NOTE_MATCHES:
                    break
        return {"matches": matches}

    @register(
        name="get_workspace_info",
        description="Gets information about the configured notes vault, including its root path.",
    )
    def get_workspace_info(_params: EmptyInput) -> dict[str, str]:
        if vault_path is None:
            raise ToolExecutionError("notes vault is not configured in settings")
        return {"vault_path": str(base), "status": "configured"}

    @register(name="add_reminder", description="Adds a reminder for the user.", model=AddReminderInput)
    def add_reminder(params: AddReminderInput) -> dict[str, object]:
        reminder_id = store.add_reminder(params.content, params.due_at)
        return {"status": "success", "message": "Reminder added.", "id": reminder_id}

    @register(name="list_reminders", description="Lists all active reminders.")
    def list_reminders(_params: EmptyInput) -> dict[str, object]:
        return {"reminders": [reminder.as_dict() for reminder in store.list_reminders()]}

    @register(name="complete_reminder", description="Marks a reminder as done.", model=ReminderIdInput)
    def complete_reminder(params: ReminderIdInput) -> dict[str, str]:
        if not store.complete_reminder(params.id):
            raise ToolExecutionError(f"reminder {params.id} not found")
        return {"status": "success"}

    @register(name="delete_reminder", description="Deletes a reminder.", model=ReminderIdInput)
    def delete_reminder(params: ReminderIdInput) -> dict[str, str]:
        if not store.delete_reminder(params.id):
            raise ToolExecutionError(f"reminder {params.id} not found")
        return {"status": "success"}

    @register(
        name="search_clipboard",
        description="Searches text the user recently copied to the clipboard.",
        model=ClipboardSearchInput,
    )
    def search_clipboard(params: ClipboardSearchInput) -> dict[str, object]:
        return {"results": store.search_clipboard(params.query, params.limit)}

    @register(name="search_web", description="Searches the web for a query.", model=WebSearchInput)
    def search_web(params: WebSearchInput) -> dict[str, object]:
        key = f"search:{params.query.strip().lower()}"
        cached = store.cache_get(key)
        if cached is not None:
            return {"url": cached, "cached": True}
        url = f"https://duckduckgo.com/?q={urllib_parse.quote_plus(params.query)}"
        store.cache_put(key, url, ttl=SEARCH_CACHE_TTL)
        return {"url": url, "cached": False}
