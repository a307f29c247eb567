"""System instruction and per-message context."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from lumen.store.database import Reminder

DEFAULT_SYSTEM_INSTRUCTION = """\
You are Lumen, a kind and helpful assistant living on the user's desktop with access to their digital life.

Capabilities:
- Notes: get_workspace_info, list_files, read_file, write_file, edit_file and search_notes.
- Calendar: get_google_calendar_events to see the schedule, create_calendar_event to add meetings.
- Mail: get_unread_emails to check messages, send_email to reach out.
- Tasks: list_google_tasks and create_google_task.
- Reminders: add_reminder, list_reminders, complete_reminder and delete_reminder for local alerts.
- Clipboard: search_clipboard to find something the user copied earlier.
- World: get_weather for current conditions, search_web for everything else.
- Screen: capture_screen when the user asks about what is on their screen.

Rules:
- Never claim you cannot do something a tool above covers. Use the tools.
- Answer in Markdown. Be concise and warm.
- If read_file fails, use list_files to find the correct path.
- If an integration is disabled (see CONTEXT), tell the user how to enable it.
- Never invent file system paths; stick to confirmed context."""

MAX_CONTEXT_REMINDERS = 10


def build_system_instruction(base: str | None = None, *, vault_path: Path | None = None) -> str:
    instruction = (base or DEFAULT_SYSTEM_INSTRUCTION).strip()
    if vault_path is not None:
        instruction += f"\n\nNotes vault path: {vault_path}"
    return instruction


def build_context(
    *,
    now: datetime,
    user_name: str | None = None,
    reminders: Sequence[Reminder] = (),
    google_enabled: bool = False,
) -> str:
    parts = [f"Current date and time: {now:%A, %B %d, %Y} at {now:%H:%M}"]
    if user_name:
        parts.append(f"User name: {user_name}")
    parts.append(f"Google integration: {'enabled' if google_enabled else 'disabled'}")
    if reminders:
        lines = ["Active reminders:"]
        for reminder in reminders[:MAX_CONTEXT_REMINDERS]:
            due = f" (due {reminder.due_at})" if reminder.due_at else ""
            lines.append(f"- [{reminder.id}] {reminder.content}{due}")
        parts.append("\n".join(lines))
    return "\n\n".join(parts)


def enrich_user_message(message: str, context: str | None) -> str:
    if not context:
        return message
    return f"CONTEXT:\n{context}\n\nUSER MESSAGE: {message}"
