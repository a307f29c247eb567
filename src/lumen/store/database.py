"""SQLite-backed local store shared by the interactive path and the scheduler."""

from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS api_tokens (
        provider TEXT PRIMARY KEY,
        encrypted_token TEXT NOT NULL,
        token_type TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS integrations (
        name TEXT PRIMARY KEY,
        enabled INTEGER NOT NULL DEFAULT 0,
        config TEXT,
        last_sync TEXT,
        status TEXT NOT NULL DEFAULT 'disconnected'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reminders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        content TEXT NOT NULL,
        due_at TEXT,
        completed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS clipboard_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        content TEXT NOT NULL,
        type TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS web_cache (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        external_id TEXT NOT NULL,
        provider TEXT NOT NULL,
        title TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE(external_id, provider)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        session_id TEXT,
        created_at TEXT NOT NULL
    )
    """,
)


class CredentialStore(Protocol):
    """Key/value persistence for encrypted secrets keyed by provider name."""

    def get_token(self, provider: str) -> str | None: ...

    def save_token(self, provider: str, secret: str, token_type: str = "oauth2") -> None: ...


@dataclass
class Integration:
    name: str
    enabled: bool = False
    config: dict[str, Any] = field(default_factory=dict)
    status: str = "disconnected"
    last_sync: str | None = None


@dataclass(frozen=True)
class Reminder:
    id: int
    content: str
    due_at: str | None
    completed: bool
    created_at: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "due_at": self.due_at,
            "completed": self.completed,
        }


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str
    created_at: str
    session_id: str | None = None


def _now() -> str:
    return datetime.now(UTC).isoformat()


class LocalStore:
    """SQLite store with one lock held for the duration of a single read or write."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            for statement in SCHEMA:
                self._conn.execute(statement)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        with self._lock:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
            return cursor

    def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()  # type: ignore[no-any-return]

    def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    # credentials

    def get_token(self, provider: str) -> str | None:
        row = self._fetchone("SELECT encrypted_token FROM api_tokens WHERE provider = ?", (provider,))
        return None if row is None else str(row["encrypted_token"])

    def save_token(self, provider: str, secret: str, token_type: str = "oauth2") -> None:
        self._execute(
            """INSERT OR REPLACE INTO api_tokens (provider, encrypted_token, token_type, updated_at)
            VALUES (?, ?, ?, ?)""",
            (provider, secret, token_type, _now()),
        )

    def has_token(self, provider: str) -> bool:
        return self.get_token(provider) is not None

    def delete_token(self, provider: str) -> None:
        self._execute("DELETE FROM api_tokens WHERE provider = ?", (provider,))

    # integrations

    def get_integration(self, name: str) -> Integration | None:
        row = self._fetchone("SELECT * FROM integrations WHERE name = ?", (name,))
        if row is None:
            return None
        config: dict[str, Any] = {}
        if row["config"]:
            try:
                config = json.loads(row["config"])
            except json.JSONDecodeError:
                logger.warning("store.integration.bad_config name={}", name)
        return Integration(
            name=row["name"],
            enabled=bool(row["enabled"]),
            config=config,
            status=row["status"],
            last_sync=row["last_sync"],
        )

    def save_integration(self, integration: Integration) -> None:
        self._execute(
            """INSERT OR REPLACE INTO integrations (name, enabled, config, last_sync, status)
            VALUES (?, ?, ?, ?, ?)""",
            (
                integration.name,
                int(integration.enabled),
                json.dumps(integration.config),
                integration.last_sync,
                integration.status,
            ),
        )

    def is_integration_enabled(self, name: str) -> bool:
        integration = self.get_integration(name)
        return integration is not None and integration.enabled

    # reminders

    def add_reminder(self, content: str, due_at: str | None = None) -> int:
        cursor = self._execute(
            "INSERT INTO reminders (content, due_at, created_at) VALUES (?, ?, ?)",
            (content, due_at, _now()),
        )
        return int(cursor.lastrowid or 0)

    def list_reminders(self, *, include_completed: bool = False) -> list[Reminder]:
        sql = "SELECT * FROM reminders"
        if not include_completed:
            sql += " WHERE completed = 0"
        rows = self._fetchall(sql + " ORDER BY id")
        return [_row_to_reminder(row) for row in rows]

    def complete_reminder(self, reminder_id: int) -> bool:
        cursor = self._execute("UPDATE reminders SET completed = 1 WHERE id = ?", (reminder_id,))
        return cursor.rowcount > 0

    def delete_reminder(self, reminder_id: int) -> bool:
        cursor = self._execute("DELETE FROM reminders WHERE id = ?", (reminder_id,))
        return cursor.rowcount > 0

    def due_reminders(self, now: datetime) -> list[Reminder]:
        due: list[Reminder] = []
        for reminder in self.list_reminders():
            if reminder.due_at is None:
                continue
            try:
                due_at = datetime.fromisoformat(reminder.due_at.replace("Z", "+00:00"))
            except ValueError:
                continue
            if due_at.tzinfo is None:
                due_at = due_at.replace(tzinfo=UTC)
            if due_at <= now:
                due.append(reminder)
        return due

    # clipboard history

    def save_clipboard_item(self, content: str, content_type: str = "text") -> None:
        self._execute(
            "INSERT INTO clipboard_history (content, type, created_at) VALUES (?, ?, ?)",
            (content, content_type, _now()),
        )

    def search_clipboard(self, query: str, limit: int = 10) -> list[dict[str, str]]:
        rows = self._fetchall(
            """SELECT content, created_at FROM clipboard_history
            WHERE content LIKE ? ORDER BY id DESC LIMIT ?""",
            (f"%{query}%", limit),
        )
        return [{"content": row["content"], "timestamp": row["created_at"]} for row in rows]

    # web cache

    def cache_get(self, key: str, *, now: datetime | None = None) -> str | None:
        row = self._fetchone("SELECT value, expires_at FROM web_cache WHERE key = ?", (key,))
        if row is None:
            return None
        if datetime.fromisoformat(row["expires_at"]) <= (now or datetime.now(UTC)):
            return None
        return str(row["value"])

    def cache_put(self, key: str, value: str, *, ttl: timedelta) -> None:
        expires_at = (datetime.now(UTC) + ttl).isoformat()
        self._execute(
            "INSERT OR REPLACE INTO web_cache (key, value, expires_at) VALUES (?, ?, ?)",
            (key, value, expires_at),
        )

    # proactive notification ledger

    def has_notified(self, external_id: str, provider: str) -> bool:
        row = self._fetchone(
            "SELECT 1 FROM notifications WHERE external_id = ? AND provider = ?",
            (external_id, provider),
        )
        return row is not None

    def record_notification(self, external_id: str, provider: str, title: str) -> None:
        self._execute(
            """INSERT OR IGNORE INTO notifications (external_id, provider, title, created_at)
            VALUES (?, ?, ?, ?)""",
            (external_id, provider, title, _now()),
        )

    # chat history

    def save_chat_message(self, role: str, content: str, session_id: str | None = None) -> None:
        self._execute(
            "INSERT INTO chat_messages (role, content, session_id, created_at) VALUES (?, ?, ?, ?)",
            (role, content, session_id, _now()),
        )

    def recent_chat_messages(self, session_id: str | None = None, limit: int = 10) -> list[ChatMessage]:
        """Return the newest ``limit`` messages, oldest first."""
        if session_id is None:
            rows = self._fetchall(
                "SELECT * FROM chat_messages WHERE session_id IS NULL ORDER BY id DESC LIMIT ?",
                (limit,),
            )
        else:
            rows = self._fetchall(
                "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY id DESC LIMIT ?",
                (session_id, limit),
            )
        return [
            ChatMessage(
                role=row["role"],
                content=row["content"],
                created_at=row["created_at"],
                session_id=row["session_id"],
            )
            for row in reversed(rows)
        ]

    def clear_chat_messages(self) -> None:
        self._execute("DELETE FROM chat_messages")


def _row_to_reminder(row: sqlite3.Row) -> Reminder:
    return Reminder(
        id=int(row["id"]),
        content=row["content"],
        due_at=row["due_at"],
        completed=bool(row["completed"]),
        created_at=row["created_at"],
    )
