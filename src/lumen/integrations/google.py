"""Google Calendar, Gmail and Tasks REST calls over the token lifecycle."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from loguru import logger

from lumen.errors import IntegrationRequestError
from lumen.oauth.lifecycle import TokenLifecycle

PROVIDER = "google"
CALENDAR_EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"
GMAIL_MESSAGES_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages"
TASKLISTS_URL = "https://tasks.googleapis.com/tasks/v1/users/@me/lists"
TASKS_URL = "https://tasks.googleapis.com/tasks/v1/lists/{tasklist}/tasks"
UNREAD_INBOX_QUERY = "is:unread inbox"


@dataclass(frozen=True)
class EmailSummary:
    id: str
    thread_id: str
    subject: str | None
    sender: str | None
    date: str | None
    snippet: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "subject": self.subject,
            "from": self.sender,
            "date": self.date,
            "snippet": self.snippet,
        }


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip()[:200] or response.reason_phrase
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return response.reason_phrase


def _summarize_event(item: dict[str, Any]) -> dict[str, Any]:
    start = item.get("start") or {}
    end = item.get("end") or {}
    return {
        "id": item.get("id"),
        "summary": item.get("summary"),
        "description": item.get("description"),
        "location": item.get("location"),
        "start": start.get("dateTime") or start.get("date"),
        "end": end.get("dateTime") or end.get("date"),
    }


class GoogleWorkspace:
    """Thin wrappers returning plain dicts suitable for tool responses."""

    def __init__(self, lifecycle: TokenLifecycle) -> None:
        self._lifecycle = lifecycle

    async def _call(self, service: str, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._lifecycle.request(PROVIDER, method, url, **kwargs)
        if response.is_error:
            raise IntegrationRequestError(service, response.status_code, _error_message(response))
        if not response.content:
            return {}
        payload = response.json()
        return payload if isinstance(payload, dict) else {"items": payload}

    # calendar

    async def list_events(
        self,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        *,
        max_results: int = 20,
    ) -> list[dict[str, Any]]:
        time_min = time_min or datetime.now(UTC)
        time_max = time_max or time_min + timedelta(days=7)
        payload = await self._call(
            "Google Calendar",
            "GET",
            CALENDAR_EVENTS_URL,
            params={
                "timeMin": time_min.isoformat(),
                "timeMax": time_max.isoformat(),
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": str(max_results),
            },
        )
        return [_summarize_event(item) for item in payload.get("items", [])]

    async def create_event(
        self,
        summary: str,
        start_time: str,
        end_time: str,
        *,
        description: str | None = None,
        location: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": summary,
            "start": {"dateTime": start_time},
            "end": {"dateTime": end_time},
        }
        if description:
            body["description"] = description
        if location:
            body["location"] = location
        payload = await self._call("Google Calendar", "POST", CALENDAR_EVENTS_URL, json=body)
        logger.info("google.calendar.created id={}", payload.get("id"))
        return _summarize_event(payload)

    # gmail

    async def unread_emails(self, *, max_results: int = 5, query: str = UNREAD_INBOX_QUERY) -> list[EmailSummary]:
        listing = await self._call(
            "Gmail",
            "GET",
            GMAIL_MESSAGES_URL,
            params={"maxResults": str(max_results), "q": query},
        )
        emails: list[EmailSummary] = []
        for ref in listing.get("messages") or []:
            message_id = ref.get("id")
            if not message_id:
                continue
            detail = await self._call(
                "Gmail",
                "GET",
                f"{GMAIL_MESSAGES_URL}/{message_id}",
                params={"format": "metadata", "metadataHeaders": ["Subject", "From", "Date"]},
            )
            headers = {
                header.get("name"): header.get("value")
                for header in (detail.get("payload") or {}).get("headers") or []
            }
            emails.append(
                EmailSummary(
                    id=message_id,
                    thread_id=detail.get("threadId", ""),
                    subject=headers.get("Subject"),
                    sender=headers.get("From"),
                    date=headers.get("Date"),
                    snippet=detail.get("snippet", ""),
                )
            )
        return emails

    async def send_email(self, to: str, subject: str, body: str) -> dict[str, Any]:
        raw = f'To: {to}\r\nSubject: {subject}\r\nContent-Type: text/plain; charset="UTF-8"\r\n\r\n{body}'
        encoded = base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")
        payload = await self._call("Gmail", "POST", f"{GMAIL_MESSAGES_URL}/send", json={"raw": encoded})
        logger.info("google.gmail.sent id={}", payload.get("id"))
        return {"status": "sent", "id": payload.get("id")}

    # tasks

    async def _first_tasklist(self) -> str:
        lists = await self._call("Google Tasks", "GET", TASKLISTS_URL)
        items = lists.get("items") or []
        if not items or not items[0].get("id"):
            raise IntegrationRequestError("Google Tasks", 404, "no task lists found")
        return str(items[0]["id"])

    async def list_tasks(self, *, max_results: int = 20) -> list[dict[str, Any]]:
        tasklist = await self._first_tasklist()
        payload = await self._call(
            "Google Tasks",
            "GET",
            TASKS_URL.format(tasklist=tasklist),
            params={"maxResults": str(max_results), "showCompleted": "false"},
        )
        return [
            {"id": item.get("id"), "title": item.get("title"), "notes": item.get("notes"), "due": item.get("due")}
            for item in payload.get("items") or []
        ]

    async def create_task(self, title: str, *, notes: str | None = None, due: str | None = None) -> dict[str, Any]:
        tasklist = await self._first_tasklist()
        body: dict[str, Any] = {"title": title}
        if notes:
            body["notes"] = notes
        if due:
            body["due"] = due
        payload = await self._call("Google Tasks", "POST", TASKS_URL.format(tasklist=tasklist), json=body)
        return {"id": payload.get("id"), "title": payload.get("title", title), "due": payload.get("due")}
