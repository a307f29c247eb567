"""Tools that call remote services; every handler is a coroutine."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx
from pydantic import BaseModel, Field

from lumen.errors import ToolExecutionError
from lumen.gemini.types import InlineDataPart
from lumen.integrations.google import GoogleWorkspace
from lumen.integrations.screen import Region, Screenshot, capture_primary_screen, crop
from lumen.integrations.weather import fetch_weather
from lumen.store.database import LocalStore
from lumen.tools.registry import EmptyInput, MediaResult, ToolRegistry

GOOGLE_DISABLED = "Google integration is not enabled. Run `lumen auth` to connect your Google account."


class CalendarEventsInput(BaseModel):
    days: int = Field(default=7, ge=1, le=60, description="How many days ahead to look")


class CreateEventInput(BaseModel):
    summary: str = Field(..., description="Event title")
    start_time: str = Field(..., description="Start time, RFC3339")
    end_time: str = Field(..., description="End time, RFC3339")
    description: str | None = Field(default=None, description="Event description")
    location: str | None = Field(default=None, description="Event location")


class UnreadEmailsInput(BaseModel):
    max_results: int = Field(default=5, ge=1, le=20)


class SendEmailInput(BaseModel):
    to: str = Field(..., description="Recipient address")
    subject: str = Field(..., description="Subject line")
    body: str = Field(..., description="Plain text body")


class CreateTaskInput(BaseModel):
    title: str = Field(..., description="Task title")
    notes: str | None = Field(default=None, description="Task notes")
    due: str | None = Field(default=None, description="Due date, RFC3339")


class WeatherInput(BaseModel):
    location: str = Field(..., description="The city or location")


class CaptureScreenInput(BaseModel):
    x: float | None = Field(default=None, ge=0, description="Left edge of the region in pixels")
    y: float | None = Field(default=None, ge=0, description="Top edge of the region in pixels")
    width: float | None = Field(default=None, gt=0, description="Region width in pixels")
    height: float | None = Field(default=None, gt=0, description="Region height in pixels")

    def region(self) -> Region | None:
        values = (self.x, self.y, self.width, self.height)
        if all(value is None for value in values):
            return None
        if any(value is None for value in values):
            raise ToolExecutionError("a region needs x, y, width and height")
        return Region(x=self.x or 0, y=self.y or 0, width=self.width or 0, height=self.height or 0)


def register_remote_tools(
    registry: ToolRegistry,
    *,
    store: LocalStore,
    google: GoogleWorkspace,
    http_client: httpx.AsyncClient,
    capture: Callable[[], Screenshot] = capture_primary_screen,
) -> None:
    """Register network-bound tools and screen capture."""

    register = registry.register

    def require_google() -> None:
        if not store.is_integration_enabled("google"):
            raise ToolExecutionError(GOOGLE_DISABLED)

    @register(
        name="get_google_calendar_events",
        description="Lists upcoming events from the user's primary Google Calendar.",
        model=CalendarEventsInput,
        kind="remote",
    )
    async def get_google_calendar_events(params: CalendarEventsInput) -> dict[str, Any]:
        require_google()
        now = datetime.now().astimezone()
        events = await google.list_events(now, now + timedelta(days=params.days))
        return {"events": events}

    @register(
        name="create_calendar_event",
        description="Creates an event in the user's primary Google Calendar.",
        model=CreateEventInput,
        kind="remote",
    )
    async def create_calendar_event(params: CreateEventInput) -> dict[str, Any]:
        require_google()
        event = await google.create_event(
            params.summary,
            params.start_time,
            params.end_time,
            description=params.description,
            location=params.location,
        )
        return {"status": "created", "event": event}

    @register(
        name="get_unread_emails",
        description="Fetches the most recent unread emails from the Gmail inbox.",
        model=UnreadEmailsInput,
        kind="remote",
    )
    async def get_unread_emails(params: UnreadEmailsInput) -> dict[str, Any]:
        require_google()
        emails = await google.unread_emails(max_results=params.max_results)
        return {"emails": [email.as_dict() for email in emails]}

    @register(name="send_email", description="Sends a plain text email via Gmail.", model=SendEmailInput, kind="remote")
    async def send_email(params: SendEmailInput) -> dict[str, Any]:
        require_google()
        return await google.send_email(params.to, params.subject, params.body)

    @register(name="list_google_tasks", description="Lists open tasks from Google Tasks.", kind="remote")
    async def list_google_tasks(_params: EmptyInput) -> dict[str, Any]:
        require_google()
        return {"tasks": await google.list_tasks()}

    @register(
        name="create_google_task",
        description="Adds a task to the user's default Google Tasks list.",
        model=CreateTaskInput,
        kind="remote",
    )
    async def create_google_task(params: CreateTaskInput) -> dict[str, Any]:
        require_google()
        task = await google.create_task(params.title, notes=params.notes, due=params.due)
        return {"status": "created", "task": task}

    @register(
        name="get_weather",
        description="Gets the current weather for a location.",
        model=WeatherInput,
        kind="remote",
    )
    async def get_weather(params: WeatherInput) -> dict[str, Any]:
        return await fetch_weather(http_client, params.location)

    @register(
        name="capture_screen",
        description="Takes a screenshot of the primary monitor, optionally cropped to a region, and attaches it.",
        model=CaptureScreenInput,
        kind="remote",
    )
    async def capture_screen(params: CaptureScreenInput) -> MediaResult:
        region = params.region()
        screenshot = await asyncio.to_thread(capture)
        if region is not None:
            screenshot = crop(screenshot, region)
        image = InlineDataPart(mime_type="image/png", data=screenshot.to_base64_png())
        return MediaResult(summary=f"captured {screenshot.width}x{screenshot.height} screenshot", media=(image,))
