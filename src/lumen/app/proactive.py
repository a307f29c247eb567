"""Background check-for-updates loop."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import ClassVar, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.util import undefined
from loguru import logger
from rich.console import Console
from rich.panel import Panel

from lumen.integrations.google import GoogleWorkspace
from lumen.store.database import LocalStore

DEFAULT_INTERVAL_SECONDS = 300
DEFAULT_BATCH_SIZE = 5
SKIPPED = "SKIPPED"
JOB_ID = "lumen.proactive"
SHUTDOWN_YIELDS = 10

TRIAGE_PROMPT = """\
You are a personal assistant deciding whether a new {source} item deserves an interruption.
Answer with exactly YES if it looks personal, urgent or time-sensitive, otherwise NO.

Title: {title}
{body}"""


@dataclass(frozen=True)
class FeedItem:
    external_id: str
    source: str
    title: str
    body: str


class FeedSource(Protocol):
    name: str
    integration: str | None
    triage: bool

    async def fetch(self, limit: int) -> list[FeedItem]: ...


class NotificationSink(Protocol):
    def notify(self, title: str, body: str) -> None: ...


class TextModel(Protocol):
    async def generate_text(self, prompt: str) -> str: ...


class LogNotificationSink:
    """Logs notifications and prints them to the console."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    def notify(self, title: str, body: str) -> None:
        logger.info("proactive.notify title={}", title)
        self._console.print(Panel(body, title=title, border_style="cyan"))


class GmailSource:
    name: ClassVar[str] = "gmail"
    integration: ClassVar[str | None] = "google"
    triage: ClassVar[bool] = True

    def __init__(self, google: GoogleWorkspace) -> None:
        self._google = google

    async def fetch(self, limit: int) -> list[FeedItem]:
        emails = await self._google.unread_emails(max_results=limit)
        return [
            FeedItem(
                external_id=email.id,
                source=self.name,
                title=email.subject or "New Email",
                body=f"From: {email.sender or 'unknown'}\n{email.snippet}",
            )
            for email in emails
        ]


class ReminderSource:
    """Local reminders whose due time has passed; never triaged."""

    name: ClassVar[str] = "reminders"
    integration: ClassVar[str | None] = None
    triage: ClassVar[bool] = False

    def __init__(self, store: LocalStore, clock: Callable[[], datetime] | None = None) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(UTC))

    async def fetch(self, limit: int) -> list[FeedItem]:
        pending = [
            reminder
            for reminder in self._store.due_reminders(self._clock())
            if not self._store.has_notified(str(reminder.id), self.name)
        ]
        return [
            FeedItem(
                external_id=str(reminder.id),
                source=self.name,
                title="Reminder",
                body=reminder.content if not reminder.due_at else f"{reminder.content}\nDue: {reminder.due_at}",
            )
            for reminder in pending[:limit]
        ]


class ProactiveAgent:
    """Polls feed sources on an interval and surfaces items worth a notification.

    Every item is evaluated at most once: the ``(external_id, source)`` pair is
    written to the notification ledger whether it was surfaced or skipped.
    """

    def __init__(
        self,
        *,
        store: LocalStore,
        sources: Sequence[FeedSource],
        sink: NotificationSink,
        model: TextModel | None = None,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        scheduler: BaseScheduler | None = None,
    ) -> None:
        self._store = store
        self._sources = list(sources)
        self._sink = sink
        self._model = model
        self._interval_seconds = interval_seconds
        self._batch_size = batch_size
        self.scheduler = scheduler or AsyncIOScheduler(timezone=UTC)
        self._ticks: set[asyncio.Task] = set()

    def start(self, *, run_now: bool = True) -> None:
        """Schedule the tick job; must be called with the event loop running."""
        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self._interval_seconds),
            id=JOB_ID,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
            next_run_time=datetime.now(UTC) if run_now else undefined,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("proactive.started interval={}s sources={}", self._interval_seconds, len(self._sources))

    async def shutdown(self) -> None:
        """Stop the scheduler and wait for a tick that is already running.

        The asyncio scheduler applies ``shutdown`` on a later loop iteration, so
        this yields until it reports stopped.
        """
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=False)
        for _ in range(SHUTDOWN_YIELDS):
            if not self.scheduler.running:
                break
            await asyncio.sleep(0)
        if self._ticks:
            await asyncio.gather(*self._ticks, return_exceptions=True)
        logger.info("proactive.stopped")

    async def tick(self) -> int:
        """Check every source once; returns how many notifications were sent."""
        task = asyncio.current_task()
        if task is not None:
            self._ticks.add(task)
        try:
            notified = 0
            for source in self._sources:
                try:
                    notified += await self._check_source(source)
                except Exception:
                    logger.exception("proactive.source.error source={}", source.name)
            logger.debug("proactive.tick notified={}", notified)
            return notified
        finally:
            if task is not None:
                self._ticks.discard(task)

    async def _check_source(self, source: FeedSource) -> int:
        if source.integration is not None and not self._store.is_integration_enabled(source.integration):
            return 0

        notified = 0
        for item in await source.fetch(self._batch_size):
            if self._store.has_notified(item.external_id, item.source):
                continue
            if source.triage and not await self._is_important(item):
                self._store.record_notification(item.external_id, item.source, SKIPPED)
                logger.info("proactive.skipped source={} id={}", item.source, item.external_id)
                continue
            self._sink.notify(item.title, item.body)
            self._store.record_notification(item.external_id, item.source, item.title)
            notified += 1
        return notified

    async def _is_important(self, item: FeedItem) -> bool:
        if self._model is None:
            return True
        verdict = await self._model.generate_text(
            TRIAGE_PROMPT.format(source=item.source, title=item.title, body=item.body)
        )
        return "YES" in verdict.upper()
