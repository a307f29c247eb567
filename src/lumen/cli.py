"""Lumen command line interface."""

from __future__ import annotations

import asyncio
import webbrowser
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import typer
from loguru import logger
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from lumen.app.runtime import AppRuntime
from lumen.config import Settings, get_settings
from lumen.errors import LumenError
from lumen.logging_utils import configure_logging

T = TypeVar("T")

app = typer.Typer(name="lumen", help="Desktop AI sidekick with tools and Google integrations.", add_completion=False)
console = Console()

EXIT_COMMANDS = frozenset({"quit", "exit", "q", ",quit"})


def _runtime(settings: Settings, workspace: Path | None) -> AppRuntime:
    return AppRuntime(settings, workspace=workspace)


def _run(settings: Settings, workspace: Path | None, body: Callable[[AppRuntime], Awaitable[T]]) -> T:
    async def main() -> T:
        async with _runtime(settings, workspace) as runtime:
            return await body(runtime)

    try:
        return asyncio.run(main())
    except LumenError as exc:
        console.print(f"[bold red]error:[/] {exc}")
        raise typer.Exit(1) from exc


@app.callback()
def main_callback(
    log_level: str | None = typer.Option(None, "--log-level", help="Override LUMEN_LOG_LEVEL"),
) -> None:
    configure_logging(profile="default", level=log_level)


@app.command()
def ask(
    message: str = typer.Argument(..., help="Message to send"),
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Base directory for file tools"),  # noqa: B008
    session_id: str | None = typer.Option(None, "--session-id", help="Chat history session"),
) -> None:
    """Send one message and print the answer."""
    settings = get_settings()
    reply = _run(settings, workspace, lambda runtime: runtime.handle_message(message, session_id=session_id))
    console.print(Markdown(reply))


@app.command()
def chat(
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Base directory for file tools"),  # noqa: B008
    session_id: str | None = typer.Option(None, "--session-id", help="Chat history session"),
) -> None:
    """Start an interactive chat; the background agent runs alongside when enabled."""
    configure_logging(profile="chat")
    settings = get_settings()

    async def loop(runtime: AppRuntime) -> None:
        runtime.gemini_api_key()
        if settings.proactive_enabled:
            runtime.proactive_agent().start()
        console.print("[bold cyan]Lumen[/] is listening. Type [bold]quit[/] to leave.")
        while True:
            try:
                user_input = await asyncio.to_thread(console.input, "[bold green]you[/] > ")
            except (KeyboardInterrupt, EOFError):
                break
            text = user_input.strip()
            if not text:
                continue
            if text.lower() in EXIT_COMMANDS:
                break
            try:
                with console.status("thinking..."):
                    reply = await runtime.handle_message(text, session_id=session_id)
            except LumenError as exc:
                console.print(f"[bold red]error:[/] {exc}")
                continue
            console.print(Markdown(reply))
        console.print("Goodbye!")

    _run(settings, workspace, loop)


@app.command("configure-google")
def configure_google(
    client_id: str = typer.Option(..., "--client-id", prompt=True, help="OAuth client id"),
    client_secret: str = typer.Option(..., "--client-secret", prompt=True, hide_input=True, help="OAuth client secret"),
) -> None:
    """Store Google OAuth client credentials (the secret is encrypted)."""
    settings = get_settings()

    async def save(runtime: AppRuntime) -> None:
        runtime.configure_google(client_id, client_secret)

    _run(settings, None, save)
    console.print("Google client configured. Run [bold]lumen auth[/] to connect your account.")


@app.command()
def auth(
    no_browser: bool = typer.Option(False, "--no-browser", help="Print the consent URL instead of opening it"),
) -> None:
    """Connect a Google account through the browser consent screen."""
    settings = get_settings()

    def show(url: str) -> bool:
        console.print(f"Open this URL to continue:\n{url}")
        if no_browser:
            return False
        return webbrowser.open(url)

    async def connect(runtime: AppRuntime) -> None:
        await runtime.connect_google(open_browser=show)

    _run(settings, None, connect)
    console.print("[bold green]Google account connected.[/]")


@app.command("set-key")
def set_key(
    api_key: str = typer.Option(..., "--api-key", prompt="Gemini API key", hide_input=True),
) -> None:
    """Store the Gemini API key encrypted on disk."""
    settings = get_settings()

    async def save(runtime: AppRuntime) -> None:
        runtime.set_gemini_key(api_key)

    _run(settings, None, save)
    console.print("Gemini API key saved.")


@app.command()
def watch() -> None:
    """Run only the background agent until interrupted."""
    settings = get_settings()
    configure_logging(profile="default", log_file=settings.resolve_home() / "logs" / "lumen.log")

    async def run_forever(runtime: AppRuntime) -> None:
        runtime.proactive_agent().start()
        try:
            await asyncio.Event().wait()
        finally:
            logger.info("watch.stopping")

    try:
        _run(settings, None, run_forever)
    except KeyboardInterrupt:
        console.print("Stopped.")


@app.command()
def status() -> None:
    """Show configuration and integration state."""
    settings = get_settings()

    async def collect(runtime: AppRuntime) -> dict[str, object]:
        return runtime.status()

    rows = _run(settings, None, collect)
    table = Table(show_header=False)
    for key, value in rows.items():
        table.add_row(key, str(value))
    console.print(table)


def main() -> None:
    app()
