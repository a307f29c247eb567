"""Application runtime: wires store, credentials, tools, model and scheduler."""

from __future__ import annotations

import asyncio
import webbrowser
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from types import TracebackType

import httpx
from loguru import logger

from lumen.app.proactive import GmailSource, LogNotificationSink, NotificationSink, ProactiveAgent, ReminderSource
from lumen.config import Settings
from lumen.core.orchestrator import ConversationOrchestrator, ModelClient
from lumen.core.prompt import build_context, build_system_instruction, enrich_user_message
from lumen.crypto.cipher import SecretCipher
from lumen.errors import ConfigMissing, ModelRequestFailed
from lumen.gemini.client import GeminiClient
from lumen.gemini.types import TextPart, Turn
from lumen.integrations.google import GoogleWorkspace
from lumen.integrations.screen import Screenshot, capture_primary_screen
from lumen.oauth.lifecycle import TokenLifecycle
from lumen.oauth.tokens import TokenSet
from lumen.store.database import Integration, LocalStore
from lumen.tools.local import register_local_tools
from lumen.tools.registry import ToolRegistry
from lumen.tools.remote import register_remote_tools

GEMINI_PROVIDER = "gemini"
GOOGLE_PROVIDER = "google"
TOOLS_ONLY_REPLY = "Done. I took care of that for you."


class AppRuntime:
    """Long-lived application state shared by chat and the background agent."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: LocalStore | None = None,
        cipher: SecretCipher | None = None,
        http_client: httpx.AsyncClient | None = None,
        model: ModelClient | None = None,
        sink: NotificationSink | None = None,
        capture: Callable[[], Screenshot] = capture_primary_screen,
        workspace: Path | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or LocalStore(settings.database_path)
        self.cipher = cipher or SecretCipher(settings.key_path)
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        self.lifecycle = TokenLifecycle(self.store, self.cipher, self.http_client, settings=settings)
        self.google = GoogleWorkspace(self.lifecycle)
        self._model = model
        self._sink = sink
        self._proactive: ProactiveAgent | None = None

        self.registry = ToolRegistry()
        register_local_tools(
            self.registry,
            store=self.store,
            workspace=(workspace or Path.cwd()).resolve(),
            vault_path=settings.notes_vault_path,
        )
        register_remote_tools(
            self.registry,
            store=self.store,
            google=self.google,
            http_client=self.http_client,
            capture=capture,
        )

    async def __aenter__(self) -> AppRuntime:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._proactive is not None:
            await self._proactive.shutdown()
        if self._owns_http_client:
            await self.http_client.aclose()
        self.store.close()

    # model

    def gemini_api_key(self) -> str:
        if self.settings.gemini_api_key:
            return self.settings.gemini_api_key
        secret = self.store.get_token(GEMINI_PROVIDER)
        if secret is None:
            raise ConfigMissing(GEMINI_PROVIDER, "Gemini API key is not set; run `lumen set-key` first")
        return self.cipher.decrypt(secret)

    def set_gemini_key(self, api_key: str) -> None:
        api_key = api_key.strip()
        if not api_key:
            raise ValueError("API key must not be empty")
        self.store.save_token(GEMINI_PROVIDER, self.cipher.encrypt(api_key), "api_key")
        self._model = None
        logger.info("runtime.gemini.key_saved")

    @property
    def model(self) -> ModelClient:
        if self._model is None:
            self._model = GeminiClient(
                self.gemini_api_key(),
                model=self.settings.gemini_model,
                http_client=self.http_client,
                api_base=self.settings.gemini_api_base,
            )
        return self._model

    def orchestrator(self) -> ConversationOrchestrator:
        return ConversationOrchestrator(
            model=self.model,
            registry=self.registry,
            max_steps=self.settings.max_steps,
            system_instruction=build_system_instruction(
                self.settings.system_prompt,
                vault_path=self.settings.notes_vault_path,
            ),
        )

    # chat

    def _history(self, session_id: str | None) -> list[Turn]:
        if self.settings.history_limit == 0:
            return []
        messages = self.store.recent_chat_messages(session_id, limit=self.settings.history_limit)
        return [
            Turn(role="user" if message.role == "user" else "model", parts=[TextPart(message.content)])
            for message in messages
        ]

    def _context(self) -> str:
        return build_context(
            now=datetime.now().astimezone(),
            user_name=self.settings.user_name,
            reminders=self.store.list_reminders(),
            google_enabled=self.store.is_integration_enabled(GOOGLE_PROVIDER),
        )

    async def handle_message(self, message: str, *, session_id: str | None = None) -> str:
        """Answer one user message, replaying recent history, and store the exchange."""
        turns = self._history(session_id)
        turns.append(Turn.user_text(enrich_user_message(message, self._context())))

        result = await self.orchestrator().run(turns)
        text = result.text
        if not text:
            if result.tool_calls == 0:
                raise ModelRequestFailed("model returned an empty response")
            text = TOOLS_ONLY_REPLY

        self.store.save_chat_message("user", message, session_id)
        self.store.save_chat_message("assistant", text, session_id)
        logger.info("runtime.message.done steps={} tool_calls={}", result.steps, result.tool_calls)
        return text

    # google account

    def configure_google(self, client_id: str, client_secret: str) -> None:
        self.lifecycle.save_client_config(GOOGLE_PROVIDER, client_id.strip(), client_secret.strip())

    async def connect_google(self, *, open_browser: Callable[[str], object] = webbrowser.open) -> TokenSet:
        """Run the consent flow end to end and enable the Google integration."""
        session = self.lifecycle.session(GOOGLE_PROVIDER)
        authorize_url, state = session.start_auth_flow()
        logger.info("runtime.google.auth_url url={}", authorize_url)

        code = await asyncio.to_thread(
            session.listen_for_code,
            state,
            timeout=self.settings.oauth_callback_timeout_seconds,
            on_listening=lambda: open_browser(authorize_url),
        )
        tokens = await session.exchange_code(code)
        self.lifecycle.save_initial_tokens(GOOGLE_PROVIDER, tokens)

        integration = self.store.get_integration(GOOGLE_PROVIDER) or Integration(name=GOOGLE_PROVIDER)
        integration.enabled = True
        integration.status = "connected"
        integration.last_sync = datetime.now().astimezone().isoformat()
        self.store.save_integration(integration)
        logger.info("runtime.google.connected")
        return tokens

    def disconnect_google(self) -> None:
        self.store.delete_token(GOOGLE_PROVIDER)
        integration = self.store.get_integration(GOOGLE_PROVIDER)
        if integration is not None:
            integration.enabled = False
            integration.status = "disconnected"
            self.store.save_integration(integration)
        logger.info("runtime.google.disconnected")

    # background agent

    def proactive_agent(self) -> ProactiveAgent:
        if self._proactive is None:
            try:
                triage_model = self.model
            except ConfigMissing:
                logger.warning("proactive.triage.disabled reason=no Gemini API key")
                triage_model = None
            self._proactive = ProactiveAgent(
                store=self.store,
                sources=[GmailSource(self.google), ReminderSource(self.store)],
                sink=self._sink or LogNotificationSink(),
                model=triage_model,  # type: ignore[arg-type]
                interval_seconds=self.settings.proactive_interval_seconds,
            )
        return self._proactive

    def status(self) -> dict[str, object]:
        google = self.store.get_integration(GOOGLE_PROVIDER)
        return {
            "home": str(self.settings.resolve_home()),
            "model": self.settings.gemini_model,
            "gemini_key": bool(self.settings.gemini_api_key) or self.store.has_token(GEMINI_PROVIDER),
            "google_configured": google is not None and "client_id" in google.config,
            "google_enabled": google is not None and google.enabled,
            "google_tokens": self.store.has_token(GOOGLE_PROVIDER),
            "reminders": len(self.store.list_reminders()),
            "tools": len(self.registry.names()),
        }
