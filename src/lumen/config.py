"""Configuration management for Lumen."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_HOME = Path("~/.config/lumen")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="LUMEN_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    home: Path = Field(default=DEFAULT_HOME, description="Directory holding the key file and local database")

    # Model
    gemini_api_key: str | None = Field(default=None, description="Gemini API key, overrides the stored one")
    gemini_model: str = Field(default="gemini-2.0-flash-exp", description="Gemini model name")
    gemini_api_base: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini REST API base URL",
    )
    system_prompt: str | None = Field(default=None, description="Replaces the default system instruction")

    # Google OAuth
    google_client_id: str | None = Field(default=None, description="OAuth client id, overrides the stored one")
    google_client_secret: str | None = Field(default=None, description="OAuth client secret")
    oauth_redirect_port: int = Field(default=18247, description="Loopback port for the OAuth callback")
    oauth_callback_timeout_seconds: float | None = Field(
        default=300, description="How long to wait for the browser callback; unset waits forever"
    )

    # Agent
    http_timeout_seconds: float = Field(default=20, ge=1, le=120, description="Timeout for outbound HTTP calls")
    max_steps: int = Field(default=5, ge=1, description="Maximum model round-trips per user request")
    history_limit: int = Field(default=10, ge=0, description="Stored messages replayed before a new request")
    user_name: str | None = Field(default=None, description="Display name given to the model")
    notes_vault_path: Path | None = Field(default=None, description="Markdown notes vault exposed to file tools")

    # Proactive agent
    proactive_enabled: bool = Field(default=True, description="Run the background check-for-updates loop")
    proactive_interval_seconds: int = Field(default=300, ge=10, description="Seconds between background ticks")

    log_level: str = Field(default="INFO", description="Log level")

    def resolve_home(self) -> Path:
        return self.home.expanduser().resolve()

    @property
    def key_path(self) -> Path:
        return self.resolve_home() / ".key"

    @property
    def database_path(self) -> Path:
        return self.resolve_home() / "lumen.db"


def get_settings() -> Settings:
    """Get application settings.

    pydantic-settings reads ``LUMEN_*`` environment variables and the ``.env`` file.
    """
    return Settings()
