"""Process-wide loguru setup."""

from __future__ import annotations

import os
import re
import sys
from logging import Handler
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from loguru import logger
from rich import get_console
from rich.logging import RichHandler

if TYPE_CHECKING:
    import loguru

LogProfile = Literal["default", "chat"]

_FORMATS: dict[LogProfile, str] = {
    "chat": "{level} | {message}",
    "default": "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<6} | {name}:{function}:{line} | {message}",
}
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<6} | {name}:{line} | {message}"

# Bearer headers and OAuth form fields that must never reach a sink.
_SECRET_PATTERN = re.compile(
    r"(?i)(bearer\s+|\b(?:access_token|refresh_token|client_secret|code|api[_-]?key)[\"']?\s*[=:]\s*[\"']?)[^\s\"'&,}]+"
)

_configured: tuple[LogProfile, Path | None] | None = None


def redact(text: str) -> str:
    return _SECRET_PATTERN.sub(r"\1***", text)


def _redact_record(record: loguru.Record) -> None:
    record["message"] = redact(record["message"])


def _chat_handler() -> Handler:
    return RichHandler(
        console=get_console(),
        show_level=True,
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )


def configure_logging(
    *,
    profile: LogProfile = "default",
    level: str | None = None,
    log_file: Path | None = None,
) -> None:
    """Install sinks for ``profile``; repeated calls with the same arguments are no-ops.

    ``log_file`` adds a rotating file sink, used by long-running commands.
    """
    global _configured
    if _configured == (profile, log_file):
        return

    level = (level or os.getenv("LUMEN_LOG_LEVEL", "INFO")).upper()
    logger.remove()
    logger.configure(patcher=_redact_record)
    if profile == "chat":
        logger.add(_chat_handler(), level=level, format="{message}", backtrace=False, diagnose=False)
    else:
        logger.add(sys.stderr, level=level, format=_FORMATS[profile], backtrace=False, diagnose=False)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=level,
            format=_FILE_FORMAT,
            rotation="5 MB",
            retention=3,
            encoding="utf-8",
            backtrace=False,
            diagnose=False,
        )
    _configured = (profile, log_file)
