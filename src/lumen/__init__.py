"""Lumen - a desktop AI sidekick with tools and Google integrations."""

from lumen.app.runtime import AppRuntime
from lumen.config import Settings
from lumen.core.orchestrator import ConversationOrchestrator, OrchestrationResult
from lumen.tools.registry import ToolRegistry

__version__ = "0.1.0"

__all__ = ["AppRuntime", "ConversationOrchestrator", "OrchestrationResult", "Settings", "ToolRegistry"]
