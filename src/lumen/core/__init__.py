from lumen.core.orchestrator import ConversationOrchestrator, OrchestrationResult

__all__ = ["ConversationOrchestrator", "OrchestrationResult"]
