"""Local persistence."""

from lumen.store.database import ChatMessage, CredentialStore, Integration, LocalStore, Reminder

__all__ = ["ChatMessage", "CredentialStore", "Integration", "LocalStore", "Reminder"]
