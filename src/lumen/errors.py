"""Application-level exception types for Lumen."""

from __future__ import annotations


class LumenError(Exception):
    """Base exception for Lumen."""


class ConfigurationError(LumenError):
    """Base exception for configuration and startup validation errors."""


class ConfigMissing(ConfigurationError):
    """Raised when a provider's client configuration cannot be located."""

    def __init__(self, provider: str, detail: str | None = None) -> None:
        self.provider = provider
        message = detail or f"{provider} is not configured; add its client id and secret first"
        super().__init__(message)


class CredentialError(LumenError):
    """Base exception for stored credential problems."""


class CredentialMissing(CredentialError):
    """Raised when no usable token exists for a provider."""

    def __init__(self, provider: str, detail: str | None = None) -> None:
        self.provider = provider
        message = detail or f"no credentials stored for {provider}; connect it first"
        super().__init__(message)


class DecryptionError(CredentialError):
    """Raised when an encrypted secret is malformed, truncated or tampered with."""


class OAuthError(LumenError):
    """Base exception for the authorization-code flow."""


class OAuthCallbackError(OAuthError):
    """Raised when the local callback did not carry a usable authorization code."""


class OAuthCallbackMismatch(OAuthCallbackError):
    """Raised when the callback state does not match the CSRF token we issued."""


class OAuthCallbackTimeout(OAuthCallbackError):
    """Raised when nobody completed the consent screen in time."""


class OAuthListenerBusy(OAuthError):
    """Raised when another authorization attempt already owns the callback port."""


class OAuthTokenError(OAuthError):
    """Raised when the token endpoint rejects an exchange or refresh."""


class ModelRequestFailed(LumenError):
    """Raised when the model endpoint fails; aborts the current orchestration."""


class ToolExecutionError(LumenError):
    """Raised by tool handlers; folded back into the conversation."""


class IntegrationRequestError(ToolExecutionError):
    """Raised when an integration API answers with a non-success status."""

    def __init__(self, service: str, status_code: int, message: str) -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service} request failed ({status_code}): {message}")
