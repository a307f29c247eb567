"""OAuth token set model and staleness rules."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel

EXPIRY_SKEW = timedelta(minutes=5)


class TokenSet(BaseModel):
    """Access token plus optional refresh token and absolute expiry."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str) -> TokenSet:
        return cls.model_validate_json(raw)


def is_expired(token: TokenSet, *, now: datetime | None = None) -> bool:
    """A token without expiry is always stale; otherwise refresh 5 minutes early."""
    if token.expires_at is None:
        return True
    now = now or datetime.now(UTC)
    expires_at = token.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    return now + EXPIRY_SKEW >= expires_at
