"""Data models for OAuth credentials.

OAuthToken is the in-memory credential bundle, StoredToken is the
at-rest record written by TokenStorage.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator

STORAGE_VERSION = 1


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class TokenStatus(str, Enum):
    """Status of the persisted token record."""

    VALID = "valid"
    EXPIRED = "expired"
    MISSING = "missing"
    INVALID = "invalid"


class CredentialState(str, Enum):
    """Lifecycle state of the credential held by OAuthManager."""

    UNINITIALIZED = "uninitialized"
    AUTHORIZING = "authorizing"
    VALID = "valid"
    REFRESHING = "refreshing"
    FAILED = "failed"


class OAuthToken(BaseModel):
    """OAuth2 credential bundle.

    Attributes:
        access_token: Bearer token sent to Google APIs.
        refresh_token: Long-lived token used to mint new access tokens.
        expires_at: When the access token stops being accepted (UTC).
        scopes: Granted OAuth scopes.
        token_type: Token type reported by the provider.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime
    scopes: list[str] = Field(default_factory=list)
    token_type: str = "Bearer"

    @field_validator("expires_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def is_expired(self, buffer_seconds: int = 60, now: datetime | None = None) -> bool:
        """Check whether the token is expired or expires within the buffer.

        Args:
            buffer_seconds: Lead time before expiry treated as already expired.
            now: Reference time. Defaults to the current UTC time.

        Returns:
            True if the token must be refreshed before use.
        """
        now = now or utcnow()
        return self.expires_at <= now + timedelta(seconds=buffer_seconds)

    def seconds_until_expiry(self, now: datetime | None = None) -> float:
        """Seconds left before expiry (negative once expired)."""
        now = now or utcnow()
        return (self.expires_at - now).total_seconds()


class TokenMetadata(BaseModel):
    """Bookkeeping stored alongside a token."""

    service_name: str
    provider: str = "google"
    created_at: datetime = Field(default_factory=utcnow)
    last_refreshed: datetime | None = None


class StoredToken(BaseModel):
    """Versioned at-rest record persisted by TokenStorage."""

    version: int = STORAGE_VERSION
    metadata: TokenMetadata
    token: OAuthToken

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: int) -> int:
        if value != STORAGE_VERSION:
            raise ValueError(f"Unsupported token record version: {value}")
        return value
