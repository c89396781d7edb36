"""Token state and lifecycle models.

Contains stored credential records, token endpoint request/response
handling, and the results surfaced by the token lifecycle manager.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel


class CredentialSource(str, Enum):
    """Provenance of stored OAuth credentials."""

    NATIVE = "native"  # Issued or refreshed by our own token endpoint
    CLI = "cli"  # Imported from a legacy client


class OAuthCredentials(BaseModel):
    """Stored OAuth credentials for one credential namespace.

    ``expires_at`` is a UNIX timestamp in milliseconds. A missing ``source``
    is read as :attr:`CredentialSource.CLI`.
    """

    access_token: str = ""
    refresh_token: str | None = None
    expires_at: float | None = None
    source: CredentialSource | None = None

    @property
    def effective_source(self) -> CredentialSource:
        """Provenance used for migration decisions."""
        return self.source if self.source is not None else CredentialSource.CLI

    def has_access_token(self) -> bool:
        return bool(self.access_token)

    def can_refresh(self) -> bool:
        """Check if token can be refreshed."""
        return bool(self.refresh_token)


def to_epoch_millis(seconds: float) -> float:
    """Convert a clock reading in seconds to the stored millisecond unit."""
    return seconds * 1000


def is_token_expired(
    expires_at: float | None, now: float, margin_seconds: float = 0.0
) -> bool:
    """Check whether a token expiring at ``expires_at`` should be treated as expired.

    Args:
        expires_at: Expiry timestamp in milliseconds, or None for tokens without expiry
        now: Current clock reading in seconds
        margin_seconds: Treat tokens expiring within this window as expired
    """
    if expires_at is None:
        return False  # No expiry means token doesn't expire
    return to_epoch_millis(now) >= expires_at - to_epoch_millis(margin_seconds)


@dataclass(frozen=True)
class RefreshTokenRequest:
    """OAuth 2.1 refresh token request parameters (RFC 6749 Section 6)."""

    # Required fields first
    token_endpoint: str
    refresh_token: str
    client_id: str

    # Optional fields with defaults last
    grant_type: str = "refresh_token"
    scope: str | None = None

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request."""
        data = {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
        }

        if self.scope:
            data["scope"] = self.scope

        return data


class TokenResponse(BaseModel):
    """OAuth 2.1 token response (RFC 6749 Section 5).

    Represents both successful responses (Section 5.1) and error
    responses (Section 5.2).
    """

    # Success response fields (RFC 6749 Section 5.1)
    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None  # Seconds until expiry
    refresh_token: str | None = None
    scope: str | None = None

    # Error response fields (RFC 6749 Section 5.2)
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        """Check if token response indicates success."""
        return self.error is None and bool(self.access_token)

    def is_error(self) -> bool:
        """Check if token response indicates an error."""
        return self.error is not None

    def calculate_expires_at(self, now: float) -> float | None:
        """Calculate the absolute expiry in milliseconds from expires_in.

        Args:
            now: Current clock reading in seconds
        """
        if self.expires_in is None:
            return None
        return to_epoch_millis(now + self.expires_in)


@dataclass(frozen=True)
class RefreshedTokens:
    """Tokens returned by a successful refresh.

    ``expires_at`` uses the same millisecond unit as :class:`OAuthCredentials`.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: float | None = None


@dataclass(frozen=True)
class MigrationInfo:
    """Signal that stored credentials came from a legacy client and must be replaced.

    Produced by the lifecycle manager; interpreting it (prompting the user)
    is up to the caller.
    """

    message: str
    reason: str = "legacy_token"


@dataclass(frozen=True)
class TokenResult:
    """Outcome of a token validation or refresh attempt."""

    access_token: str | None = None
    migration_required: MigrationInfo | None = None
