"""Exception hierarchy for OAuth discovery and token lifecycle errors.

Provides specific exception types for different failure modes so discovery
can fall back tier by tier and the token lifecycle can classify refresh
failures.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth related errors."""

    pass


class DiscoveryError(OAuth2Error):
    """Raised when a discovery step fails."""

    pass


class InvalidResourceURLError(DiscoveryError):
    """Raised when the resource URL is not an absolute URL."""

    pass


class BlockedURLError(DiscoveryError):
    """Raised when a URL violates the outbound fetch policy.

    Covers non-https schemes, unparseable URLs, and hosts that resolve to
    loopback, private, or link-local addresses.
    """

    def __init__(self, url: str, reason: str):
        super().__init__(f"Blocked URL {url!r}: {reason}")
        self.url = url
        self.reason = reason


class MalformedMetadataError(DiscoveryError):
    """Raised when a metadata document is not valid JSON or lacks required fields."""

    pass


class NetworkFailureError(DiscoveryError):
    """Raised when the transport fails (timeout, DNS, connection refused)."""

    pass


class TokenError(OAuth2Error):
    """Raised when token operations fail."""

    pass


class TokenRefreshError(TokenError):
    """Raised when token refresh fails.

    ``error_code`` carries the OAuth ``error`` value (RFC 6749 Section 5.2)
    when the token endpoint returned one.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        error_description: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.error_description = error_description
        self.status_code = status_code
