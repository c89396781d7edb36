"""Well-known paths and fixed policy values for OAuth discovery and refresh."""

from __future__ import annotations

# RFC 8414 Section 3
OAUTH_AUTHORIZATION_SERVER_PATH = "/.well-known/oauth-authorization-server"

DEFAULT_TIMEOUT_SECONDS = 30.0

# Tokens expiring within this window are treated as already expired
EXPIRY_MARGIN_SECONDS = 300.0

# Refresh failures matching any of these mean the refresh token itself is unusable
INCOMPATIBLE_TOKEN_SIGNATURES: tuple[str, ...] = (
    "invalid_grant",
    "Refresh token not found or invalid",
    "invalid_refresh_token",
)

LEGACY_TOKEN_MESSAGE = (
    "Your authentication needs to be refreshed. Please sign in again."
)

# Hostnames rejected before any resolution happens
BLOCKED_HOSTNAMES = frozenset(
    {
        "localhost",
        "localhost.localdomain",
        "ip6-localhost",
        "ip6-loopback",
        "metadata.google.internal",
    }
)
