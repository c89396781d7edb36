"""OAuth 2.1 token refresh service.

Implements the RFC 6749 Section 6 refresh-token grant against a fixed,
provider-specific token endpoint. This is the default refresher used by
:class:`~latchkey.auth.client.services.lifecycle.TokenLifecycleManager`.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError

from latchkey.auth.client.clock import Clock, default_clock
from latchkey.auth.client.constants import DEFAULT_TIMEOUT_SECONDS
from latchkey.auth.client.models.errors import TokenRefreshError
from latchkey.auth.client.models.tokens import (
    RefreshedTokens,
    RefreshTokenRequest,
    TokenResponse,
)

logger = logging.getLogger(__name__)


class TokenRefresher(Protocol):
    """Exchanges a refresh token for new tokens."""

    async def refresh(self, refresh_token: str) -> RefreshedTokens:
        """Refresh tokens.

        Raises:
            Exception: On any failure. OAuth error responses should raise
                :class:`TokenRefreshError` carrying the ``error`` code.
        """
        ...


class OAuth2TokenRefresher:
    """Refreshes access tokens at a fixed token endpoint.

    Uses application/x-www-form-urlencoded encoding as required by OAuth 2.1.
    """

    def __init__(
        self,
        token_endpoint: str,
        client_id: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        scope: str | None = None,
        clock: Clock = default_clock,
    ):
        """Initialize the refresher.

        Args:
            token_endpoint: Provider token endpoint URL
            client_id: OAuth client identifier
            timeout: HTTP request timeout in seconds
            scope: Optional scope to request on refresh
            clock: Time source for converting expires_in to expires_at
        """
        self.token_endpoint = token_endpoint
        self.client_id = client_id
        self.scope = scope
        self.timeout = timeout
        self._clock = clock
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def refresh(self, refresh_token: str) -> RefreshedTokens:
        """Refresh an access token using a refresh token.

        Args:
            refresh_token: Stored refresh token

        Returns:
            The new tokens

        Raises:
            TokenRefreshError: If the endpoint rejects the refresh or the
                request fails
        """
        refresh_request = RefreshTokenRequest(
            token_endpoint=self.token_endpoint,
            refresh_token=refresh_token,
            client_id=self.client_id,
            scope=self.scope,
        )
        logger.debug(f"Refreshing access token at {self.token_endpoint}")

        try:
            response = await self._http_client.post(
                refresh_request.token_endpoint,
                data=refresh_request.to_form_data(),
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"HTTP error during token refresh: {e}") from e

        token_response = self._parse_token_response(response)

        if not token_response.is_success():
            error_code = token_response.error or "unknown_error"
            description = token_response.error_description or "No description provided"
            logger.warning(
                f"Token refresh failed with {response.status_code}: "
                f"{error_code} - {description}"
            )
            raise TokenRefreshError(
                f"Token refresh failed: {error_code} - {description}",
                error_code=token_response.error,
                error_description=token_response.error_description,
                status_code=response.status_code,
            )

        return RefreshedTokens(
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token or refresh_token,
            expires_at=token_response.calculate_expires_at(self._clock()),
        )

    def _parse_token_response(self, response: httpx.Response) -> TokenResponse:
        """Parse a token endpoint response (RFC 6749 Section 5).

        Raises:
            TokenRefreshError: If the body is not a JSON token response
        """
        try:
            response_data = response.json()
        except ValueError as e:
            raise TokenRefreshError(
                f"Invalid token response format (HTTP {response.status_code}): {e}",
                status_code=response.status_code,
            ) from e

        if not isinstance(response_data, dict):
            raise TokenRefreshError(
                f"Invalid token response format (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        if response.status_code == 200 and "access_token" not in response_data:
            raise TokenRefreshError(
                "Token response missing required access_token",
                status_code=response.status_code,
            )

        if response.status_code != 200 and "error" not in response_data:
            response_data = {**response_data, "error": f"http_{response.status_code}"}

        try:
            return TokenResponse(**response_data)
        except ValidationError as e:
            raise TokenRefreshError(
                f"Invalid token response format: {e}",
                status_code=response.status_code,
            ) from e

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
