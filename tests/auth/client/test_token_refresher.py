"""Tests for the OAuth 2.1 refresh-token grant.

High-impact tests covering the token endpoint interaction:
- Successful refresh with form encoding and expiry calculation
- OAuth error responses surfaced as classifiable TokenRefreshError
- Transport failures and malformed responses
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from latchkey.auth.client.models.errors import TokenRefreshError
from latchkey.auth.client.models.tokens import RefreshTokenRequest, TokenResponse
from latchkey.auth.client.services.tokens import OAuth2TokenRefresher


def make_response(status_code: int, body: object) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


class TestSuccessfulRefresh:
    """Test successful token refresh."""

    def setup_method(self):
        # Arrange
        self.refresher = OAuth2TokenRefresher(
            token_endpoint="https://auth.example.com/token",
            client_id="client-456",
            clock=lambda: 1_000.0,
        )
        self.refresher._http_client = AsyncMock()

    async def test_refresh_returns_new_tokens(self):
        # Arrange
        self.refresher._http_client.post.return_value = make_response(
            200,
            {
                "access_token": "new-access-token",
                "token_type": "Bearer",
                "expires_in": 3600,
                "refresh_token": "new-refresh-token",
            },
        )

        # Act
        refreshed = await self.refresher.refresh("old-refresh-token")

        # Assert
        assert refreshed.access_token == "new-access-token"
        assert refreshed.refresh_token == "new-refresh-token"
        assert refreshed.expires_at == 4_600_000.0

        # Verify HTTP request was made correctly
        self.refresher._http_client.post.assert_awaited_once()
        call_args = self.refresher._http_client.post.call_args
        assert call_args[0][0] == "https://auth.example.com/token"

        form_data = call_args[1]["data"]
        assert form_data == {
            "grant_type": "refresh_token",
            "refresh_token": "old-refresh-token",
            "client_id": "client-456",
        }

        headers = call_args[1]["headers"]
        assert headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert headers["Accept"] == "application/json"

    async def test_refresh_without_rotation_keeps_refresh_token(self):
        # Arrange
        self.refresher._http_client.post.return_value = make_response(
            200, {"access_token": "new-access-token"}
        )

        # Act
        refreshed = await self.refresher.refresh("old-refresh-token")

        # Assert
        assert refreshed.refresh_token == "old-refresh-token"
        assert refreshed.expires_at is None

    async def test_scope_is_sent_when_configured(self):
        # Arrange
        self.refresher.scope = "user:inference"
        self.refresher._http_client.post.return_value = make_response(
            200, {"access_token": "new-access-token"}
        )

        # Act
        await self.refresher.refresh("old-refresh-token")

        # Assert
        form_data = self.refresher._http_client.post.call_args[1]["data"]
        assert form_data["scope"] == "user:inference"


class TestRefreshErrors:
    """Test error handling in token refresh."""

    def setup_method(self):
        self.refresher = OAuth2TokenRefresher(
            token_endpoint="https://auth.example.com/token", client_id="client-456"
        )
        self.refresher._http_client = AsyncMock()

    async def test_invalid_grant_error(self):
        # Arrange
        self.refresher._http_client.post.return_value = make_response(
            400,
            {"error": "invalid_grant", "error_description": "Refresh token revoked"},
        )

        # Act & Assert
        with pytest.raises(TokenRefreshError) as exc_info:
            await self.refresher.refresh("revoked-token")

        assert exc_info.value.error_code == "invalid_grant"
        assert exc_info.value.status_code == 400
        assert "invalid_grant" in str(exc_info.value)
        assert "Refresh token revoked" in str(exc_info.value)

    async def test_error_without_error_code(self):
        self.refresher._http_client.post.return_value = make_response(
            500, {"message": "internal"}
        )

        with pytest.raises(TokenRefreshError) as exc_info:
            await self.refresher.refresh("refresh-token")

        assert exc_info.value.error_code == "http_500"

    async def test_missing_access_token_in_success_response(self):
        self.refresher._http_client.post.return_value = make_response(
            200, {"token_type": "Bearer"}
        )

        with pytest.raises(TokenRefreshError) as exc_info:
            await self.refresher.refresh("refresh-token")

        assert "missing required access_token" in str(exc_info.value)

    async def test_non_json_response(self):
        # Arrange
        response = MagicMock()
        response.status_code = 502
        response.json.side_effect = ValueError("Expecting value")
        self.refresher._http_client.post.return_value = response

        # Act & Assert
        with pytest.raises(TokenRefreshError) as exc_info:
            await self.refresher.refresh("refresh-token")

        assert exc_info.value.error_code is None

    async def test_network_error(self):
        self.refresher._http_client.post.side_effect = httpx.ConnectError(
            "Connection refused"
        )

        with pytest.raises(TokenRefreshError) as exc_info:
            await self.refresher.refresh("refresh-token")

        assert "HTTP error during token refresh" in str(exc_info.value)
        assert exc_info.value.error_code is None

    async def test_close_closes_http_client(self):
        await self.refresher.close()

        self.refresher._http_client.aclose.assert_awaited_once()


class TestTokenModels:
    """Test token request/response helpers."""

    def test_refresh_request_form_data_omits_empty_scope(self):
        request = RefreshTokenRequest(
            token_endpoint="https://auth.example.com/token",
            refresh_token="rt",
            client_id="cid",
        )

        assert "scope" not in request.to_form_data()

    def test_token_response_success_and_error(self):
        assert TokenResponse(access_token="at").is_success()
        assert TokenResponse(error="invalid_grant").is_error()
        assert not TokenResponse(access_token="").is_success()

    def test_calculate_expires_at(self):
        assert TokenResponse(access_token="at", expires_in=60).calculate_expires_at(100.0) == 160_000.0
        assert TokenResponse(access_token="at").calculate_expires_at(100.0) is None
