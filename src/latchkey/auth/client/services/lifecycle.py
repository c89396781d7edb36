"""Access token lifecycle with single-flight refresh.

The manager returns a currently valid access token, refreshing it when
expired. At most one refresh request is in flight per manager; callers
arriving while one runs wait for it and then re-read the store instead of
refreshing again.

Refresh failures are classified. When the refresh token itself is rejected
the stored credentials are cleared, and credentials of legacy provenance
produce a :class:`MigrationInfo` for the UI to act on. Any other failure
leaves the store untouched.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum

from latchkey.auth.client.clock import Clock, default_clock
from latchkey.auth.client.constants import (
    EXPIRY_MARGIN_SECONDS,
    INCOMPATIBLE_TOKEN_SIGNATURES,
    LEGACY_TOKEN_MESSAGE,
)
from latchkey.auth.client.models.errors import TokenRefreshError
from latchkey.auth.client.models.tokens import (
    CredentialSource,
    MigrationInfo,
    OAuthCredentials,
    TokenResult,
    is_token_expired,
)
from latchkey.auth.client.services.credentials import CredentialStore
from latchkey.auth.client.services.tokens import TokenRefresher

logger = logging.getLogger(__name__)


class RefreshFailure(str, Enum):
    """Classification of a failed refresh."""

    INCOMPATIBLE_TOKEN = "incompatible_token"  # Refresh token rejected
    TRANSIENT = "transient"  # Network error, timeout, unknown shape


def classify_refresh_error(error: BaseException) -> RefreshFailure:
    """Classify a refresher failure.

    A typed ``error_code`` on :class:`TokenRefreshError` is checked first,
    then the message is matched against known OAuth error signatures.
    Refreshers that phrase errors differently will be classified as
    transient.
    """
    if isinstance(error, TokenRefreshError) and error.error_code:
        if error.error_code in INCOMPATIBLE_TOKEN_SIGNATURES:
            return RefreshFailure.INCOMPATIBLE_TOKEN

    message = str(error)
    if any(signature in message for signature in INCOMPATIBLE_TOKEN_SIGNATURES):
        return RefreshFailure.INCOMPATIBLE_TOKEN
    return RefreshFailure.TRANSIENT


def _format_expiry(expires_at: float | None) -> str:
    if expires_at is None:
        return "never"
    try:
        return datetime.fromtimestamp(expires_at / 1000, tz=timezone.utc).isoformat()
    except (OverflowError, ValueError, OSError):
        return f"{expires_at} ms"


class TokenLifecycleManager:
    """Hands out valid access tokens for one credential namespace.

    States per credential set: no credentials, valid, expired, refreshing,
    then valid again or cleared.
    """

    def __init__(
        self,
        store: CredentialStore,
        refresher: TokenRefresher,
        clock: Clock = default_clock,
        expiry_margin: float = EXPIRY_MARGIN_SECONDS,
    ):
        """Initialize the manager.

        Args:
            store: Credential store for this namespace
            refresher: Exchanges refresh tokens for new tokens
            clock: Current-time source for expiry checks
            expiry_margin: Seconds before expiry at which tokens count as expired
        """
        self._store = store
        self._refresher = refresher
        self._clock = clock
        self._expiry_margin = expiry_margin
        self._refresh_task: asyncio.Task[TokenResult] | None = None

    @property
    def refresh_in_progress(self) -> bool:
        return self._refresh_task is not None

    def is_expired(self, credentials: OAuthCredentials) -> bool:
        return is_token_expired(
            credentials.expires_at, self._clock(), self._expiry_margin
        )

    async def get_valid_token(self) -> TokenResult:
        """Return a valid access token, refreshing it if needed.

        Never raises; refresh and store failures are encoded in the result.
        """
        creds = await self._read_credentials()
        if creds is None or not creds.has_access_token():
            return TokenResult()

        if not self.is_expired(creds):
            return TokenResult(access_token=creds.access_token)

        logger.debug(
            f"OAuth token expired (was: {_format_expiry(creds.expires_at)}), "
            "attempting refresh"
        )

        if not creds.can_refresh():
            logger.debug("No refresh token available, cannot refresh expired token")
            return TokenResult()

        if self._refresh_task is not None:
            return await self._await_concurrent_refresh(self._refresh_task)

        logger.debug("Starting token refresh (holding refresh slot)")
        task = asyncio.create_task(
            self.perform_refresh(creds.refresh_token, creds.effective_source)
        )
        self._refresh_task = task
        task.add_done_callback(self._release_refresh_slot)
        try:
            return await asyncio.shield(task)
        finally:
            if task.done():
                self._release_refresh_slot(task)

    async def _read_credentials(self) -> OAuthCredentials | None:
        try:
            return await self._store.get()
        except Exception as e:
            logger.warning(f"Failed to read stored OAuth credentials: {e}")
            return None

    async def _await_concurrent_refresh(
        self, task: asyncio.Task[TokenResult]
    ) -> TokenResult:
        """Wait for another caller's refresh, then re-read the store."""
        logger.debug("Token refresh already in progress, waiting")
        try:
            await asyncio.shield(task)
        except Exception:
            # The refresh in flight decides the outcome
            logger.debug("Concurrent token refresh raised", exc_info=True)

        updated = await self._read_credentials()
        if updated is not None and updated.has_access_token() and not self.is_expired(
            updated
        ):
            logger.debug(
                "Got refreshed token from concurrent refresh "
                f"(expires: {_format_expiry(updated.expires_at)})"
            )
            return TokenResult(access_token=updated.access_token)

        logger.debug("Concurrent refresh did not produce a valid token")
        return TokenResult()

    def _release_refresh_slot(self, task: asyncio.Task[TokenResult]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def perform_refresh(
        self, refresh_token: str, source: CredentialSource
    ) -> TokenResult:
        """Refresh tokens and persist the outcome.

        Only called while holding the refresh slot. A failure to persist the
        new tokens is classified like any other refresh failure.

        Args:
            refresh_token: Stored refresh token
            source: Effective provenance of the stored credentials
        """
        try:
            refreshed = await self._refresher.refresh(refresh_token)

            # A successful refresh at our own endpoint proves the credential is native
            await self._store.set(
                OAuthCredentials(
                    access_token=refreshed.access_token,
                    refresh_token=refreshed.refresh_token,
                    expires_at=refreshed.expires_at,
                    source=CredentialSource.NATIVE,
                )
            )
        except Exception as e:
            return await self._handle_refresh_failure(e, source)

        logger.info(
            "Successfully refreshed OAuth token "
            f"(expires: {_format_expiry(refreshed.expires_at)})"
        )
        return TokenResult(access_token=refreshed.access_token)

    async def _handle_refresh_failure(
        self, error: Exception, source: CredentialSource
    ) -> TokenResult:
        logger.warning(f"Failed to refresh OAuth token: {error}")

        if classify_refresh_error(error) is not RefreshFailure.INCOMPATIBLE_TOKEN:
            # Possibly transient, keep the stored credentials
            return TokenResult()

        logger.debug("Refresh token rejected, clearing stored credentials")

        migration_required = None
        if source is CredentialSource.CLI:
            logger.debug("Token was from a legacy or unknown source, migration required")
            migration_required = MigrationInfo(message=LEGACY_TOKEN_MESSAGE)

        try:
            await self._store.set(
                OAuthCredentials(access_token="", refresh_token=None, expires_at=None)
            )
        except Exception as e:
            logger.warning(f"Failed to clear rejected OAuth credentials: {e}")
        return TokenResult(migration_required=migration_required)

    def reset(self) -> None:
        """Forget any in-flight refresh without cancelling it.

        The forgotten refresh still runs to completion and persists its
        outcome. A caller arriving after the reset starts a new refresh, so
        two refreshes can briefly overlap.
        """
        self._refresh_task = None
