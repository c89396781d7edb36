"""Aggregate authentication state.

Combines billing configuration, stored credentials, the lifecycle manager's
token result, and the active workspace into one read-only snapshot.
"""

from __future__ import annotations

from collections.abc import Callable

from latchkey.auth.client.models.state import (
    AuthState,
    AuthType,
    BillingState,
    SetupNeeds,
    StoredConfig,
    WorkspaceState,
)
from latchkey.auth.client.services.credentials import CredentialStore
from latchkey.auth.client.services.lifecycle import TokenLifecycleManager

ConfigLoader = Callable[[], StoredConfig | None]


class AuthStateResolver:
    """Builds :class:`AuthState` snapshots."""

    def __init__(
        self,
        store: CredentialStore,
        lifecycle: TokenLifecycleManager,
        config_loader: ConfigLoader,
    ):
        self._store = store
        self._lifecycle = lifecycle
        self._config_loader = config_loader

    async def get_auth_state(self) -> AuthState:
        """Return the current authentication state.

        Safe to call repeatedly and concurrently; concurrent token refreshes
        are collapsed by the lifecycle manager.
        """
        config = self._config_loader() or StoredConfig()

        api_key = await self._store.get_api_key()
        token_result = await self._lifecycle.get_valid_token()

        has_credentials = False
        if config.auth_type is AuthType.API_KEY:
            # Keyless providers are valid when a custom base URL is configured
            has_credentials = bool(api_key) or bool(config.base_url)
        elif config.auth_type is AuthType.OAUTH_TOKEN:
            has_credentials = bool(token_result.access_token)

        return AuthState(
            billing=BillingState(
                type=config.auth_type,
                has_credentials=has_credentials,
                api_key=api_key,
                oauth_token=token_result.access_token,
                migration_required=token_result.migration_required,
            ),
            workspace=WorkspaceState(
                has_workspace=config.active_workspace is not None,
                active=config.active_workspace,
            ),
        )


def get_setup_needs(state: AuthState) -> SetupNeeds:
    """Derive which setup steps are still needed from ``state``."""
    needs_billing_config = state.billing.type is None
    needs_credentials = (
        state.billing.type is not None and not state.billing.has_credentials
    )

    return SetupNeeds(
        needs_billing_config=needs_billing_config,
        needs_credentials=needs_credentials,
        is_fully_configured=not needs_billing_config and not needs_credentials,
        needs_migration=state.billing.migration_required,
    )
