"""Aggregate authentication state models.

Read-only snapshots combining billing configuration, stored credentials,
and the active workspace.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel

from latchkey.auth.client.models.tokens import MigrationInfo


class AuthType(str, Enum):
    """How requests are billed."""

    API_KEY = "api_key"
    OAUTH_TOKEN = "oauth_token"


class Workspace(BaseModel):
    """A configured workspace."""

    id: str
    name: str
    root_path: str | None = None


class StoredConfig(BaseModel):
    """Billing and workspace configuration supplied by the host application."""

    auth_type: AuthType | None = None
    base_url: str | None = None  # Custom API base URL (keyless providers)
    active_workspace: Workspace | None = None


@dataclass(frozen=True)
class BillingState:
    type: AuthType | None
    has_credentials: bool
    api_key: str | None
    oauth_token: str | None
    migration_required: MigrationInfo | None = None


@dataclass(frozen=True)
class WorkspaceState:
    has_workspace: bool
    active: Workspace | None


@dataclass(frozen=True)
class AuthState:
    """Snapshot of all authentication state."""

    billing: BillingState
    workspace: WorkspaceState


@dataclass(frozen=True)
class SetupNeeds:
    """Setup steps still required before the application is usable."""

    needs_billing_config: bool
    needs_credentials: bool
    is_fully_configured: bool
    needs_migration: MigrationInfo | None = None
