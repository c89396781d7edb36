"""Credential storage used by the token lifecycle manager.

:class:`CredentialStore` is the narrow interface the lifecycle manager
depends on. Two implementations are provided: an in-memory store and a
JSON file store with atomic writes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from latchkey.auth.client.models.tokens import OAuthCredentials

logger = logging.getLogger(__name__)


@runtime_checkable
class CredentialStore(Protocol):
    """Persistent store for one namespace of OAuth credentials."""

    async def get(self) -> OAuthCredentials | None:
        """Return the stored credentials, or None if nothing is stored."""
        ...

    async def set(self, credentials: OAuthCredentials) -> None:
        """Merge the explicitly set fields of ``credentials`` into the stored record."""
        ...

    async def get_api_key(self) -> str | None:
        """Return the stored API key, if any."""
        ...


def merge_credentials(
    current: OAuthCredentials | None, update: OAuthCredentials
) -> OAuthCredentials:
    """Apply a partial update.

    Only fields explicitly passed when ``update`` was built are applied, so
    ``OAuthCredentials(access_token="", refresh_token=None)`` clears those
    two fields and keeps the rest.
    """
    if current is None:
        return update.model_copy()
    changes = {name: getattr(update, name) for name in update.model_fields_set}
    return current.model_copy(update=changes)


class InMemoryCredentialStore:
    """Credential store held in process memory."""

    def __init__(
        self,
        credentials: OAuthCredentials | None = None,
        api_key: str | None = None,
    ):
        self._credentials = credentials
        self._api_key = api_key

    async def get(self) -> OAuthCredentials | None:
        if self._credentials is None:
            return None
        return self._credentials.model_copy()

    async def set(self, credentials: OAuthCredentials) -> None:
        self._credentials = merge_credentials(self._credentials, credentials)

    async def get_api_key(self) -> str | None:
        return self._api_key

    async def set_api_key(self, api_key: str | None) -> None:
        self._api_key = api_key


class JSONFileCredentialStore:
    """Credential store persisted as a JSON document.

    Layout::

        {"oauth": {...OAuthCredentials...}, "api_key": "..."}

    Writes go to a temp file followed by ``os.replace`` so readers never see
    a partial document. Concurrent writers in other processes are not
    coordinated.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    async def get(self) -> OAuthCredentials | None:
        data = self._read()
        oauth = data.get("oauth")
        if not oauth:
            return None
        return OAuthCredentials.model_validate(oauth)

    async def set(self, credentials: OAuthCredentials) -> None:
        async with self._lock:
            data = self._read()
            current = (
                OAuthCredentials.model_validate(data["oauth"])
                if data.get("oauth")
                else None
            )
            merged = merge_credentials(current, credentials)
            data["oauth"] = merged.model_dump(mode="json")
            self._write(data)

    async def get_api_key(self) -> str | None:
        return self._read().get("api_key")

    async def set_api_key(self, api_key: str | None) -> None:
        async with self._lock:
            data = self._read()
            data["api_key"] = api_key
            self._write(data)

    def _read(self) -> dict[str, Any]:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning(f"Ignoring corrupt credential file {self.path}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, separators=(",", ":"), sort_keys=True)
        os.chmod(tmp, 0o600)
        os.replace(tmp, self.path)  # atomic on POSIX
