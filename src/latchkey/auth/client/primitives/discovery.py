"""OAuth server discovery primitive.

Implements RFC 9728 (Protected Resource Metadata) discovery with fallback to
RFC 8414 (Authorization Server Metadata) to find where a resource's users
must be sent to authorize.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from urllib.parse import urlparse

import httpx

from latchkey.auth.client.constants import (
    DEFAULT_TIMEOUT_SECONDS,
    OAUTH_AUTHORIZATION_SERVER_PATH,
)
from latchkey.auth.client.models.discovery import (
    AuthServerMetadata,
    ProtectedResourceMetadata,
    decode_metadata,
)
from latchkey.auth.client.models.errors import (
    DiscoveryError,
    InvalidResourceURLError,
)
from latchkey.auth.client.primitives.challenge import parse_resource_metadata_hint
from latchkey.auth.client.services.security import SafeFetcher

logger = logging.getLogger(__name__)

LogCallback = Callable[[str], None]


class OAuth2Discovery:
    """Discovers authorization server metadata for a protected resource.

    Tiers, first valid result wins:
    1. Probe the resource (HEAD, GET on 405) for a 401 challenge hint
    2. RFC 9728 protected resource metadata from the hint
    3. RFC 8414 metadata at the first advertised authorization server
    4. RFC 8414 metadata at the resource's origin
    5. Path-scoped RFC 8414 metadata at the resource's origin

    Discovery fails closed: every error moves on to the next tier and
    :meth:`discover` never raises. Instances hold no state between calls.
    """

    def __init__(
        self,
        fetcher: SafeFetcher | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """Initialize OAuth discovery.

        Args:
            fetcher: Fetch boundary to send requests through
            timeout: HTTP request timeout in seconds, used when no fetcher is given
        """
        self.timeout = timeout
        self._fetcher = fetcher or SafeFetcher(timeout=timeout)

    async def __aenter__(self) -> OAuth2Discovery:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying fetcher."""
        await self._fetcher.close()

    async def discover(
        self, resource_url: str, on_log: LogCallback | None = None
    ) -> AuthServerMetadata | None:
        """Discover authorization server metadata for ``resource_url``.

        Args:
            resource_url: Absolute URL of the protected resource
            on_log: Optional callback receiving progress messages

        Returns:
            Authorization server metadata, or None if no tier produced it
        """
        log = _Progress(on_log)

        try:
            origin, path = _split_resource_url(resource_url)
        except InvalidResourceURLError as e:
            log(f"Invalid resource URL: {e}")
            return None

        log(f"Discovering OAuth metadata for {resource_url}")

        # RFC 9728 tiers
        log("Trying RFC 9728 protected resource discovery")
        metadata = await self._discover_via_protected_resource(resource_url, log)
        if metadata is not None:
            return metadata

        # RFC 8414 at the resource's origin
        root_url = f"{origin}{OAUTH_AUTHORIZATION_SERVER_PATH}"
        log(f"Trying RFC 8414 discovery at {root_url}")
        metadata = await self._try_authorization_server_metadata(
            root_url, log, check_host=False
        )
        if metadata is not None:
            return metadata

        # RFC 8414 path-scoped
        if path and path != "/":
            scoped_url = f"{origin}{OAUTH_AUTHORIZATION_SERVER_PATH}{path}"
            log(f"Trying path-scoped RFC 8414 discovery at {scoped_url}")
            metadata = await self._try_authorization_server_metadata(
                scoped_url, log, check_host=False
            )
            if metadata is not None:
                return metadata

        log(f"No OAuth metadata found for {resource_url}")
        return None

    async def _discover_via_protected_resource(
        self, resource_url: str, log: _Progress
    ) -> AuthServerMetadata | None:
        """Run the probe, RFC 9728, and advertised-server RFC 8414 tiers."""
        try:
            hint_url = await self._probe_resource(resource_url)
        except DiscoveryError as e:
            log(f"Resource probe failed: {e}")
            return None

        if hint_url is None:
            log("No resource_metadata hint in WWW-Authenticate challenge")
            return None

        log(f"Found resource_metadata hint: {hint_url}")

        try:
            prm = await self._fetch_protected_resource_metadata(hint_url)
        except DiscoveryError as e:
            log(f"RFC 9728 protected resource metadata rejected: {e}")
            return None

        auth_server = prm.first_authorization_server()
        if auth_server is None:
            log("Protected resource metadata lists no authorization servers")
            return None

        base = auth_server[:-1] if auth_server.endswith("/") else auth_server
        url = f"{base}{OAUTH_AUTHORIZATION_SERVER_PATH}"
        log(f"Trying RFC 8414 discovery at authorization server {url}")
        return await self._try_authorization_server_metadata(url, log, check_host=True)

    async def _probe_resource(self, resource_url: str) -> str | None:
        """Probe the resource and return the RFC 9728 hint from a 401 challenge.

        Raises:
            DiscoveryError: If the probe could not be sent
        """
        response = await self._fetcher.fetch("HEAD", resource_url, check_host=False)
        if response.status_code == 405:
            # Some servers do not implement HEAD
            response = await self._fetcher.fetch("GET", resource_url, check_host=False)

        if response.status_code != 401:
            logger.debug(
                f"Resource probe of {resource_url} returned {response.status_code}"
            )
            return None

        return parse_resource_metadata_hint(response.headers.get("WWW-Authenticate"))

    async def _fetch_protected_resource_metadata(
        self, metadata_url: str
    ) -> ProtectedResourceMetadata:
        """Fetch and decode protected resource metadata from a remote hint.

        Raises:
            DiscoveryError: If the URL is blocked, the fetch fails, or the
                document is invalid
        """
        response = await self._fetcher.fetch("GET", metadata_url, check_host=True)
        _require_ok(response, metadata_url)
        return decode_metadata(ProtectedResourceMetadata, response.content)

    async def _try_authorization_server_metadata(
        self, url: str, log: _Progress, *, check_host: bool
    ) -> AuthServerMetadata | None:
        """Fetch RFC 8414 metadata from ``url``, returning None on any failure."""
        try:
            response = await self._fetcher.fetch("GET", url, check_host=check_host)
            _require_ok(response, url)
            metadata = decode_metadata(AuthServerMetadata, response.content)
        except DiscoveryError as e:
            log(f"RFC 8414 discovery at {url} failed: {e}")
            return None

        log(f"Found OAuth metadata at {url}")
        logger.info(f"Discovered authorization server metadata from {url}")
        return metadata


class _Progress:
    """Forwards progress messages to the module logger and an optional callback."""

    def __init__(self, on_log: LogCallback | None):
        self._on_log = on_log

    def __call__(self, message: str) -> None:
        logger.debug(message)
        if self._on_log is None:
            return
        try:
            self._on_log(message)
        except Exception:
            logger.exception("Discovery progress callback raised")


def _split_resource_url(resource_url: str) -> tuple[str, str]:
    """Return the origin and path of an absolute resource URL.

    Raises:
        InvalidResourceURLError: If the URL is not absolute
    """
    try:
        parsed = urlparse(resource_url)
        parsed.port  # raises ValueError for an out-of-range port
    except (ValueError, TypeError) as e:
        raise InvalidResourceURLError(f"{resource_url!r} is not a valid URL") from e

    if not parsed.scheme or not parsed.netloc:
        raise InvalidResourceURLError(f"{resource_url!r} is not an absolute URL")

    host = parsed.netloc.rpartition("@")[2]
    return f"{parsed.scheme}://{host}", parsed.path


def _require_ok(response: httpx.Response, url: str) -> None:
    if not response.is_success:
        raise DiscoveryError(f"{url} returned HTTP {response.status_code}")


async def discover_oauth_metadata(
    resource_url: str,
    on_log: LogCallback | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> AuthServerMetadata | None:
    """Discover metadata with a short-lived :class:`OAuth2Discovery`."""
    async with OAuth2Discovery(timeout=timeout) as discovery:
        return await discovery.discover(resource_url, on_log)
