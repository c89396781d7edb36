"""Outbound fetch policy for OAuth discovery.

Every URL that discovery fetches passes through :class:`SafeFetcher`.
URLs must be https. URLs that came from remote input (challenge hints,
metadata documents) must additionally point at globally routable hosts,
which blocks SSRF against loopback, private networks, and cloud metadata
endpoints.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from collections.abc import Awaitable, Callable
from urllib.parse import urlparse

import httpx

from latchkey.auth.client.constants import BLOCKED_HOSTNAMES, DEFAULT_TIMEOUT_SECONDS
from latchkey.auth.client.models.errors import BlockedURLError, NetworkFailureError

logger = logging.getLogger(__name__)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
Resolver = Callable[[str], Awaitable[list[str]]]


async def resolve_host(hostname: str) -> list[str]:
    """Resolve ``hostname`` to its A/AAAA addresses.

    Raises:
        OSError: If resolution fails
    """
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return [str(sockaddr[0]) for _family, _type, _proto, _canon, sockaddr in infos]


def is_public_address(ip: IPAddress) -> bool:
    """Check that an address is globally routable.

    IPv4-mapped IPv6 addresses are judged by their IPv4 part.
    """
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    if (
        ip.is_loopback
        or ip.is_private
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    ):
        return False
    return ip.is_global


def validate_url_scheme(url: str) -> str:
    """Validate that ``url`` is an absolute https URL without credentials.

    Returns:
        The lowercased hostname

    Raises:
        BlockedURLError: If the URL is unparseable, not https, has no host,
            embeds userinfo, or its host is not a valid IDNA name
    """
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError as e:
        raise BlockedURLError(url, f"unparseable URL ({e})") from e

    if parsed.scheme.lower() != "https":
        raise BlockedURLError(url, f"scheme {parsed.scheme or '(none)'!r} is not https")
    if not hostname:
        raise BlockedURLError(url, "missing host")
    if parsed.username or parsed.password:
        raise BlockedURLError(url, "userinfo is not allowed")

    try:
        hostname.encode("idna")
    except UnicodeError as e:
        raise BlockedURLError(url, f"invalid hostname ({e})") from e

    return hostname.lower()


class SafeFetcher:
    """HTTP fetch boundary enforcing the outbound URL policy.

    HTTP error statuses are returned as ordinary responses. Only policy
    violations (:class:`BlockedURLError`) and transport failures
    (:class:`NetworkFailureError`) are raised. Redirects are never followed,
    so a redirect cannot route around the host check.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        resolver: Resolver | None = None,
    ):
        """Initialize the fetcher.

        Args:
            http_client: Client to send requests with; one is created if omitted
            timeout: HTTP request timeout in seconds
            resolver: Async hostname resolver, defaults to the event loop's
                getaddrinfo
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout, follow_redirects=False
        )
        self._resolver = resolver or resolve_host

    async def fetch(
        self,
        method: str,
        url: str,
        *,
        check_host: bool = True,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Fetch ``url`` after enforcing the URL policy.

        Args:
            method: HTTP method
            url: Target URL
            check_host: Require the host to be globally routable. Disable only
                for URLs the caller supplied directly.
            headers: Extra request headers

        Returns:
            The HTTP response, whatever its status

        Raises:
            BlockedURLError: If the URL violates the policy
            NetworkFailureError: If the request could not be completed
        """
        await self.check_url(url, check_host=check_host)

        try:
            return await self._http_client.request(
                method,
                url,
                headers=headers,
                follow_redirects=False,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NetworkFailureError(f"{method} {url} failed: {e}") from e

    async def check_url(self, url: str, *, check_host: bool = True) -> None:
        """Raise :class:`BlockedURLError` if ``url`` may not be fetched."""
        hostname = validate_url_scheme(url)
        if not check_host:
            return

        if hostname in BLOCKED_HOSTNAMES or hostname.endswith(".localhost"):
            raise BlockedURLError(url, f"host {hostname!r} is local")

        # IP literal?
        try:
            literal = ipaddress.ip_address(hostname.strip("[]"))
        except ValueError:
            literal = None

        if literal is not None:
            if not is_public_address(literal):
                raise BlockedURLError(url, f"address {literal} is not public")
            return

        try:
            addresses = await self._resolver(hostname)
        except (OSError, UnicodeError) as e:
            raise BlockedURLError(url, f"DNS resolution failed ({e})") from e

        if not addresses:
            raise BlockedURLError(url, "DNS resolution returned no addresses")

        for address in addresses:
            try:
                ip = ipaddress.ip_address(address.split("%", 1)[0])
            except ValueError as e:
                raise BlockedURLError(url, f"unparseable address {address!r}") from e
            if not is_public_address(ip):
                raise BlockedURLError(
                    url, f"host {hostname!r} resolves to non-public address {ip}"
                )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()
