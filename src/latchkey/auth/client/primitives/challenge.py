"""WWW-Authenticate challenge parsing.

Extracts the RFC 9728 ``resource_metadata`` hint from a Bearer challenge.
The hint is only checked for being an absolute URL here; scheme and host
policy are enforced when it is fetched.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# RFC 9110 token characters, minus the single quote so 'value' is read as quoted
_TOKEN = r"[A-Za-z0-9!#$%&*+.^_`|~-]+"

_ITEM_PATTERN = re.compile(
    rf"""
    \s*
    (?:
        (?P<name>{_TOKEN})\s*=\s*
        (?:
            "(?P<dquoted>(?:[^"\\]|\\.)*)"
            | '(?P<squoted>[^']*)'
            | (?P<bare>[^\s,]*)
        )
        | (?P<scheme>{_TOKEN})
    )
    \s*,?
    """,
    re.VERBOSE,
)

_ESCAPE_PATTERN = re.compile(r"\\(.)")


def parse_resource_metadata_hint(header_value: str | None) -> str | None:
    """Extract the ``resource_metadata`` URL from a WWW-Authenticate value.

    Accepts double-quoted, single-quoted, and bare values, and ignores other
    parameters (``realm``, ``error``, ``error_description``...) in any order.
    Only parameters belonging to a ``Bearer`` challenge are considered;
    several challenges may be folded into one header value.

    Args:
        header_value: Raw WWW-Authenticate header value

    Returns:
        The hint URL, or None if absent, malformed, or not an absolute URL
    """
    if not header_value:
        return None

    current_scheme: str | None = None
    for match in _ITEM_PATTERN.finditer(header_value):
        if match.group("scheme"):
            current_scheme = match.group("scheme").lower()
            continue

        name = match.group("name")
        if name is None:
            continue
        if current_scheme != "bearer" or name.lower() != "resource_metadata":
            continue

        if match.group("dquoted") is not None:
            value = _ESCAPE_PATTERN.sub(r"\1", match.group("dquoted"))
        elif match.group("squoted") is not None:
            value = match.group("squoted")
        else:
            value = match.group("bare")

        if _is_absolute_url(value.strip()):
            return value.strip()

        logger.debug(f"Ignoring malformed resource_metadata value: {value!r}")
        return None

    return None


def _is_absolute_url(value: str) -> bool:
    if not value:
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)
