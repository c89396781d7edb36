"""Clock abstraction for testable expiry checks.

A ``Clock`` is any callable returning the current UNIX timestamp in seconds.
Token expiry decisions depend on an injected clock rather than calling
``time.time()`` directly.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning seconds since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Return ``time.time()``."""
    return time.time()
