"""
core/clock.py -- Injectable time source.

Components that compare against "now" (token expiry, reset-token expiry, TOTP
windows) take a Clock callable instead of calling datetime.now() directly, so
tests can move time forward without sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """Return the current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)
