"""auth/clock.py -- Time source shared by the token, reset and lifecycle code."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Timezone-aware current UTC time. The default Clock."""
    return datetime.now(timezone.utc)
