"""Time utilities for consistent timestamp handling."""

from collections.abc import Callable
from datetime import datetime, timezone

# Every store takes one of these so tests can move time by hand.
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def epoch_ms(now: datetime | None = None) -> int:
    """Milliseconds since the epoch, as used for fallback order codes."""
    return int((now or utc_now()).timestamp() * 1000)
