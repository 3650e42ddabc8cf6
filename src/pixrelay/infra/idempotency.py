"""In-memory idempotency guard for redundant webhook deliveries."""

import threading
from datetime import datetime, timedelta

from .time import Clock, utc_now


def idempotency_key(kind: str, customer_key: str, order_id: str) -> str:
    """Compose a dedupe key; kind + customer + order keeps orders from colliding."""
    return f"{kind}:{customer_key}:{order_id}"


class IdempotencyGuard:
    """Short-TTL "seen" set.

    ``seen()`` sweeps expired entries, checks membership and records the key
    under one lock, so two concurrent deliveries of the same event cannot both
    pass. A duplicate arriving after the TTL is processed again.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Clock = utc_now) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._entries: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def _expire(self, now: datetime) -> int:
        cutoff = now - self._ttl
        expired = [k for k, ts in self._entries.items() if ts < cutoff]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def seen(self, key: str) -> bool:
        """Return True if ``key`` was seen within the TTL; otherwise record it.

        Args:
            key: Caller-composed key (see ``idempotency_key``).

        Returns:
            True for a duplicate (caller must drop), False for a first sighting.
        """
        now = self._clock()
        with self._lock:
            self._expire(now)
            if key in self._entries:
                return True
            self._entries[key] = now
            return False

    def purge(self, now: datetime | None = None) -> int:
        """Drop expired entries. Returns how many were removed."""
        with self._lock:
            return self._expire(now or self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def forget(self, key: str) -> bool:
        """Drop ``key`` so a retried delivery is processed again.

        Returns:
            True if the key was recorded.
        """
        with self._lock:
            return self._entries.pop(key, None) is not None
