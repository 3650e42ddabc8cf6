"""Bounded, newest-first history of downstream dispatch attempts."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from pixrelay.infra.time import Clock, utc_now


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    ERROR = "error"


@dataclass(frozen=True)
class HistoryEntry:
    id: int
    timestamp: datetime
    event_type: str
    phone: str
    instance: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    status_code: int | None = None
    sent_at: datetime | None = None
    error: str | None = None
    payload: dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "phone": self.phone,
            "instance": self.instance,
            "status": self.status.value,
            "status_code": self.status_code,
            "n8n_sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "error": self.error,
            "payload": self.payload,
        }


class EventHistory:
    """Append-only (newest first) list capped at ``max_entries``."""

    def __init__(self, max_entries: int = 1000, clock: Clock = utc_now) -> None:
        self._max_entries = max_entries
        self._clock = clock
        self._entries: list[HistoryEntry] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def record(
        self, event_type: str, phone: str, instance: str, payload: dict[str, Any]
    ) -> HistoryEntry:
        """Record a new attempt in ``pending`` state."""
        with self._lock:
            entry = HistoryEntry(
                id=next(self._ids),
                timestamp=self._clock(),
                event_type=event_type,
                phone=phone,
                instance=instance,
                payload=payload,
            )
            self._entries.insert(0, entry)
            del self._entries[self._max_entries :]
        return entry

    def update(
        self,
        entry_id: int,
        status: DeliveryStatus,
        *,
        status_code: int | None = None,
        error: str | None = None,
    ) -> HistoryEntry | None:
        """Set the outcome of an attempt. Returns None if it was already evicted."""
        with self._lock:
            for i, entry in enumerate(self._entries):
                if entry.id == entry_id:
                    updated = replace(
                        entry,
                        status=status,
                        status_code=status_code,
                        error=error,
                        sent_at=self._clock() if status is DeliveryStatus.SENT else None,
                    )
                    self._entries[i] = updated
                    return updated
        return None

    def recent(self, limit: int | None = None) -> list[HistoryEntry]:
        with self._lock:
            entries = list(self._entries)
        return entries if limit is None else entries[:limit]

    def stats(self) -> dict[str, int]:
        entries = self.recent()
        return {
            "total_events": len(entries),
            "sent_events": sum(1 for e in entries if e.status is DeliveryStatus.SENT),
            "error_events": sum(1 for e in entries if e.status is DeliveryStatus.ERROR),
        }

    def purge(self, cutoff: datetime) -> int:
        """Drop entries recorded before ``cutoff``. Returns how many."""
        with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.timestamp >= cutoff]
            return before - len(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
