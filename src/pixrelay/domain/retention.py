"""Periodic purge of every time-bounded in-memory store."""

from __future__ import annotations

import threading
from contextlib import AbstractContextManager
from datetime import datetime, timedelta

from pixrelay.dispatch.history import EventHistory
from pixrelay.infra.idempotency import IdempotencyGuard
from pixrelay.infra.time import Clock, utc_now
from pixrelay.observability.correlation import correlation_scope
from pixrelay.observability.logging import get_logger
from pixrelay.observability.redaction import safe_log_context

from .conversations import ConversationStateStore
from .identities import IdentityAssigner
from .pending_orders import OrderTimeoutScheduler

logger = get_logger(__name__)


class RetentionSweeper:
    """Drops entries older than the retention window from all stores.

    The sweep holds ``lock`` (the relay state lock) for its whole duration, so
    it never interleaves with an in-flight read-modify-write.
    """

    def __init__(
        self,
        *,
        conversations: ConversationStateStore,
        identities: IdentityAssigner,
        scheduler: OrderTimeoutScheduler,
        history: EventHistory,
        idempotency: IdempotencyGuard,
        lock: AbstractContextManager,
        retention_seconds: float = 24 * 60 * 60,
        interval_seconds: float = 10 * 60,
        clock: Clock = utc_now,
    ) -> None:
        self._conversations = conversations
        self._identities = identities
        self._scheduler = scheduler
        self._history = history
        self._idempotency = idempotency
        self._lock = lock
        self._retention = timedelta(seconds=retention_seconds)
        self._interval = interval_seconds
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep(self, now: datetime | None = None) -> dict[str, int]:
        """Remove everything created before ``now - retention``.

        Returns:
            Count of removed entries per store.
        """
        now = now or self._clock()
        cutoff = now - self._retention
        with self._lock:
            removed = {
                "conversations": self._conversations.purge(cutoff),
                "assignments": self._identities.purge(cutoff),
                "pending_orders": self._scheduler.purge(cutoff),
                "events": self._history.purge(cutoff),
                "idempotency": self._idempotency.purge(now),
            }
        logger.info(
            "retention sweep done",
            extra={"extra_fields": safe_log_context(**removed, total=sum(removed.values()))},
        )
        return removed

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            with correlation_scope("sweep"):
                try:
                    self.sweep()
                except Exception:
                    # Keep the loop alive; the next period retries
                    logger.exception("retention sweep failed")

    def start(self) -> None:
        """Run ``sweep`` every ``interval_seconds`` on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="retention-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
