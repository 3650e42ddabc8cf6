"""Per-order PIX timeout timers.

Each pending order owns one cancelable timer: ``ARMED -> FIRED`` or
``ARMED -> CANCELED``. The fire path claims the entry under the scheduler
lock, so a timer that lost the race against ``cancel`` never reaches the
fire handler, and a handler never runs twice for the same entry.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

from pixrelay.infra.time import Clock, utc_now
from pixrelay.observability.correlation import correlation_scope
from pixrelay.observability.logging import get_logger
from pixrelay.observability.redaction import hash_key, safe_log_context

from .conversations import ConversationRecord

logger = get_logger(__name__)


class TimerHandle(Protocol):
    def start(self) -> None:
        ...

    def cancel(self) -> None:
        ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def thread_timer(delay: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


class TimerState(str, Enum):
    ARMED = "armed"
    FIRED = "fired"
    CANCELED = "canceled"


@dataclass
class PendingOrder:
    """An armed timeout and the conversation snapshot needed to report it."""

    snapshot: ConversationRecord
    created_at: datetime
    timer: TimerHandle | None = field(default=None, repr=False)
    state: TimerState = TimerState.ARMED

    @property
    def order_id(self) -> str:
        return self.snapshot.order_id

    @property
    def customer_key(self) -> str:
        return self.snapshot.customer_key

    @property
    def product(self) -> str:
        return self.snapshot.product

    def to_dict(self) -> dict:
        return {
            "phone": self.customer_key,
            "order_code": self.order_id,
            "product": self.product,
            "created_at": self.created_at.isoformat(),
        }


class OrderTimeoutScheduler:
    """Arms, cancels and fires per-order timeout callbacks."""

    def __init__(
        self,
        on_fire: Callable[[PendingOrder], None],
        *,
        delay_seconds: float = 420,
        timer_factory: TimerFactory = thread_timer,
        clock: Clock = utc_now,
    ) -> None:
        self._on_fire = on_fire
        self._delay = delay_seconds
        self._timer_factory = timer_factory
        self._clock = clock
        self._orders: dict[str, PendingOrder] = {}
        self._lock = threading.Lock()

    def _cancel_entry(self, entry: PendingOrder) -> None:
        # Caller holds the lock and has already removed the entry from the map
        entry.state = TimerState.CANCELED
        if entry.timer is not None:
            entry.timer.cancel()

    def arm(self, snapshot: ConversationRecord) -> PendingOrder:
        """Arm a timeout for ``snapshot.order_id``, replacing any armed one.

        Returns:
            The new PendingOrder.
        """
        entry = PendingOrder(snapshot=snapshot, created_at=self._clock())
        entry.timer = self._timer_factory(self._delay, lambda: self._fire(entry))
        with self._lock:
            prior = self._orders.pop(entry.order_id, None)
            if prior is not None:
                self._cancel_entry(prior)
            self._orders[entry.order_id] = entry
            entry.timer.start()

        logger.info(
            "pix timeout armed",
            extra={
                "extra_fields": safe_log_context(
                    order_id=entry.order_id,
                    key_hash=hash_key(entry.customer_key),
                    delay_seconds=self._delay,
                    replaced=prior is not None,
                )
            },
        )
        return entry

    def cancel(self, order_id: str) -> bool:
        """Cancel the armed timer for ``order_id``. Unknown/fired orders are a no-op.

        Returns:
            True if an armed timer was canceled.
        """
        with self._lock:
            entry = self._orders.pop(order_id, None)
            if entry is None:
                return False
            self._cancel_entry(entry)
        logger.info(
            "pix timeout canceled",
            extra={"extra_fields": safe_log_context(order_id=order_id)},
        )
        return True

    def cancel_for_key(self, customer_key: str) -> list[str]:
        """Cancel every armed timer belonging to ``customer_key``.

        Returns:
            Order ids whose timers were canceled.
        """
        with self._lock:
            matches = [e for e in self._orders.values() if e.customer_key == customer_key]
            for entry in matches:
                del self._orders[entry.order_id]
                self._cancel_entry(entry)
        canceled = [e.order_id for e in matches]
        if canceled:
            logger.info(
                "pix timeouts canceled for customer",
                extra={
                    "extra_fields": safe_log_context(
                        key_hash=hash_key(customer_key), orders=len(canceled)
                    )
                },
            )
        return canceled

    def _fire(self, entry: PendingOrder) -> None:
        with self._lock:
            if entry.state is not TimerState.ARMED or self._orders.get(entry.order_id) is not entry:
                return
            entry.state = TimerState.FIRED
            del self._orders[entry.order_id]

        with correlation_scope("pix-timeout"):
            logger.info(
                "pix timeout fired",
                extra={"extra_fields": safe_log_context(order_id=entry.order_id)},
            )
            try:
                self._on_fire(entry)
            except Exception:
                # Timer threads have no caller to propagate to
                logger.exception(
                    "pix timeout handler failed",
                    extra={"extra_fields": safe_log_context(order_id=entry.order_id)},
                )

    def get(self, order_id: str) -> PendingOrder | None:
        with self._lock:
            return self._orders.get(order_id)

    def pending(self) -> list[PendingOrder]:
        with self._lock:
            return list(self._orders.values())

    def purge(self, cutoff: datetime) -> int:
        """Cancel and drop orders armed before ``cutoff``. Returns how many."""
        with self._lock:
            stale = [e for e in self._orders.values() if e.created_at < cutoff]
            for entry in stale:
                del self._orders[entry.order_id]
                self._cancel_entry(entry)
        return len(stale)

    def shutdown(self) -> None:
        """Cancel every armed timer (process exit)."""
        with self._lock:
            entries = list(self._orders.values())
            self._orders.clear()
            for entry in entries:
                self._cancel_entry(entry)

    def __len__(self) -> int:
        with self._lock:
            return len(self._orders)
