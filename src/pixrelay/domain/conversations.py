"""Per-customer conversation state and the first-reply state machine.

States per customer key::

    NONE -> ACTIVE(awaiting=False) -> ACTIVE(awaiting=True) -> ACTIVE(replied)

A payment event (pending or approved) creates or overwrites the record with
awaiting=False. Only an observed outbound (fromMe) message turns awaiting on,
so a customer message counts as a reply only after the system has written.
At most one first reply is reported per order lifecycle.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from pixrelay.infra.time import Clock, utc_now


class OriginKind(str, Enum):
    """Payment event that opened the conversation."""

    PENDING = "pending"
    APPROVED = "approved"


@dataclass(frozen=True)
class ConversationRecord:
    """Snapshot of one customer's conversation. Replaced, never mutated in place."""

    customer_key: str
    order_id: str
    product: str
    instance: str
    origin: OriginKind
    customer_name: str
    amount: str
    qr_reference: str = ""
    reply_count: int = 0
    awaiting_reply: bool = False
    created_at: datetime | None = None
    last_system_message_at: datetime | None = None

    @property
    def first_name(self) -> str:
        parts = self.customer_name.split()
        return parts[0] if parts else ""

    def to_dict(self) -> dict:
        return {
            "phone": self.customer_key,
            "order_code": self.order_id,
            "product": self.product,
            "instance": self.instance,
            "original_event": self.origin.value,
            "response_count": self.reply_count,
            "waiting_for_response": self.awaiting_reply,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ReplyOutcome(str, Enum):
    NO_CONVERSATION = "no_conversation"
    NOT_AWAITING = "not_awaiting"
    ALREADY_REPLIED = "already_replied"
    FIRST_REPLY = "first_reply"


@dataclass(frozen=True)
class ReplyDecision:
    outcome: ReplyOutcome
    record: ConversationRecord | None = None

    @property
    def should_dispatch(self) -> bool:
        return self.outcome is ReplyOutcome.FIRST_REPLY


class ConversationStateStore:
    """Thread-safe map of customer key -> ConversationRecord."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._records: dict[str, ConversationRecord] = {}
        self._lock = threading.Lock()

    def start(self, record: ConversationRecord) -> ConversationRecord:
        """Create or overwrite the record for a payment event.

        Reply tracking is reset: reply_count=0, awaiting_reply=False.
        """
        fresh = replace(
            record,
            reply_count=0,
            awaiting_reply=False,
            created_at=record.created_at or self._clock(),
            last_system_message_at=None,
        )
        with self._lock:
            self._records[fresh.customer_key] = fresh
        return fresh

    def mark_system_message(self, key: str) -> ConversationRecord | None:
        """Outbound message observed: start awaiting a reply.

        Returns:
            The updated record, or None when the key has no conversation.
        """
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            updated = replace(record, awaiting_reply=True, last_system_message_at=self._clock())
            self._records[key] = updated
            return updated

    def register_reply(self, key: str) -> ReplyDecision:
        """Inbound customer message observed.

        Only a message arriving while awaiting a reply, with no reply counted
        yet, is a first reply; it flips awaiting off and sets reply_count=1.
        """
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return ReplyDecision(ReplyOutcome.NO_CONVERSATION)
            if record.reply_count >= 1:
                return ReplyDecision(ReplyOutcome.ALREADY_REPLIED, record)
            if not record.awaiting_reply:
                return ReplyDecision(ReplyOutcome.NOT_AWAITING, record)
            updated = replace(record, reply_count=1, awaiting_reply=False)
            self._records[key] = updated
            return ReplyDecision(ReplyOutcome.FIRST_REPLY, updated)

    def get(self, key: str) -> ConversationRecord | None:
        with self._lock:
            return self._records.get(key)

    def snapshot(self) -> list[ConversationRecord]:
        with self._lock:
            return list(self._records.values())

    def purge(self, cutoff: datetime) -> int:
        """Remove records created before ``cutoff``. Returns how many were removed."""
        with self._lock:
            stale = [
                k for k, r in self._records.items() if r.created_at and r.created_at < cutoff
            ]
            for k in stale:
                del self._records[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
