"""Builders for the JSON events consumed by the N8N workflow.

Field names are the workflow's wire format and must not change.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pixrelay.domain.conversations import ConversationRecord
from pixrelay.infra.time import utc_now


class EventKind(str, Enum):
    APPROVED_SALE = "approved-sale"
    PENDING_PIX = "pending-pix"
    PIX_TIMEOUT = "pix-timeout"
    FIRST_REPLY = "first-reply"


@dataclass(frozen=True)
class OutboundEvent:
    """A built payload plus the metadata the history needs."""

    kind: EventKind
    customer_key: str
    instance: str
    payload: dict[str, Any]


def _customer(record: ConversationRecord, *, full_name: bool = True) -> dict[str, Any]:
    block = {"nome": record.first_name, "telefone": record.customer_key}
    if full_name:
        block["nome_completo"] = record.customer_name
    return block


def _base(kind: EventKind, record: ConversationRecord) -> dict[str, Any]:
    return {
        "event_type": kind.value,
        "produto": record.product,
        "instancia": record.instance,
        "evento_origem": record.origin.value,
    }


def _event(kind: EventKind, record: ConversationRecord, payload: dict[str, Any]) -> OutboundEvent:
    return OutboundEvent(
        kind=kind, customer_key=record.customer_key, instance=record.instance, payload=payload
    )


def approved_sale_event(record: ConversationRecord, now: datetime | None = None) -> OutboundEvent:
    now = now or utc_now()
    payload = {
        **_base(EventKind.APPROVED_SALE, record),
        "cliente": _customer(record),
        "pedido": {"codigo": record.order_id, "valor": record.amount},
        "timestamp": now.isoformat(),
    }
    return _event(EventKind.APPROVED_SALE, record, payload)


def pending_pix_event(record: ConversationRecord, now: datetime | None = None) -> OutboundEvent:
    now = now or utc_now()
    payload = {
        **_base(EventKind.PENDING_PIX, record),
        "cliente": _customer(record),
        "pedido": {
            "codigo": record.order_id,
            "valor": record.amount,
            "pix_url": record.qr_reference,
        },
        "timestamp": now.isoformat(),
    }
    return _event(EventKind.PENDING_PIX, record, payload)


def pix_timeout_event(record: ConversationRecord, now: datetime | None = None) -> OutboundEvent:
    now = now or utc_now()
    payload = {
        **_base(EventKind.PIX_TIMEOUT, record),
        "cliente": _customer(record),
        "pedido": {
            "codigo": record.order_id,
            "valor": record.amount,
            "pix_url": record.qr_reference,
        },
        "timeout": True,
        "timestamp": now.isoformat(),
    }
    return _event(EventKind.PIX_TIMEOUT, record, payload)


def first_reply_event(
    record: ConversationRecord, text: str, now: datetime | None = None
) -> OutboundEvent:
    now = now or utc_now()
    payload = {
        **_base(EventKind.FIRST_REPLY, record),
        "cliente": _customer(record, full_name=False),
        "resposta": {
            "numero": record.reply_count,
            "conteudo": text,
            "timestamp": now.isoformat(),
        },
        "pedido": {"codigo": record.order_id, "pix_url": record.qr_reference},
        "timestamp": now.isoformat(),
    }
    return _event(EventKind.FIRST_REPLY, record, payload)
