"""Ingress orchestration - the correlation engine behind the webhooks.

``RelayService`` sequences the stores for each inbound event. Every
cross-store read-modify-write runs under one re-entrant state lock; the lock
is never held across outbound HTTP calls (N8N dispatch, liveness probes).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

import requests

from pixrelay.dispatch.dispatcher import DispatchResult, EventDispatcher
from pixrelay.dispatch.history import EventHistory
from pixrelay.dispatch.payloads import (
    approved_sale_event,
    first_reply_event,
    pending_pix_event,
    pix_timeout_event,
)
from pixrelay.infra.idempotency import IdempotencyGuard, idempotency_key
from pixrelay.infra.time import Clock, utc_now
from pixrelay.observability.logging import get_logger
from pixrelay.observability.redaction import hash_key, safe_log_context
from pixrelay.settings import Settings
from pixrelay.whatsapp.connection import ConnectionChecker
from pixrelay.whatsapp.models import InboundMessage

from .conversations import ConversationRecord, ConversationStateStore, OriginKind, ReplyOutcome
from .identities import IdentityAssigner
from .payments import PaymentEvent, PaymentKind
from .pending_orders import OrderTimeoutScheduler, PendingOrder, TimerFactory, thread_timer
from .phone import normalize_phone
from .products import ProductCatalog
from .retention import RetentionSweeper

logger = get_logger(__name__)

FIRST_REPLY_KIND = "FIRST_REPLY"

MSG_INVALID_PHONE = "Telefone inválido"
MSG_DUPLICATE = "Evento duplicado ignorado"
MSG_APPROVED = "Venda aprovada processada"
MSG_PENDING = "PIX pendente registrado"
MSG_IGNORED = "Evento ignorado"
MSG_INVALID_DATA = "Dados inválidos"
MSG_UNKNOWN_CUSTOMER = "Cliente não encontrado"
MSG_AWAITING = "Aguardando resposta"
MSG_REPLY_SENT = "Resposta enviada"
MSG_REPLY_DUPLICATE = "Resposta duplicada ignorada"
MSG_MESSAGE_IGNORED = "Mensagem ignorada"


@dataclass(frozen=True)
class RelayOutcome:
    """Result of handling one inbound webhook."""

    success: bool
    message: str
    dispatch: DispatchResult | None = None

    def to_response(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}


class RelayService:
    """Correlates payment events, outbound confirmations and customer replies."""

    def __init__(
        self,
        *,
        products: ProductCatalog,
        identities: IdentityAssigner,
        dispatcher: EventDispatcher,
        conversations: ConversationStateStore | None = None,
        idempotency: IdempotencyGuard | None = None,
        pix_timeout_seconds: float = 7 * 60,
        timer_factory: TimerFactory = thread_timer,
        clock: Clock = utc_now,
    ) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self.products = products
        self.identities = identities
        self.dispatcher = dispatcher
        self.conversations = conversations or ConversationStateStore(clock=clock)
        self.idempotency = idempotency or IdempotencyGuard(clock=clock)
        self.scheduler = OrderTimeoutScheduler(
            self._on_pix_timeout,
            delay_seconds=pix_timeout_seconds,
            timer_factory=timer_factory,
            clock=clock,
        )

    @property
    def state_lock(self) -> threading.RLock:
        return self._lock

    @property
    def history(self) -> EventHistory:
        return self.dispatcher.history

    # ------------------------------------------------------------------
    # Payment webhooks
    # ------------------------------------------------------------------

    def handle_payment(self, event: PaymentEvent) -> RelayOutcome:
        """Process a normalized payment webhook.

        Approved: cancel timers for the order and the customer, overwrite the
        conversation, dispatch ``approved-sale``. Pending PIX: cancel timers
        superseded for the customer, overwrite the conversation, arm the
        timeout, dispatch ``pending-pix``; a pending PIX for an order already
        approved is ignored. Anything else is ignored. If processing raises,
        the dedupe key is dropped again so a retry is accepted.
        """
        key = normalize_phone(event.phone)
        log_ctx = dict(
            provider=event.provider,
            event=event.event,
            status=event.status,
            method=event.method,
            order_id=event.order_id,
            key_hash=hash_key(key),
        )
        if not key:
            logger.warning(
                "payment webhook without phone",
                extra={"extra_fields": safe_log_context(**log_ctx)},
            )
            return RelayOutcome(False, MSG_INVALID_PHONE)

        dedupe_key = idempotency_key(f"{event.event}/{event.status}", key, event.order_id)
        if self.idempotency.seen(dedupe_key):
            logger.info(
                "duplicate payment event ignored",
                extra={"extra_fields": safe_log_context(**log_ctx)},
            )
            return RelayOutcome(True, MSG_DUPLICATE)

        try:
            return self._apply_payment(event, key, log_ctx)
        except Exception:
            # Unrecorded so the provider's retry is not dropped as a duplicate
            self.idempotency.forget(dedupe_key)
            raise

    def _apply_payment(
        self, event: PaymentEvent, key: str, log_ctx: dict[str, Any]
    ) -> RelayOutcome:
        kind = event.kind
        if kind is PaymentKind.IGNORED:
            logger.info(
                "payment event ignored", extra={"extra_fields": safe_log_context(**log_ctx)}
            )
            return RelayOutcome(True, MSG_IGNORED)

        product = self.products.resolve(event.product_code)
        # May probe Evolution; stays outside the state lock
        instance = self.identities.assign(key)

        record = ConversationRecord(
            customer_key=key,
            order_id=event.order_id,
            product=product,
            instance=instance,
            origin=OriginKind.APPROVED if kind is PaymentKind.APPROVED else OriginKind.PENDING,
            customer_name=event.customer_name,
            amount=event.amount,
            qr_reference=event.qr_reference,
        )

        if kind is PaymentKind.APPROVED:
            with self._lock:
                canceled = self.scheduler.cancel(event.order_id)
                canceled_for_key = self.scheduler.cancel_for_key(key)
                record = self.conversations.start(record)
            logger.info(
                "sale approved",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx,
                        product=product,
                        instance=instance,
                        timers_canceled=int(canceled) + len(canceled_for_key),
                    )
                },
            )
            result = self.dispatcher.dispatch(approved_sale_event(record, self._clock()))
            return RelayOutcome(True, MSG_APPROVED, result)

        with self._lock:
            current = self.conversations.get(key)
            already_paid = (
                current is not None
                and current.order_id == event.order_id
                and current.origin is OriginKind.APPROVED
            )
            if not already_paid:
                superseded = self.scheduler.cancel_for_key(key)
                record = self.conversations.start(record)
                self.scheduler.arm(record)
        if already_paid:
            logger.info(
                "pending pix for approved order ignored",
                extra={"extra_fields": safe_log_context(**log_ctx)},
            )
            return RelayOutcome(True, MSG_IGNORED)

        logger.info(
            "pix pending registered",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx, product=product, instance=instance, superseded=len(superseded)
                )
            },
        )
        result = self.dispatcher.dispatch(pending_pix_event(record, self._clock()))
        return RelayOutcome(True, MSG_PENDING, result)

    def _on_pix_timeout(self, order: PendingOrder) -> DispatchResult | None:
        # The order must still be the customer's live, unpaid conversation
        with self._lock:
            record = self.conversations.get(order.customer_key)
            still_pending = (
                record is not None
                and record.order_id == order.order_id
                and record.origin is OriginKind.PENDING
            )
        if not still_pending:
            logger.info(
                "pix timeout superseded, not dispatching",
                extra={"extra_fields": safe_log_context(order_id=order.order_id)},
            )
            return None
        return self.dispatcher.dispatch(pix_timeout_event(order.snapshot, self._clock()))

    # ------------------------------------------------------------------
    # Evolution webhooks
    # ------------------------------------------------------------------

    def handle_message(self, message: InboundMessage) -> RelayOutcome:
        """Process a normalized Evolution message.

        fromMe: the system wrote to the customer, so start awaiting a reply.
        Otherwise: report the first reply once, ignore everything after it.
        """
        key = message.customer_key
        log_ctx = dict(
            key_hash=hash_key(key),
            from_me=message.from_me,
            content_kind=message.content.kind.value,
            text_len=len(message.text),
        )
        if not key:
            return RelayOutcome(True, MSG_INVALID_DATA)

        if message.from_me:
            with self._lock:
                record = self.conversations.mark_system_message(key)
            if record is None:
                logger.info(
                    "system message for unknown customer",
                    extra={"extra_fields": safe_log_context(**log_ctx)},
                )
                return RelayOutcome(True, MSG_UNKNOWN_CUSTOMER)
            logger.info(
                "system message observed, awaiting reply",
                extra={"extra_fields": safe_log_context(**log_ctx, order_id=record.order_id)},
            )
            return RelayOutcome(True, MSG_AWAITING)

        with self._lock:
            current = self.conversations.get(key)
            if current is None:
                decision = None
            elif current.awaiting_reply and current.reply_count == 0 and self.idempotency.seen(
                idempotency_key(FIRST_REPLY_KIND, key, current.order_id)
            ):
                logger.info(
                    "duplicate first reply ignored",
                    extra={"extra_fields": safe_log_context(**log_ctx)},
                )
                return RelayOutcome(True, MSG_REPLY_DUPLICATE)
            else:
                decision = self.conversations.register_reply(key)

        if decision is None:
            logger.info(
                "message from customer without conversation",
                extra={"extra_fields": safe_log_context(**log_ctx)},
            )
            return RelayOutcome(True, MSG_UNKNOWN_CUSTOMER)

        if decision.outcome is not ReplyOutcome.FIRST_REPLY:
            logger.info(
                "customer message ignored",
                extra={
                    "extra_fields": safe_log_context(**log_ctx, reason=decision.outcome.value)
                },
            )
            return RelayOutcome(True, MSG_MESSAGE_IGNORED)

        record = decision.record
        logger.info(
            "first reply received",
            extra={"extra_fields": safe_log_context(**log_ctx, order_id=record.order_id)},
        )
        result = self.dispatcher.dispatch(first_reply_event(record, message.text, self._clock()))
        return RelayOutcome(True, MSG_REPLY_SENT, result)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def status(self, recent_limit: int = 20) -> dict[str, Any]:
        """Counts and recent history for the /status endpoint."""
        history = self.history.recent()
        pending = self.scheduler.pending()
        conversations = self.conversations.snapshot()
        return {
            "status": "online",
            "timestamp": self._clock().isoformat(),
            "metrics": {
                "pending_pix": len(pending),
                "active_conversations": len(conversations),
                "identity_assignments": len(self.identities),
                "idempotency_cache": len(self.idempotency),
                "instances_count": len(self.identities.pool),
            },
            "stats": self.history.stats(),
            "events": [e.to_dict() for e in history],
            "pending_list": [p.to_dict() for p in pending],
            "conversations_list": [c.to_dict() for c in conversations],
            "recent_logs": [
                {
                    "timestamp": e.timestamp.isoformat(),
                    "type": e.event_type,
                    "event": f"{e.phone} - {e.instance}",
                    "status": e.status.value,
                    "error": e.error,
                }
                for e in history[:recent_limit]
            ],
        }

    def shutdown(self) -> None:
        self.scheduler.shutdown()


def build_relay(
    settings: Settings,
    *,
    session: requests.Session | None = None,
    timer_factory: TimerFactory = thread_timer,
    clock: Clock = utc_now,
) -> tuple[RelayService, RetentionSweeper]:
    """Wire a RelayService and its RetentionSweeper from settings.

    Args:
        settings: Loaded configuration.
        session: HTTP session shared by the dispatcher and liveness probe.
        timer_factory: Timer constructor (tests pass a manual one).
        clock: Time source for every store.

    Returns:
        (relay, sweeper). The sweeper is not started.
    """
    session = session or requests.Session()
    liveness = None
    if settings.liveness_check:
        liveness = ConnectionChecker(
            settings.evolution_base_url,
            settings.evolution_api_key,
            timeout=settings.liveness_timeout,
            cache_ttl=settings.liveness_cache_ttl,
            session=session,
        )
    history = EventHistory(max_entries=settings.history_max_entries, clock=clock)
    relay = RelayService(
        products=ProductCatalog(settings.product_mapping),
        identities=IdentityAssigner(settings.instances, liveness=liveness, clock=clock),
        dispatcher=EventDispatcher(
            settings.n8n_webhook_url, history, timeout=settings.n8n_timeout, session=session
        ),
        idempotency=IdempotencyGuard(ttl_seconds=settings.idempotency_ttl, clock=clock),
        pix_timeout_seconds=settings.pix_timeout,
        timer_factory=timer_factory,
        clock=clock,
    )
    sweeper = RetentionSweeper(
        conversations=relay.conversations,
        identities=relay.identities,
        scheduler=relay.scheduler,
        history=history,
        idempotency=relay.idempotency,
        lock=relay.state_lock,
        retention_seconds=settings.data_retention,
        interval_seconds=settings.cleanup_interval,
        clock=clock,
    )
    return relay, sweeper
