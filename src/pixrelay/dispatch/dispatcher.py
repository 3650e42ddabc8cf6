"""Delivery of relay events to the N8N automation webhook.

Contract: one POST per event, bounded timeout, no retry. Every attempt is
recorded in the event history; failures are returned, never raised, so the
inbound webhook response stays decoupled from downstream delivery. A retry
layer can wrap ``dispatch`` later without changing callers.
"""

from __future__ import annotations

from dataclasses import dataclass

import requests

from pixrelay.observability.correlation import CORRELATION_ID_HEADER, get_correlation_id
from pixrelay.observability.logging import get_logger
from pixrelay.observability.redaction import hash_key, safe_log_context

from .history import DeliveryStatus, EventHistory
from .payloads import OutboundEvent

logger = get_logger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    status_code: int | None = None
    error: str | None = None
    entry_id: int | None = None


class EventDispatcher:
    """Posts OutboundEvents to the automation endpoint and records the outcome."""

    def __init__(
        self,
        url: str,
        history: EventHistory,
        *,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url
        self._history = history
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def history(self) -> EventHistory:
        return self._history

    def dispatch(self, event: OutboundEvent) -> DispatchResult:
        """Send ``event`` once.

        Returns:
            DispatchResult with the HTTP status on success, or the error text.
        """
        entry = self._history.record(
            event.kind.value, event.customer_key, event.instance, event.payload
        )
        log_ctx = dict(
            event_type=event.kind.value,
            key_hash=hash_key(event.customer_key),
            instance=event.instance,
            entry_id=entry.id,
        )
        headers = {
            "Content-Type": "application/json",
            CORRELATION_ID_HEADER: get_correlation_id(),
        }

        try:
            response = self._session.post(
                self._url, json=event.payload, headers=headers, timeout=self._timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            status_code = e.response.status_code if e.response is not None else None
            error = str(e) or type(e).__name__
            self._history.update(
                entry.id, DeliveryStatus.ERROR, status_code=status_code, error=error
            )
            logger.error(
                "n8n dispatch failed",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx, status_code=status_code, error_type=type(e).__name__
                    )
                },
            )
            return DispatchResult(
                success=False, status_code=status_code, error=error, entry_id=entry.id
            )

        self._history.update(entry.id, DeliveryStatus.SENT, status_code=response.status_code)
        logger.info(
            "n8n dispatch sent",
            extra={
                "extra_fields": safe_log_context(**log_ctx, status_code=response.status_code)
            },
        )
        return DispatchResult(success=True, status_code=response.status_code, entry_id=entry.id)
