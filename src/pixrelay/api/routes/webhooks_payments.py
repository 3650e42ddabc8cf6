"""Payment-provider webhook routes (Kirvano, Perfect Pay).

No business logic here - parse, normalize and hand over to the relay.
Responses are HTTP 200 for every recognized or ignored event; 500 only for
unexpected failures.
"""

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from pixrelay.api.deps import get_relay
from pixrelay.api.schemas import WebhookAck, WebhookError
from pixrelay.domain.payments import PaymentEvent
from pixrelay.domain.relay import MSG_IGNORED, RelayService
from pixrelay.observability.correlation import get_correlation_id
from pixrelay.observability.logging import get_logger
from pixrelay.observability.redaction import safe_log_context
from pixrelay.payments import kirvano_adapter, perfectpay_adapter
from pixrelay.payments.common import InvalidPayloadError

router = APIRouter(prefix="/webhook", tags=["webhooks"])

logger = get_logger(__name__)


async def _process(
    request: Request,
    relay: RelayService,
    provider: str,
    normalize: Callable[[Any], PaymentEvent],
) -> WebhookAck | JSONResponse:
    correlation_id = get_correlation_id()
    try:
        try:
            payload = await request.json()
            event = normalize(payload)
        except (ValueError, InvalidPayloadError):
            logger.warning(
                "invalid payment payload",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id, provider=provider
                    )
                },
            )
            return WebhookAck(success=True, message=MSG_IGNORED)

        outcome = await run_in_threadpool(relay.handle_payment, event)
        return WebhookAck(**outcome.to_response())
    except Exception as e:
        logger.exception(
            "payment webhook processing failed",
            extra={
                "extra_fields": safe_log_context(correlationId=correlation_id, provider=provider)
            },
        )
        return JSONResponse(status_code=500, content=WebhookError(error=str(e)).model_dump())


@router.post("/kirvano", response_model=WebhookAck, responses={500: {"model": WebhookError}})
async def kirvano_webhook(request: Request, relay: RelayService = Depends(get_relay)):
    """Receive Kirvano sale/checkout events."""
    return await _process(request, relay, kirvano_adapter.PROVIDER, kirvano_adapter.normalize)


@router.post("/perfectpay", response_model=WebhookAck, responses={500: {"model": WebhookError}})
async def perfectpay_webhook(request: Request, relay: RelayService = Depends(get_relay)):
    """Receive Perfect Pay postbacks."""
    return await _process(
        request, relay, perfectpay_adapter.PROVIDER, perfectpay_adapter.normalize
    )
