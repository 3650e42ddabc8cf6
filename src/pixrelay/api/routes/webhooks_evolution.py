"""Evolution API webhook route - outbound confirmations and customer replies."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from pixrelay.api.deps import get_relay
from pixrelay.api.schemas import WebhookAck, WebhookError
from pixrelay.domain.relay import MSG_INVALID_DATA, RelayService
from pixrelay.observability.correlation import get_correlation_id
from pixrelay.observability.logging import get_logger
from pixrelay.observability.redaction import safe_log_context
from pixrelay.whatsapp.evolution_adapter import InvalidPayloadError, normalize

router = APIRouter(prefix="/webhook", tags=["webhooks"])

logger = get_logger(__name__)


@router.post("/evolution", response_model=WebhookAck, responses={500: {"model": WebhookError}})
async def evolution_webhook(request: Request, relay: RelayService = Depends(get_relay)):
    """Receive Evolution ``messages.upsert`` events.

    Returns:
        200 with success=true for processed, ignored or malformed messages.
        500 with success=false if processing fails unexpectedly.
    """
    correlation_id = get_correlation_id()
    try:
        try:
            payload = await request.json()
            msg = normalize(payload)
        except (ValueError, InvalidPayloadError) as e:
            logger.info(
                "evolution payload without message envelope",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id, reason=str(e)
                    )
                },
            )
            return WebhookAck(success=True, message=MSG_INVALID_DATA)

        outcome = await run_in_threadpool(relay.handle_message, msg)
        return WebhookAck(**outcome.to_response())
    except Exception as e:
        logger.exception(
            "evolution webhook processing failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=500, content=WebhookError(error=str(e)).model_dump())
