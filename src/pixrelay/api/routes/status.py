"""Operational routes: health and relay status."""

import time

from fastapi import APIRouter, Depends, Request

from pixrelay.api.deps import get_relay
from pixrelay.domain.relay import RelayService
from pixrelay.infra.time import utc_now

router = APIRouter(tags=["ops"])


@router.get("/health")
def health(request: Request) -> dict:
    """Liveness check."""
    started = getattr(request.app.state, "started_at", None)
    return {
        "status": "ok",
        "timestamp": utc_now().isoformat(),
        "uptime": round(time.monotonic() - started, 3) if started is not None else 0.0,
    }


@router.get("/status")
def status(request: Request, relay: RelayService = Depends(get_relay)) -> dict:
    """Counts, pending orders, conversations and recent dispatch history."""
    body = relay.status()
    settings = getattr(request.app.state, "settings", None)
    if settings is not None:
        body["config"] = {
            "n8n_webhook": settings.n8n_webhook_url,
            "evolution_base_url": settings.evolution_base_url,
            "instances_count": len(settings.instances),
            "liveness_check": settings.liveness_check,
            "pix_timeout_seconds": settings.pix_timeout,
        }
    return body
