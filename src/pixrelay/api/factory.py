"""FastAPI application factory."""

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import requests
from fastapi import FastAPI, Request, Response

from pixrelay.domain.pending_orders import TimerFactory, thread_timer
from pixrelay.domain.relay import build_relay
from pixrelay.infra.time import Clock, utc_now
from pixrelay.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from pixrelay.observability.logging import configure_logging, get_logger
from pixrelay.settings import Settings, load_settings

from .routes import status, webhooks_evolution, webhooks_payments

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    session: requests.Session | None = None,
    timer_factory: TimerFactory = thread_timer,
    clock: Clock = utc_now,
    start_sweeper: bool = True,
) -> FastAPI:
    """Create the relay app with its stores, dispatcher and sweeper.

    Args:
        settings: Explicit configuration. If None, reads the environment.
        session: HTTP session for N8N and Evolution calls (tests pass a mock).
        timer_factory: Constructor for PIX timeout timers.
        clock: Time source shared by all stores.
        start_sweeper: Whether the lifespan starts the retention sweeper.

    Returns:
        Configured FastAPI application. The relay lives on ``app.state.relay``.
    """
    if settings is None:
        settings = load_settings()
    configure_logging(settings.log_level)

    relay, sweeper = build_relay(
        settings, session=session, timer_factory=timer_factory, clock=clock
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if start_sweeper:
            sweeper.start()
        logger.info("relay started")
        try:
            yield
        finally:
            sweeper.stop()
            relay.shutdown()
            logger.info("relay stopped")

    app = FastAPI(
        title="PIX Relay",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.relay = relay
    app.state.sweeper = sweeper
    app.state.started_at = time.monotonic()

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.include_router(status.router)
    app.include_router(webhooks_payments.router)
    app.include_router(webhooks_evolution.router)

    return app
