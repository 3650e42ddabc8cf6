"""Shared pytest fixtures for relay tests.

Time and timers are manual: ``clock`` only moves when a test advances it and
PIX timeouts only fire when a test calls ``timers.fire_all()``.
"""
import sys
sys.dont_write_bytecode = True

from typing import Any  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from helpers import (  # noqa: E402
    CUSTOMER_KEY,
    CUSTOMER_PHONE,
    FakeClock,
    ManualTimerFactory,
    make_session,
)
from pixrelay.api.factory import create_app  # noqa: E402
from pixrelay.domain.relay import build_relay  # noqa: E402
from pixrelay.settings import Instance, Settings  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timers() -> ManualTimerFactory:
    return ManualTimerFactory()


@pytest.fixture
def session() -> MagicMock:
    return make_session()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        n8n_webhook_url="http://n8n.test/webhook/relay",
        evolution_base_url="http://evolution.test",
        evolution_api_key="global-key",
        instances=(Instance("GABY01", "tok-1"), Instance("GABY02", "tok-2"), Instance("GABY03", "tok-3")),
        product_mapping={"offer-cs": "CS", "offer-fab": "FAB"},
    )


@pytest.fixture
def relay_and_sweeper(settings, session, timers, clock):
    relay, sweeper = build_relay(settings, session=session, timer_factory=timers, clock=clock)
    yield relay, sweeper
    sweeper.stop()
    relay.shutdown()


@pytest.fixture
def relay(relay_and_sweeper):
    return relay_and_sweeper[0]


@pytest.fixture
def sweeper(relay_and_sweeper):
    return relay_and_sweeper[1]


@pytest.fixture
def app(settings, session, timers, clock):
    return create_app(
        settings, session=session, timer_factory=timers, clock=clock, start_sweeper=False
    )


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def kirvano_payload():
    """Factory for Kirvano webhook bodies (pending PIX by default)."""

    def build(
        *,
        event: str = "PIX_GENERATED",
        status: str = "pending",
        method: str = "pix",
        sale_id: str | None = "X1",
        phone: str = CUSTOMER_PHONE,
        name: str = "Maria Souza",
        total: Any = "R$ 97,00",
        offer_id: str | None = "offer-cs",
        qrcode: str = "https://qr.test/X1.png",
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event": event,
            "status": status,
            "customer": {"name": name, "phone_number": phone},
            "total_price": total,
            "payment": {"method": method, "qrcode_image": qrcode},
        }
        if sale_id is not None:
            payload["sale_id"] = sale_id
        if offer_id is not None:
            payload["products"] = [{"offer_id": offer_id, "name": "Curso"}]
        return payload

    return build


@pytest.fixture
def approved_payload(kirvano_payload):
    def build(**overrides: Any) -> dict[str, Any]:
        overrides.setdefault("event", "SALE_APPROVED")
        overrides.setdefault("status", "APPROVED")
        return kirvano_payload(**overrides)

    return build


@pytest.fixture
def evolution_payload():
    """Factory for Evolution ``messages.upsert`` bodies."""

    def build(
        *,
        phone: str = CUSTOMER_KEY,
        from_me: bool = False,
        text: str = "Oi, tudo bem?",
        message: dict[str, Any] | None = None,
        message_id: str = "MSG001",
    ) -> dict[str, Any]:
        return {
            "event": "messages.upsert",
            "instance": "GABY01",
            "data": {
                "key": {
                    "id": message_id,
                    "remoteJid": f"{phone}@s.whatsapp.net",
                    "fromMe": from_me,
                },
                "messageType": "conversation",
                "message": message if message is not None else {"conversation": text},
            },
        }

    return build
