"""Perfect Pay adapter - normalize postback webhooks into PaymentEvent."""

from typing import Any

from pixrelay.domain.payments import PaymentEvent
from pixrelay.infra.time import epoch_ms

from .common import dig, first_text, format_amount, require_object
from .kirvano_adapter import DEFAULT_CUSTOMER_NAME

PROVIDER = "perfectpay"


def _phone(data: dict[str, Any]) -> str:
    area = first_text(dig(data, "customer", "phone_area_code"))
    number = first_text(dig(data, "customer", "phone_number"))
    return f"{area}{number}" if number else ""


def normalize(payload: Any) -> PaymentEvent:
    """Normalize a Perfect Pay postback.

    Perfect Pay has no event name; the sale status and payment type enum keys
    carry the information (e.g. ``pending`` + ``pix``).

    Raises:
        InvalidPayloadError: If the body is not a JSON object.
    """
    data = require_object(payload)

    return PaymentEvent(
        provider=PROVIDER,
        event=first_text(data.get("event"), data.get("webhook_event")).upper(),
        status=first_text(data.get("sale_status_enum_key"), data.get("status")).upper(),
        method=first_text(data.get("payment_type_enum_key"), data.get("payment_method")).upper(),
        order_id=first_text(data.get("code"), data.get("transaction_code"))
        or f"ORDER_{epoch_ms()}",
        customer_name=first_text(dig(data, "customer", "full_name"), dig(data, "customer", "name"))
        or DEFAULT_CUSTOMER_NAME,
        phone=_phone(data),
        amount=format_amount(data.get("sale_amount")),
        product_code=first_text(dig(data, "plan", "code"), dig(data, "product", "code")) or None,
        qr_reference=first_text(data.get("pix_url"), data.get("qrcode"), data.get("billet_url")),
    )
