"""Kirvano adapter - normalize checkout webhooks into PaymentEvent."""

from typing import Any

from pixrelay.domain.payments import PaymentEvent
from pixrelay.infra.time import epoch_ms

from .common import dig, first_text, format_amount, require_object

PROVIDER = "kirvano"
DEFAULT_CUSTOMER_NAME = "Cliente"


def normalize(payload: Any) -> PaymentEvent:
    """Normalize a Kirvano webhook payload.

    Kirvano moved fields around between API versions, so status and method
    are probed at several locations. Missing optional fields never raise.

    Args:
        payload: Parsed JSON body.

    Returns:
        PaymentEvent with uppercased event/status/method.

    Raises:
        InvalidPayloadError: If the body is not a JSON object.
    """
    data = require_object(payload)

    products = data.get("products")
    product_code = None
    if isinstance(products, list) and products and isinstance(products[0], dict):
        product_code = first_text(products[0].get("offer_id")) or None

    order_id = first_text(data.get("sale_id"), data.get("checkout_id"))

    return PaymentEvent(
        provider=PROVIDER,
        event=first_text(data.get("event")).upper(),
        status=first_text(
            data.get("status"), data.get("payment_status"), dig(data, "payment", "status")
        ).upper(),
        method=first_text(dig(data, "payment", "method"), data.get("payment_method")).upper(),
        order_id=order_id or f"ORDER_{epoch_ms()}",
        customer_name=first_text(dig(data, "customer", "name")) or DEFAULT_CUSTOMER_NAME,
        phone=first_text(dig(data, "customer", "phone_number")),
        amount=format_amount(data.get("total_price")),
        product_code=product_code,
        qr_reference=first_text(
            dig(data, "payment", "qrcode_image"), dig(data, "payment", "qrcode")
        ),
    )
