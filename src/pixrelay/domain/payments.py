"""Payment event model and provider-independent classification."""

from dataclasses import dataclass
from enum import Enum

APPROVAL_EVENT_KEYWORDS = ("APPROVED", "PAID")
APPROVAL_STATUSES = frozenset({"APPROVED", "PAID", "COMPLETED"})
PIX_KEYWORD = "PIX"
PENDING_STATUS_KEYWORDS = ("PEND", "AWAIT", "CREATED", "WAITING")
PIX_CREATED_EVENTS = ("PIX_GENERATED", "PIX_CREATED")


class PaymentKind(str, Enum):
    APPROVED = "approved"
    PENDING_PIX = "pending_pix"
    IGNORED = "ignored"


@dataclass(frozen=True)
class PaymentEvent:
    """A payment webhook reduced to what the relay needs.

    ``event``, ``status`` and ``method`` are uppercased raw provider strings;
    ``phone`` is the raw (not yet normalized) customer phone.
    """

    provider: str
    event: str
    status: str
    method: str
    order_id: str
    customer_name: str
    phone: str
    amount: str
    product_code: str | None = None
    qr_reference: str = ""

    @property
    def kind(self) -> PaymentKind:
        return classify(self.event, self.status, self.method)


def is_approved(event: str, status: str) -> bool:
    return any(k in event for k in APPROVAL_EVENT_KEYWORDS) or status in APPROVAL_STATUSES


def is_pending_pix(event: str, status: str, method: str) -> bool:
    has_pix = PIX_KEYWORD in method or PIX_KEYWORD in event
    if not has_pix:
        return False
    pending = any(k in status for k in PENDING_STATUS_KEYWORDS)
    return pending or any(k in event for k in PIX_CREATED_EVENTS)


def classify(event: str, status: str, method: str) -> PaymentKind:
    """Classify uppercased event/status/method strings.

    Approval wins when both approval and pending keywords are present.
    """
    event, status, method = event.upper(), status.upper(), method.upper()
    if is_approved(event, status):
        return PaymentKind.APPROVED
    if is_pending_pix(event, status, method):
        return PaymentKind.PENDING_PIX
    return PaymentKind.IGNORED
