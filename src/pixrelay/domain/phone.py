"""Phone normalization - the correlation key shared by every event stream.

Policy: the subscriber "9" is always preserved. The same function runs on
payment-provider phones and on Evolution remoteJid values, so both streams
land on the same key.
"""

import re

COUNTRY_CODE = "55"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None) -> str:
    """Canonicalize a raw phone string into a customer key.

    Strips every non-digit character. A 10 or 11 digit result is a national
    number (area code + subscriber) and gets the country code prepended.
    Anything else is returned as digits only.

    Args:
        raw: Phone as typed by the customer or sent by a provider.

    Returns:
        Digits-only key, or "" when the input holds no digits (callers must
        treat "" as invalid and drop the event).
    """
    if not raw:
        return ""
    digits = _NON_DIGITS.sub("", str(raw))
    if len(digits) in (10, 11):
        digits = COUNTRY_CODE + digits
    return digits


def phone_from_jid(remote_jid: str | None) -> str:
    """Extract the customer key from a WhatsApp JID (``<phone>@s.whatsapp.net``)."""
    if not remote_jid:
        return ""
    number, _, _ = remote_jid.partition("@")
    # Multi-device JIDs carry a ":<device>" suffix before the domain
    number, _, _ = number.partition(":")
    return normalize_phone(number)
