"""Lenient field access shared by the payment-provider adapters."""

from typing import Any


class InvalidPayloadError(Exception):
    """Raised when a payment payload has an unusable shape."""

    pass


def dig(payload: Any, *path: str) -> Any:
    """Walk nested dicts, returning None as soon as a step is missing."""
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_text(*values: Any) -> str:
    """Return the first value that is a non-empty string/number, as text."""
    for value in values:
        if value is None or isinstance(value, (dict, list, bool)):
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def format_amount(value: Any, default: str = "R$ 0,00") -> str:
    """Render an amount for display.

    Strings are passed through (providers already send "R$ 97,00"); numbers
    are formatted in Brazilian notation.
    """
    if value is None or value == "" or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        formatted = f"{value:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
        return f"R$ {formatted}"
    return str(value).strip() or default


def require_object(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise InvalidPayloadError("payload must be a JSON object")
    return payload
