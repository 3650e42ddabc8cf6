"""Evolution API adapter - validate and normalize webhook payloads."""

from collections.abc import Callable
from typing import Any

from pixrelay.domain.phone import phone_from_jid
from pixrelay.infra.time import utc_now

from .models import ContentKind, InboundMessage, MessageContent


class InvalidPayloadError(Exception):
    """Raised when Evolution payload has invalid shape."""

    pass


def _text_at(message: dict[str, Any], *path: str) -> str:
    current: Any = message
    for key in path:
        if not isinstance(current, dict):
            return ""
        current = current.get(key)
    return current.strip() if isinstance(current, str) else ""


# Fixed priority: the first extractor returning non-empty text wins.
_EXTRACTORS: tuple[tuple[ContentKind, Callable[[dict[str, Any]], str]], ...] = (
    (ContentKind.CONVERSATION, lambda m: _text_at(m, "conversation")),
    (ContentKind.EXTENDED_TEXT, lambda m: _text_at(m, "extendedTextMessage", "text")),
    (ContentKind.IMAGE_CAPTION, lambda m: _text_at(m, "imageMessage", "caption")),
    (ContentKind.VIDEO_CAPTION, lambda m: _text_at(m, "videoMessage", "caption")),
    (
        ContentKind.BUTTON_REPLY,
        lambda m: _text_at(m, "buttonsResponseMessage", "selectedDisplayText"),
    ),
    (
        ContentKind.LIST_REPLY,
        lambda m: _text_at(m, "listResponseMessage", "singleSelectReply", "selectedRowId"),
    ),
    (
        ContentKind.TEMPLATE_REPLY,
        lambda m: _text_at(m, "templateButtonReplyMessage", "selectedId"),
    ),
)


def extract_content(message: Any) -> MessageContent:
    """Extract the message body, trying each supported variant in order.

    Args:
        message: The ``data.message`` object of an Evolution payload.

    Returns:
        MessageContent of the first variant with non-empty text, or
        ``MessageContent(ContentKind.NONE)`` when none matched.
    """
    if not isinstance(message, dict):
        return MessageContent(ContentKind.NONE)
    for kind, extractor in _EXTRACTORS:
        text = extractor(message)
        if text:
            return MessageContent(kind, text)
    return MessageContent(ContentKind.NONE)


def normalize(payload: Any) -> InboundMessage:
    """Normalize Evolution payload.

    Args:
        payload: Raw webhook payload from Evolution API.

    Returns:
        InboundMessage with customer key and extracted content (PII).

    Raises:
        InvalidPayloadError: If the message envelope or remoteJid is missing.
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError("payload must be a JSON object")

    data = payload.get("data")
    if not isinstance(data, dict):
        raise InvalidPayloadError("missing message envelope")

    key = data.get("key")
    if not isinstance(key, dict):
        raise InvalidPayloadError("missing message key")

    remote_jid = key.get("remoteJid")
    if not remote_jid or not isinstance(remote_jid, str):
        raise InvalidPayloadError("missing remoteJid")

    message_id = key.get("id")

    return InboundMessage(
        message_id=message_id if isinstance(message_id, str) else "",
        instance=str(payload.get("instance") or ""),
        remote_jid=remote_jid,
        customer_key=phone_from_jid(remote_jid),
        from_me=key.get("fromMe") is True,
        content=extract_content(data.get("message")),
        received_at=utc_now(),
    )
