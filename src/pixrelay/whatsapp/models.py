"""WhatsApp message models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ContentKind(str, Enum):
    """Where the text of an Evolution message was found, in extraction order."""

    CONVERSATION = "conversation"
    EXTENDED_TEXT = "extendedTextMessage"
    IMAGE_CAPTION = "imageMessage"
    VIDEO_CAPTION = "videoMessage"
    BUTTON_REPLY = "buttonsResponseMessage"
    LIST_REPLY = "listResponseMessage"
    TEMPLATE_REPLY = "templateButtonReplyMessage"
    NONE = "none"


@dataclass(frozen=True)
class MessageContent:
    """Extracted message body. ``kind`` is NONE (and text empty) when nothing matched."""

    kind: ContentKind
    text: str = ""


@dataclass(frozen=True)
class InboundMessage:
    """Normalized Evolution ``messages.upsert`` event.

    ATTENTION PII:
    - ``remote_jid``, ``customer_key`` and ``content.text`` are PII
    - Never log them raw; use redaction/hash_key
    """

    message_id: str
    instance: str
    remote_jid: str
    customer_key: str
    from_me: bool
    content: MessageContent
    received_at: datetime

    @property
    def text(self) -> str:
        return self.content.text
