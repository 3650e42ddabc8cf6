"""Response bodies shared by the webhook routes."""

from pydantic import BaseModel


class WebhookAck(BaseModel):
    """Answer to every processed or ignored webhook delivery."""

    success: bool
    message: str


class WebhookError(BaseModel):
    """Answer to an unexpected internal failure (HTTP 500)."""

    success: bool = False
    error: str
