"""FastAPI dependencies - hand the app's relay to route handlers."""

from fastapi import Request

from pixrelay.domain.relay import RelayService


def get_relay(request: Request) -> RelayService:
    """Return the RelayService created by the app factory."""
    relay = getattr(request.app.state, "relay", None)
    if not isinstance(relay, RelayService):
        raise RuntimeError("relay not initialized (app.state.relay missing)")
    return relay
