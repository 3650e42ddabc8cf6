"""Evolution instance liveness probe with a short TTL cache."""

from __future__ import annotations

import threading
import time
from typing import Any

import requests

from pixrelay.observability.logging import get_logger
from pixrelay.observability.redaction import safe_log_context
from pixrelay.settings import Instance

logger = get_logger(__name__)

OPEN_STATE = "open"


def extract_state(body: Any) -> str:
    """Find the connection state in any of the shapes Evolution versions return.

    Known shapes: ``{"instance": {"state": ...}}``, ``{"state": ...}``,
    ``{"data": {"instance": {"state": ...}}}`` and ``{"data": {"state": ...}}``.
    """
    if not isinstance(body, dict):
        return ""
    candidates = [body, body.get("data")]
    for candidate in candidates:
        if not isinstance(candidate, dict):
            continue
        instance = candidate.get("instance")
        if isinstance(instance, dict) and isinstance(instance.get("state"), str):
            return instance["state"]
        if isinstance(candidate.get("state"), str):
            return candidate["state"]
    return ""


class ConnectionChecker:
    """Checks whether an Evolution instance is connected to WhatsApp.

    Any error (network, non-2xx, bad JSON, unknown instance) counts as not
    live. Results are cached per instance name for ``cache_ttl`` seconds.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = 5.0,
        cache_ttl: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._cache_ttl = cache_ttl
        self._session = session or requests.Session()
        self._cache: dict[str, tuple[bool, float]] = {}
        self._cache_lock = threading.Lock()

    def _probe(self, instance: Instance) -> bool:
        url = f"{self._base_url}/instance/connectionState/{instance.name}"
        headers = {"apikey": self._api_key or instance.token}
        try:
            resp = self._session.get(url, headers=headers, timeout=self._timeout)
            resp.raise_for_status()
            state = extract_state(resp.json())
        except (requests.RequestException, ValueError) as e:
            logger.warning(
                "instance liveness probe failed",
                extra={
                    "extra_fields": safe_log_context(
                        instance=instance.name, error_type=type(e).__name__
                    )
                },
            )
            return False
        return state.lower() == OPEN_STATE

    def is_live(self, instance: Instance) -> bool:
        """Return True if the instance reports state ``open``."""
        now = time.monotonic()
        with self._cache_lock:
            cached = self._cache.get(instance.name)
            if cached is not None and (now - cached[1]) < self._cache_ttl:
                return cached[0]

        # Probe outside the lock; concurrent misses may probe twice
        live = self._probe(instance)
        with self._cache_lock:
            self._cache[instance.name] = (live, time.monotonic())
        if not live:
            logger.info(
                "instance not live",
                extra={"extra_fields": safe_log_context(instance=instance.name)},
            )
        return live

    def clear(self) -> None:
        """Drop cached results (useful for testing)."""
        with self._cache_lock:
            self._cache.clear()
