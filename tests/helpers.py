"""Shared test helpers for relay tests.

This module contains helpers that can be imported by both conftest.py and
individual test files. These are NOT fixtures - they are regular functions
and classes.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock

import requests

CUSTOMER_PHONE = "11987654321"
CUSTOMER_KEY = "5511987654321"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ManualTimer:
    """threading.Timer stand-in; ``fire`` runs the callback even if canceled.

    Firing a canceled timer reproduces a real timer thread that woke up just
    before ``cancel`` was called.
    """

    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.started = False
        self.canceled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.canceled = True

    def fire(self) -> None:
        self.callback()


class ManualTimerFactory:
    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, delay: float, callback) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def armed(self) -> list[ManualTimer]:
        return [t for t in self.timers if t.started and not t.canceled]

    def fire_all(self) -> None:
        for timer in self.armed:
            timer.fire()


def make_session(status_code: int = 200) -> MagicMock:
    """requests.Session mock whose POSTs succeed with ``status_code``."""
    session = MagicMock(spec=requests.Session)
    response = MagicMock()
    response.status_code = status_code
    response.raise_for_status.return_value = None
    session.post.return_value = response
    return session


def posted_events(session: MagicMock) -> list[dict[str, Any]]:
    """JSON bodies POSTed through ``session``, in order."""
    return [c.kwargs["json"] for c in session.post.call_args_list]


def posted_types(session: MagicMock) -> list[str]:
    return [e["event_type"] for e in posted_events(session)]
