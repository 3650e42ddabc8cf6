"""Sticky assignment of Evolution instances (sending identities) to customers."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from pixrelay.infra.time import Clock, utc_now
from pixrelay.observability.logging import get_logger
from pixrelay.observability.redaction import hash_key, safe_log_context
from pixrelay.settings import Instance

logger = get_logger(__name__)


class LivenessChecker(Protocol):
    """Anything that can tell whether an instance is connected."""

    def is_live(self, instance: Instance) -> bool:
        ...


@dataclass(frozen=True)
class IdentityAssignment:
    instance: str
    created_at: datetime


class IdentityAssigner:
    """Round-robin identity assignment, pinned per customer key.

    Without a liveness checker the pinned identity is returned unconditionally.
    With one, a pinned identity that is not live is discarded and the
    round-robin search skips dead instances, trying each pool member once
    before falling back to the first instance. ``assign`` never raises.
    """

    def __init__(
        self,
        pool: tuple[Instance, ...] | list[Instance],
        *,
        liveness: LivenessChecker | None = None,
        clock: Clock = utc_now,
    ) -> None:
        if not pool:
            raise ValueError("identity pool must not be empty")
        self._pool = tuple(pool)
        self._by_name = {i.name: i for i in self._pool}
        self._liveness = liveness
        self._clock = clock
        self._counter = itertools.count()
        self._assignments: dict[str, IdentityAssignment] = {}
        self._lock = threading.Lock()

    @property
    def pool(self) -> tuple[Instance, ...]:
        return self._pool

    def _is_live(self, name: str) -> bool:
        if self._liveness is None:
            return True
        instance = self._by_name.get(name)
        if instance is None:
            return False
        try:
            return self._liveness.is_live(instance)
        except Exception:
            # A probe must never break assignment
            logger.exception(
                "liveness checker raised",
                extra={"extra_fields": safe_log_context(instance=name)},
            )
            return False

    def _next_candidate(self) -> Instance:
        return self._pool[next(self._counter) % len(self._pool)]

    def _pick(self) -> str:
        if self._liveness is None:
            return self._next_candidate().name
        for _ in range(len(self._pool)):
            candidate = self._next_candidate()
            if self._is_live(candidate.name):
                return candidate.name
        logger.warning("no live instance found, falling back to first instance")
        return self._pool[0].name

    def assign(self, key: str) -> str:
        """Return the identity pinned to ``key``, assigning one if needed.

        Liveness probes run outside the lock; a concurrent assignment for the
        same key made meanwhile wins, so a key is never pinned twice.
        """
        with self._lock:
            current = self._assignments.get(key)

        if current is not None:
            if self._is_live(current.instance):
                return current.instance
            with self._lock:
                if self._assignments.get(key) is current:
                    del self._assignments[key]
            logger.info(
                "pinned instance not live, reassigning",
                extra={
                    "extra_fields": safe_log_context(
                        key_hash=hash_key(key), instance=current.instance
                    )
                },
            )

        name = self._pick()
        with self._lock:
            existing = self._assignments.get(key)
            if existing is not None and existing is not current:
                return existing.instance
            self._assignments[key] = IdentityAssignment(instance=name, created_at=self._clock())

        logger.info(
            "instance assigned",
            extra={"extra_fields": safe_log_context(key_hash=hash_key(key), instance=name)},
        )
        return name

    def get(self, key: str) -> str | None:
        with self._lock:
            assignment = self._assignments.get(key)
        return assignment.instance if assignment else None

    def purge(self, cutoff: datetime) -> int:
        """Remove assignments created before ``cutoff``. Returns how many were removed."""
        with self._lock:
            stale = [k for k, a in self._assignments.items() if a.created_at < cutoff]
            for k in stale:
                del self._assignments[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._assignments)
