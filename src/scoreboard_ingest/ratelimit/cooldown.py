"""Per-device upload cooldown.

A small TTL map owned by whoever creates it (the FastAPI app keeps one on
``app.state``).  Checks return a result object instead of raising, so the
caller decides how a refusal is rendered.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass


@dataclass(frozen=True)
class Admitted:
    pass


@dataclass(frozen=True)
class RateLimited:
    retry_after_ms: int


@dataclass(frozen=True)
class Rejected:
    reason: str


CooldownDecision = Admitted | RateLimited | Rejected


class CooldownCache:
    """Admit at most one upload per key within ``ttl_seconds``.

    A ``ttl_seconds`` of zero or less disables the cooldown.  ``max_keys``
    bounds memory; when every slot holds a live entry new keys are rejected.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._expires: dict[Hashable, float] = {}

    def __len__(self) -> int:
        return len(self._expires)

    def check(self, key: Hashable) -> CooldownDecision:
        """Admit *key* and start its cooldown, or report how long to wait."""
        if self.ttl_seconds <= 0:
            return Admitted()

        now = self._clock()
        expires = self._expires.get(key)
        if expires is not None and expires > now:
            return RateLimited(retry_after_ms=max(1, int((expires - now) * 1000)))

        if expires is None and len(self._expires) >= self.max_keys:
            self._purge(now)
            if len(self._expires) >= self.max_keys:
                return Rejected("Upload cooldown capacity exhausted.")

        self._expires[key] = now + self.ttl_seconds
        return Admitted()

    def reset(self, key: Hashable | None = None) -> None:
        if key is None:
            self._expires.clear()
        else:
            self._expires.pop(key, None)

    def _purge(self, now: float) -> None:
        for key in [k for k, exp in self._expires.items() if exp <= now]:
            del self._expires[key]
