"""Exponential reconnect backoff."""

from __future__ import annotations

import random

BASE_RETRY_SEC = 1.0
MAX_RETRY_SEC = 30.0


class ReconnectBackoff:
    """Doubles the delay after each failed attempt, never above ``ceiling``."""

    def __init__(
        self,
        base: float = BASE_RETRY_SEC,
        ceiling: float = MAX_RETRY_SEC,
        jitter: float = 0.0,
        rng: random.Random | None = None,
    ) -> None:
        if base <= 0 or ceiling < base:
            raise ValueError("Backoff needs 0 < base <= ceiling")
        if not 0.0 <= jitter < 1.0:
            raise ValueError("Backoff jitter must be in [0, 1)")
        self.base = base
        self.ceiling = ceiling
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._current = base

    @property
    def current(self) -> float:
        return self._current

    def reset(self) -> None:
        self._current = self.base

    def next_delay(self) -> float:
        delay = self._current
        self._current = min(self._current * 2, self.ceiling)
        if self.jitter:
            delay *= 1.0 + self._rng.uniform(-self.jitter, self.jitter)
        return min(max(delay, 0.0), self.ceiling)
