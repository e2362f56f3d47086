"""Fixed-window request limiter keyed by device or session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Hashable

LOGGER = logging.getLogger("kiosktrack.recognition.rate_limit")


@dataclass
class _Window:
    start: float
    count: int


class WindowRateLimiter:
    """Allow at most ``max_requests`` per ``window_ms`` for each key.

    A new window opens on the first request made after the current one is
    older than ``window_ms``.
    """

    def __init__(self, max_requests: int = 30, window_ms: float = 60000.0) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._windows: Dict[Hashable, _Window] = {}

    def allow(self, key: Hashable, now: float) -> bool:
        window = self._windows.get(key)
        if window is None or now - window.start > self.window_ms:
            self._windows[key] = _Window(start=now, count=1)
            return True
        if window.count >= self.max_requests:
            LOGGER.warning("Rate limit exceeded for %s (%d requests)", key, window.count)
            return False
        window.count += 1
        return True

    def remaining(self, key: Hashable, now: float) -> int:
        window = self._windows.get(key)
        if window is None or now - window.start > self.window_ms:
            return self.max_requests
        return max(0, self.max_requests - window.count)

    def reset(self) -> None:
        self._windows.clear()
