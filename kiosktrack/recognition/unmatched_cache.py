"""Short-lived memory of descriptors the backend could not identify."""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Tuple

import numpy as np

from kiosktrack.types import DescriptorLike, as_descriptor, euclidean_distance

LOGGER = logging.getLogger("kiosktrack.recognition.unmatched")


class UnmatchedDescriptorCache:
    """Bounded list of recent no-match descriptors.

    An unknown person whose track is dropped and recreated would otherwise be
    sent to the backend again straight away. Entries older than ``ttl_ms`` are
    ignored and pruned; only the newest ``max_size`` entries are kept.
    """

    def __init__(self, max_size: int = 10, ttl_ms: float = 3000.0, similarity_threshold: float = 0.7) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        if similarity_threshold <= 0:
            raise ValueError(f"similarity_threshold must be positive, got {similarity_threshold}")
        self.ttl_ms = float(ttl_ms)
        self.similarity_threshold = float(similarity_threshold)
        self._entries: Deque[Tuple[np.ndarray, float]] = deque(maxlen=max_size)

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, descriptor: DescriptorLike, now: float) -> None:
        vector = as_descriptor(descriptor)
        if vector is None:
            return
        self._entries.append((vector, now))

    def _prune(self, now: float) -> None:
        while self._entries and now - self._entries[0][1] >= self.ttl_ms:
            self._entries.popleft()

    def is_similar(self, descriptor: DescriptorLike, now: float) -> bool:
        """True if ``descriptor`` is close to a live no-match entry."""
        self._prune(now)
        vector = as_descriptor(descriptor)
        if vector is None:
            return False
        for cached, _ in self._entries:
            distance = euclidean_distance(vector, cached)
            if distance < self.similarity_threshold:
                LOGGER.debug("Descriptor similar to recent unmatched face (distance=%.3f)", distance)
                return True
        return False

    def clear(self) -> None:
        self._entries.clear()
