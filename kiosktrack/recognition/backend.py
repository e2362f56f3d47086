"""Identification backend interface."""

from __future__ import annotations

from typing import Protocol

import numpy as np

from kiosktrack.types import MatchResult


class IdentificationError(RuntimeError):
    """Raised by a backend when an identification request cannot be served."""


class IdentificationBackend(Protocol):
    def identify(self, descriptor: np.ndarray) -> MatchResult:
        ...
