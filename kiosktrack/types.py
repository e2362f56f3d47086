"""Common dataclasses and type aliases used across the kiosktrack package."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

Point = Tuple[float, float]
DescriptorLike = Union[np.ndarray, Sequence[float]]
Clock = Callable[[], float]


class FaceState(str, Enum):
    """Lifecycle states of a tracked face."""

    DETECTED = "detected"
    QUALIFIED = "qualified"
    ATTEMPTED = "attempted"
    SUPPRESSED = "suppressed"
    # Only used as a stats bucket; tracks are removed rather than parked here.
    EXPIRED = "expired"


@dataclass
class FaceBox:
    """Axis-aligned face rectangle in frame pixel coordinates."""

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> "FaceBox":
        return cls(float(x1), float(y1), float(x2 - x1), float(y2 - y1))

    @property
    def center(self) -> Point:
        return self.x + self.width / 2.0, self.y + self.height / 2.0

    def copy(self) -> "FaceBox":
        return FaceBox(self.x, self.y, self.width, self.height)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class VideoDimensions:
    width: float = 640.0
    height: float = 480.0


@dataclass
class FaceDetection:
    """Raw per-frame face detection handed to the tracker."""

    box: FaceBox
    confidence: float
    descriptor: Optional[np.ndarray] = None
    yaw_angle: Optional[float] = None

    def __post_init__(self) -> None:
        self.descriptor = as_descriptor(self.descriptor)


@dataclass
class EligibilityResult:
    eligible: bool
    reasons: List[str] = field(default_factory=list)


@dataclass
class QualificationResult:
    qualified: bool
    reason: str
    stable_duration: float
    stable_frames: int


@dataclass
class TrackedFaceData:
    """Snapshot of a tracked face for debugging and event logs."""

    id: str
    state: FaceState
    box: FaceBox
    confidence: float
    descriptor: Optional[np.ndarray]
    yaw_angle: Optional[float]
    first_seen_at: float
    last_seen_at: float
    stable_start_at: Optional[float]
    stable_frame_count: int
    attempted_at: Optional[float]
    matched_user_id: Optional[int]
    suppressed_until: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "box": self.box.to_dict(),
            "confidence": self.confidence,
            "descriptor": None if self.descriptor is None else self.descriptor.tolist(),
            "yaw_angle": self.yaw_angle,
            "first_seen_at": self.first_seen_at,
            "last_seen_at": self.last_seen_at,
            "stable_start_at": self.stable_start_at,
            "stable_frame_count": self.stable_frame_count,
            "attempted_at": self.attempted_at,
            "matched_user_id": self.matched_user_id,
            "suppressed_until": self.suppressed_until,
        }


@dataclass
class MatchResult:
    """Outcome returned by an identification backend."""

    matched: bool
    user_id: Optional[int] = None
    confidence: float = 0.0
    distance: float = math.inf
    user_name: Optional[str] = None

    @classmethod
    def no_match(cls, distance: float = math.inf) -> "MatchResult":
        return cls(matched=False, distance=distance)


def as_descriptor(raw: Optional[DescriptorLike]) -> Optional[np.ndarray]:
    """Copy a descriptor into a 1D float32 vector (None stays None)."""
    if raw is None:
        return None
    arr = np.array(raw, dtype=np.float32).reshape(-1)
    if arr.size == 0:
        return None
    return arr


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Euclidean distance between descriptors; infinite when lengths differ."""
    if a.shape != b.shape:
        return math.inf
    return float(np.linalg.norm(a.astype(np.float64) - b.astype(np.float64)))


def center_distance(box_a: FaceBox, box_b: FaceBox) -> float:
    ax, ay = box_a.center
    bx, by = box_b.center
    return math.hypot(ax - bx, ay - by)


def l2_normalize(vec: np.ndarray, eps: float = 1e-6) -> np.ndarray:
    """L2-normalize the input vector."""
    norm = np.linalg.norm(vec)
    if norm < eps:
        return vec
    return vec / norm


def wall_clock_ms() -> float:
    """Default clock: wall time in milliseconds."""
    return time.time() * 1000.0


class ManualClock:
    """Clock driven explicitly by the caller (video replay, tests)."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self.now_ms = float(start_ms)

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, delta_ms: float) -> float:
        self.now_ms += float(delta_ms)
        return self.now_ms

    def set(self, now_ms: float) -> None:
        self.now_ms = float(now_ms)
