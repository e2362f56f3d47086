"""
Core package init for the kiosk face tracker.

Re-exports the tracker entry points so callers can `from kiosktrack import FaceTracker`.
"""

from kiosktrack.tracking.face_tracker import FaceTracker, FaceTrackerEvents, TrackerStats
from kiosktrack.tracking.tracked_face import TrackedFace
from kiosktrack.types import FaceBox, FaceDetection, FaceState, MatchResult, VideoDimensions

__version__ = "0.1.0"

__all__ = [
    "FaceBox",
    "FaceDetection",
    "FaceState",
    "FaceTracker",
    "FaceTrackerEvents",
    "MatchResult",
    "TrackedFace",
    "TrackerStats",
    "VideoDimensions",
]
