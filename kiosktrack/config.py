"""Configuration dataclasses for the tracker, identification session and gallery."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from kiosktrack.io_utils import load_yaml

LOGGER = logging.getLogger("kiosktrack.config")

T = TypeVar("T")


@dataclass
class TrackerConfig:
    # Eligibility
    min_face_size_ratio: float = 0.06
    min_detection_confidence: float = 0.6
    max_yaw_angle: float = 30.0
    # Stability / qualification
    stability_duration_ms: float = 100.0
    min_stable_frames: int = 1
    max_position_drift_ratio: float = 0.8
    max_size_change_ratio: float = 0.6
    # Suppression and expiry
    match_suppression_ms: float = 10000.0
    no_match_suppression_ms: float = 3000.0
    face_expiry_ms: float = 2000.0
    # Attempted tracks outlive face_expiry_ms until this hard timeout
    attempt_timeout_ms: float = 15000.0
    # Association
    tracking_distance_threshold: float = 0.5
    spatial_weight: float = 0.7
    descriptor_weight: float = 0.3
    exclusive_matching: bool = False
    default_video_width: float = 640.0
    default_video_height: float = 480.0

    def validate(self) -> None:
        if not 0.0 <= self.min_face_size_ratio <= 1.0:
            raise ValueError(f"min_face_size_ratio must be in [0, 1], got {self.min_face_size_ratio}")
        if not 0.0 <= self.min_detection_confidence <= 1.0:
            raise ValueError(
                f"min_detection_confidence must be in [0, 1], got {self.min_detection_confidence}"
            )
        if self.max_yaw_angle < 0:
            raise ValueError(f"max_yaw_angle must be non-negative, got {self.max_yaw_angle}")
        if self.min_stable_frames < 0:
            raise ValueError(f"min_stable_frames must be non-negative, got {self.min_stable_frames}")
        for name in (
            "stability_duration_ms",
            "match_suppression_ms",
            "no_match_suppression_ms",
            "face_expiry_ms",
            "attempt_timeout_ms",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.tracking_distance_threshold <= 0:
            raise ValueError(
                f"tracking_distance_threshold must be positive, got {self.tracking_distance_threshold}"
            )
        if self.default_video_width <= 0 or self.default_video_height <= 0:
            raise ValueError("default video dimensions must be positive")


@dataclass
class SessionConfig:
    user_cooldown_ms: float = 5000.0
    min_match_confidence: float = 0.3
    rate_limit_max_requests: int = 30
    rate_limit_window_ms: float = 60000.0
    # Minimum gap between backend queries after a no-match (0 disables)
    uncertain_query_cooldown_ms: float = 3000.0
    # Recent no-match descriptors closer than this are not re-queried
    similar_face_threshold: float = 0.7
    similar_face_cache_size: int = 10
    similar_face_ttl_ms: float = 3000.0

    def validate(self) -> None:
        if self.user_cooldown_ms < 0:
            raise ValueError(f"user_cooldown_ms must be non-negative, got {self.user_cooldown_ms}")
        if not 0.0 <= self.min_match_confidence <= 1.0:
            raise ValueError(f"min_match_confidence must be in [0, 1], got {self.min_match_confidence}")
        if self.rate_limit_max_requests < 1:
            raise ValueError("rate_limit_max_requests must be >= 1")
        if self.rate_limit_window_ms <= 0:
            raise ValueError("rate_limit_window_ms must be positive")
        if self.uncertain_query_cooldown_ms < 0:
            raise ValueError(
                f"uncertain_query_cooldown_ms must be non-negative, got {self.uncertain_query_cooldown_ms}"
            )
        if self.similar_face_threshold <= 0:
            raise ValueError(f"similar_face_threshold must be positive, got {self.similar_face_threshold}")
        if self.similar_face_cache_size < 1:
            raise ValueError("similar_face_cache_size must be >= 1")
        if self.similar_face_ttl_ms <= 0:
            raise ValueError("similar_face_ttl_ms must be positive")


@dataclass
class GalleryConfig:
    # Maximum Euclidean distance accepted as a match. For L2-normalised
    # ArcFace embeddings 0.6 corresponds to cosine similarity 0.82. Confidence
    # is 1 - distance / threshold, so SessionConfig.min_match_confidence
    # further tightens the accepted distance to threshold * (1 - min_conf).
    match_threshold: float = 0.6

    def validate(self) -> None:
        if self.match_threshold <= 0:
            raise ValueError(f"match_threshold must be positive, got {self.match_threshold}")


@dataclass
class KioskConfig:
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    gallery: GalleryConfig = field(default_factory=GalleryConfig)


def from_dict(cls: Type[T], data: Optional[Mapping[str, Any]]) -> T:
    """Build a config dataclass from a mapping, ignoring unknown keys."""
    data = dict(data or {})
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(data) - known)
    if unknown:
        LOGGER.warning("Ignoring unknown %s keys: %s", cls.__name__, unknown)
    instance = cls(**{k: v for k, v in data.items() if k in known})
    validate = getattr(instance, "validate", None)
    if validate is not None:
        validate()
    return instance


def load_config(path: Optional[Path]) -> KioskConfig:
    """Load a kiosk YAML config with ``tracker``, ``session`` and ``gallery`` sections."""
    if path is None:
        return KioskConfig()
    raw: Dict[str, Any] = load_yaml(path)
    config = KioskConfig(
        tracker=from_dict(TrackerConfig, raw.get("tracker")),
        session=from_dict(SessionConfig, raw.get("session")),
        gallery=from_dict(GalleryConfig, raw.get("gallery")),
    )
    extra = sorted(set(raw) - {"tracker", "session", "gallery"})
    if extra:
        LOGGER.warning("Ignoring unknown config sections in %s: %s", path, extra)
    return config
