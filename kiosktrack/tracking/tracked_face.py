"""Per-face lifecycle state for the kiosk face tracker.

A tracked face moves through ``detected -> qualified -> attempted -> suppressed``
and back to ``detected`` once its suppression window elapses. Qualification
requires the face to be eligible (large enough, confident, facing the camera,
with a descriptor) and to have stayed stable for a minimum duration. Expiry is
decided by the owning :class:`~kiosktrack.tracking.face_tracker.FaceTracker`,
which removes the track instead of storing an ``expired`` state on it.
"""

from __future__ import annotations

import logging
import uuid
from typing import List, Optional, Tuple

import numpy as np

from kiosktrack.config import TrackerConfig
from kiosktrack.tracking.observer import LoggingTrackObserver, TrackObserver
from kiosktrack.types import (
    Clock,
    DescriptorLike,
    EligibilityResult,
    FaceBox,
    FaceState,
    QualificationResult,
    TrackedFaceData,
    VideoDimensions,
    as_descriptor,
    center_distance,
    wall_clock_ms,
)

LOGGER = logging.getLogger("kiosktrack.tracking.face")


def generate_face_id() -> str:
    return f"face_{uuid.uuid4().hex}"


class TrackedFace:
    """A single physical face followed across frames."""

    def __init__(
        self,
        box: FaceBox,
        confidence: float,
        descriptor: Optional[DescriptorLike] = None,
        config: Optional[TrackerConfig] = None,
        clock: Clock = wall_clock_ms,
        observer: Optional[TrackObserver] = None,
    ) -> None:
        self.id = generate_face_id()
        self.config = config or TrackerConfig()
        self._clock = clock
        self._observer = observer or LoggingTrackObserver()

        self._state = FaceState.DETECTED
        self._box = box.copy()
        self._previous_box: Optional[FaceBox] = None
        self._confidence = float(confidence)
        self._descriptor = as_descriptor(descriptor)
        self._yaw_angle: Optional[float] = None
        self._first_seen_at = self._clock()
        self._last_seen_at = self._first_seen_at
        self._stable_start_at: Optional[float] = None
        self._stable_frame_count = 0
        self._attempted_at: Optional[float] = None
        self._matched_user_id: Optional[int] = None
        self._suppressed_until: Optional[float] = None

        # Last values handed to the observer; notifications fire on change only.
        # A new track starts out as eligible (no reasons), so only a rejection
        # or a later recovery is reported.
        self._last_eligibility_reasons = ""
        self._last_stability: Optional[bool] = None
        self._last_qualification_reason: Optional[str] = None

    @property
    def state(self) -> FaceState:
        return self._state

    @property
    def box(self) -> FaceBox:
        return self._box

    @property
    def confidence(self) -> float:
        return self._confidence

    @property
    def descriptor(self) -> Optional[np.ndarray]:
        return self._descriptor

    @property
    def yaw_angle(self) -> Optional[float]:
        return self._yaw_angle

    @property
    def first_seen_at(self) -> float:
        return self._first_seen_at

    @property
    def last_seen_at(self) -> float:
        return self._last_seen_at

    @property
    def stable_start_at(self) -> Optional[float]:
        return self._stable_start_at

    @property
    def stable_frame_count(self) -> int:
        return self._stable_frame_count

    @property
    def attempted_at(self) -> Optional[float]:
        return self._attempted_at

    @property
    def matched_user_id(self) -> Optional[int]:
        return self._matched_user_id

    @property
    def suppressed_until(self) -> Optional[float]:
        return self._suppressed_until

    def update(
        self,
        box: FaceBox,
        confidence: float,
        descriptor: Optional[DescriptorLike],
        yaw_angle: Optional[float],
        video_dimensions: VideoDimensions,
    ) -> None:
        """Apply a new detection matched to this face in the current frame."""
        now = self._clock()
        previous_confidence = self._confidence
        self._previous_box = self._box.copy()
        self._box = box.copy()
        self._confidence = float(confidence)
        self._yaw_angle = None if yaw_angle is None else float(yaw_angle)
        self._last_seen_at = now

        incoming = as_descriptor(descriptor)
        if incoming is not None and (self._descriptor is None or confidence > previous_confidence):
            self._descriptor = incoming

        eligibility = self.check_eligibility(video_dimensions)
        reasons_key = "; ".join(eligibility.reasons)
        if reasons_key != self._last_eligibility_reasons:
            self._observer.on_eligibility_changed(self.id, eligibility.eligible, eligibility.reasons)
            self._last_eligibility_reasons = reasons_key

        if eligibility.eligible:
            stable, reason = self._check_stability()
            if stable != self._last_stability:
                self._observer.on_stability_changed(self.id, stable, reason)
                self._last_stability = stable
            if stable:
                if self._stable_start_at is None:
                    self._stable_start_at = now
                self._stable_frame_count += 1
            else:
                self._reset_stability()
        else:
            self._reset_stability()
            self._last_stability = None

        self._update_state(eligibility, now)

    def check_eligibility(self, video_dimensions: VideoDimensions) -> EligibilityResult:
        """Check size, confidence, pose and descriptor gates for the current frame."""
        cfg = self.config
        reasons: List[str] = []

        face_size_ratio = self._box.width / video_dimensions.width
        if face_size_ratio < cfg.min_face_size_ratio:
            reasons.append(
                f"Face too small: {face_size_ratio * 100:.1f}% < "
                f"{cfg.min_face_size_ratio * 100:.0f}% of frame"
            )
        if self._confidence < cfg.min_detection_confidence:
            reasons.append(
                f"Low confidence: {self._confidence * 100:.0f}% < "
                f"{cfg.min_detection_confidence * 100:.0f}%"
            )
        if self._yaw_angle is not None and abs(self._yaw_angle) > cfg.max_yaw_angle:
            reasons.append(
                f"Head turned too far: {self._yaw_angle:.0f} deg (max +/-{cfg.max_yaw_angle:.0f} deg)"
            )
        if self._descriptor is None:
            reasons.append("No face descriptor available")

        return EligibilityResult(eligible=not reasons, reasons=reasons)

    def _check_stability(self) -> Tuple[bool, str]:
        if self._previous_box is None:
            return True, "First frame"
        cfg = self.config
        avg_size = (self._box.width + self._previous_box.width) / 2.0
        if avg_size <= 0:
            return False, "Degenerate face size"

        drift_ratio = center_distance(self._box, self._previous_box) / avg_size
        if drift_ratio > cfg.max_position_drift_ratio:
            return False, (
                f"Position drift: {drift_ratio * 100:.1f}% > "
                f"{cfg.max_position_drift_ratio * 100:.0f}% of face size"
            )

        size_change_ratio = abs(self._box.width - self._previous_box.width) / avg_size
        if size_change_ratio > cfg.max_size_change_ratio:
            return False, (
                f"Size change: {size_change_ratio * 100:.1f}% > {cfg.max_size_change_ratio * 100:.0f}%"
            )
        return True, "Stable"

    def _reset_stability(self) -> None:
        self._stable_start_at = None
        self._stable_frame_count = 0

    def _update_state(self, eligibility: EligibilityResult, now: float) -> None:
        if self._state is FaceState.SUPPRESSED:
            if self._suppressed_until is not None and now < self._suppressed_until:
                return
            self._state = FaceState.DETECTED
            self._suppressed_until = None
            LOGGER.debug("Face %s suppression ended", self.id[:13])

        # Frozen until the caller reports an outcome.
        if self._state is FaceState.ATTEMPTED:
            return

        qualification = self.check_qualification(eligibility, now)
        if qualification.reason != self._last_qualification_reason:
            self._observer.on_qualification_changed(self.id, qualification.qualified, qualification.reason)
            self._last_qualification_reason = qualification.reason

        if qualification.qualified and self._state is FaceState.DETECTED:
            self._state = FaceState.QUALIFIED
        elif not eligibility.eligible and self._state is FaceState.QUALIFIED:
            self._state = FaceState.DETECTED

    def check_qualification(
        self, eligibility: EligibilityResult, now: Optional[float] = None
    ) -> QualificationResult:
        """Combine eligibility with the current stability streak."""
        cfg = self.config
        if not eligibility.eligible:
            return QualificationResult(False, ", ".join(eligibility.reasons), 0.0, self._stable_frame_count)
        if self._stable_start_at is None:
            return QualificationResult(False, "Stability tracking not started", 0.0, self._stable_frame_count)

        now = self._clock() if now is None else now
        stable_duration = now - self._stable_start_at
        if stable_duration < cfg.stability_duration_ms:
            return QualificationResult(
                False,
                f"Needs {cfg.stability_duration_ms - stable_duration:.0f}ms more stability",
                stable_duration,
                self._stable_frame_count,
            )
        if self._stable_frame_count < cfg.min_stable_frames:
            return QualificationResult(
                False,
                f"Needs {cfg.min_stable_frames - self._stable_frame_count} more stable frames",
                stable_duration,
                self._stable_frame_count,
            )
        return QualificationResult(True, "Face is stable and eligible", stable_duration, self._stable_frame_count)

    def mark_attempted(self) -> None:
        """Freeze the face while an identification request is in flight."""
        self._state = FaceState.ATTEMPTED
        self._attempted_at = self._clock()

    def mark_matched(self, user_id: int) -> None:
        self._state = FaceState.SUPPRESSED
        self._matched_user_id = user_id
        self._suppressed_until = self._clock() + self.config.match_suppression_ms

    def mark_no_match(self) -> None:
        self._state = FaceState.SUPPRESSED
        self._suppressed_until = self._clock() + self.config.no_match_suppression_ms

    def is_expired(self) -> bool:
        """True once the face has not been seen for the expiry window.

        Attempted faces stay alive while their request is outstanding, up to
        ``attempt_timeout_ms`` after the attempt started.
        """
        now = self._clock()
        stale = now - self._last_seen_at > self.config.face_expiry_ms
        if self._state is FaceState.ATTEMPTED and self._attempted_at is not None:
            return stale and now - self._attempted_at > self.config.attempt_timeout_ms
        return stale

    def is_ready_for_identification(self) -> bool:
        return self._state is FaceState.QUALIFIED and self._descriptor is not None

    def to_data(self) -> TrackedFaceData:
        return TrackedFaceData(
            id=self.id,
            state=self._state,
            box=self._box.copy(),
            confidence=self._confidence,
            descriptor=None if self._descriptor is None else self._descriptor.copy(),
            yaw_angle=self._yaw_angle,
            first_seen_at=self._first_seen_at,
            last_seen_at=self._last_seen_at,
            stable_start_at=self._stable_start_at,
            stable_frame_count=self._stable_frame_count,
            attempted_at=self._attempted_at,
            matched_user_id=self._matched_user_id,
            suppressed_until=self._suppressed_until,
        )

    def __repr__(self) -> str:
        return (
            f"TrackedFace(id={self.id!r}, state={self._state.value}, "
            f"confidence={self._confidence:.2f}, stable_frames={self._stable_frame_count})"
        )
