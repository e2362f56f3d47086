"""Multi-face tracker that associates per-frame detections with tracked faces."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from kiosktrack.config import TrackerConfig
from kiosktrack.tracking.observer import LoggingTrackObserver, TrackObserver
from kiosktrack.tracking.tracked_face import TrackedFace
from kiosktrack.types import (
    Clock,
    FaceDetection,
    FaceState,
    VideoDimensions,
    center_distance,
    euclidean_distance,
    wall_clock_ms,
)

LOGGER = logging.getLogger("kiosktrack.tracking.tracker")


@dataclass
class FaceTrackerEvents:
    """Optional callbacks fired by the tracker."""

    on_face_qualified: Optional[Callable[[TrackedFace], None]] = None
    on_face_expired: Optional[Callable[[TrackedFace], None]] = None
    on_face_matched: Optional[Callable[[TrackedFace, int], None]] = None


@dataclass
class TrackerStats:
    total_faces: int
    by_state: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {"total_faces": self.total_faces, "by_state": dict(self.by_state)}


class FaceTracker:
    """Registry of tracked faces for a single camera session.

    Call :meth:`set_video_dimensions` once the camera resolution is known and
    then :meth:`process_frame` once per frame. The tracker is not thread-safe;
    frames and mark calls must come from a single consumer.
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        events: Optional[FaceTrackerEvents] = None,
        clock: Clock = wall_clock_ms,
        observer: Optional[TrackObserver] = None,
    ) -> None:
        self.config = config or TrackerConfig()
        self.config.validate()
        self.events = events or FaceTrackerEvents()
        self._clock = clock
        self._observer = observer or LoggingTrackObserver()
        self._faces: Dict[str, TrackedFace] = {}
        self.video_dimensions = VideoDimensions(
            width=self.config.default_video_width,
            height=self.config.default_video_height,
        )

    def set_video_dimensions(self, width: float, height: float) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Video dimensions must be positive, got {width}x{height}")
        if (width, height) != (self.video_dimensions.width, self.video_dimensions.height):
            LOGGER.info("Video dimensions set to %sx%s", width, height)
        self.video_dimensions = VideoDimensions(width=float(width), height=float(height))

    def process_frame(self, detections: Iterable[FaceDetection]) -> List[TrackedFace]:
        """Update tracks with this frame's detections.

        Returns the tracks that are ready for identification after this frame.
        """
        matched_ids: Set[str] = set()
        ready: List[TrackedFace] = []

        for detection in detections:
            exclude = matched_ids if self.config.exclusive_matching else None
            face = self.find_matching_face(detection, exclude=exclude)
            if face is not None:
                was_ready = face.is_ready_for_identification()
                face.update(
                    detection.box,
                    detection.confidence,
                    detection.descriptor,
                    detection.yaw_angle,
                    self.video_dimensions,
                )
                matched_ids.add(face.id)
                if face.is_ready_for_identification():
                    ready.append(face)
                    if not was_ready and self.events.on_face_qualified is not None:
                        self.events.on_face_qualified(face)
            else:
                face = TrackedFace(
                    detection.box,
                    detection.confidence,
                    detection.descriptor,
                    config=self.config,
                    clock=self._clock,
                    observer=self._observer,
                )
                face.update(
                    detection.box,
                    detection.confidence,
                    detection.descriptor,
                    detection.yaw_angle,
                    self.video_dimensions,
                )
                self._faces[face.id] = face
                matched_ids.add(face.id)
                LOGGER.debug("New face %s at %s", face.id[:13], face.box)

        expired = [
            face for face_id, face in self._faces.items() if face_id not in matched_ids and face.is_expired()
        ]
        for face in expired:
            del self._faces[face.id]
            LOGGER.debug("Face %s expired in state %s", face.id[:13], face.state.value)
            if self.events.on_face_expired is not None:
                self.events.on_face_expired(face)

        return ready

    def find_matching_face(
        self,
        detection: FaceDetection,
        exclude: Optional[Set[str]] = None,
    ) -> Optional[TrackedFace]:
        """Greedy nearest-match of a detection against live tracks."""
        cfg = self.config
        best_match: Optional[TrackedFace] = None
        best_score = math.inf

        for face in self._faces.values():
            if exclude and face.id in exclude:
                continue
            if face.is_expired():
                continue
            avg_size = (detection.box.width + face.box.width) / 2.0
            if avg_size <= 0:
                continue
            spatial = center_distance(detection.box, face.box) / avg_size
            if spatial >= cfg.tracking_distance_threshold:
                continue

            if detection.descriptor is not None and face.descriptor is not None:
                descriptor_distance = euclidean_distance(detection.descriptor, face.descriptor)
                score = cfg.spatial_weight * spatial + cfg.descriptor_weight * descriptor_distance
            else:
                score = spatial

            if score < best_score:
                best_score = score
                best_match = face

        return best_match

    def get_face_ready_for_identification(self) -> Optional[TrackedFace]:
        for face in self._faces.values():
            if face.is_ready_for_identification():
                return face
        return None

    def get_face(self, face_id: str) -> Optional[TrackedFace]:
        return self._faces.get(face_id)

    def get_all_faces(self) -> List[TrackedFace]:
        return list(self._faces.values())

    def get_faces_by_state(self, state: FaceState) -> List[TrackedFace]:
        state = FaceState(state)
        return [face for face in self._faces.values() if face.state is state]

    def mark_face_matched(self, face_id: str, user_id: int) -> None:
        face = self._faces.get(face_id)
        if face is None:
            LOGGER.debug("Ignoring match for unknown face %s", face_id)
            return
        face.mark_matched(user_id)
        if self.events.on_face_matched is not None:
            self.events.on_face_matched(face, user_id)

    def mark_face_no_match(self, face_id: str) -> None:
        face = self._faces.get(face_id)
        if face is None:
            LOGGER.debug("Ignoring no-match for unknown face %s", face_id)
            return
        face.mark_no_match()

    def mark_face_attempted(self, face_id: str) -> None:
        face = self._faces.get(face_id)
        if face is None:
            LOGGER.debug("Ignoring attempt for unknown face %s", face_id)
            return
        face.mark_attempted()

    def clear(self) -> None:
        if self._faces:
            LOGGER.info("Clearing %d tracked faces", len(self._faces))
        self._faces.clear()

    def get_stats(self) -> TrackerStats:
        by_state = {state.value: 0 for state in FaceState}
        for face in self._faces.values():
            by_state[face.state.value] += 1
        return TrackerStats(total_faces=len(self._faces), by_state=by_state)

    def __len__(self) -> int:
        return len(self._faces)
