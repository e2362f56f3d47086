"""Identification session: closes the detect -> identify -> mark loop."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from kiosktrack.config import SessionConfig
from kiosktrack.recognition.backend import IdentificationBackend, IdentificationError
from kiosktrack.recognition.rate_limit import WindowRateLimiter
from kiosktrack.recognition.unmatched_cache import UnmatchedDescriptorCache
from kiosktrack.tracking.face_tracker import FaceTracker
from kiosktrack.types import Clock, FaceDetection, MatchResult, wall_clock_ms

LOGGER = logging.getLogger("kiosktrack.session")


@dataclass
class IdentificationOutcome:
    face_id: str
    timestamp_ms: float
    result: MatchResult
    # False when the match was suppressed by the per-user cooldown or low confidence
    accepted: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "face_id": self.face_id,
            "timestamp_ms": self.timestamp_ms,
            "matched": self.result.matched,
            "user_id": self.result.user_id,
            "user_name": self.result.user_name,
            "confidence": self.result.confidence,
            "distance": None if self.result.distance == float("inf") else self.result.distance,
            "accepted": self.accepted,
            "error": self.error,
        }


class IdentificationSession:
    """Drives a :class:`FaceTracker` and an identification backend for one kiosk.

    :meth:`step` is meant to be called once per camera frame from a single
    loop. At most one identification request is issued per frame and the
    backend is called synchronously, so the tracker never sees concurrent
    frame and mark calls.
    """

    def __init__(
        self,
        tracker: FaceTracker,
        backend: IdentificationBackend,
        config: Optional[SessionConfig] = None,
        clock: Clock = wall_clock_ms,
        on_match: Optional[Callable[[IdentificationOutcome], None]] = None,
        device_key: str = "kiosk",
    ) -> None:
        self.tracker = tracker
        self.backend = backend
        self.config = config or SessionConfig()
        self.config.validate()
        self._clock = clock
        self.on_match = on_match
        self.device_key = device_key
        self.rate_limiter = WindowRateLimiter(
            max_requests=self.config.rate_limit_max_requests,
            window_ms=self.config.rate_limit_window_ms,
        )
        self.unmatched_cache = UnmatchedDescriptorCache(
            max_size=self.config.similar_face_cache_size,
            ttl_ms=self.config.similar_face_ttl_ms,
            similarity_threshold=self.config.similar_face_threshold,
        )
        self._cooldown_until: Dict[int, float] = {}
        self._last_uncertain_at: Optional[float] = None

    def step(self, detections: Iterable[FaceDetection]) -> Optional[IdentificationOutcome]:
        """Process one frame and run at most one identification attempt."""
        ready = self.tracker.process_frame(detections)
        if not ready:
            return None
        face = ready[0]
        now = self._clock()
        if self.unmatched_cache.is_similar(face.descriptor, now):
            return None
        if self.in_uncertain_cooldown(now):
            LOGGER.debug("Waiting for uncertain-query cooldown before querying face %s", face.id[:13])
            return None
        if not self.rate_limiter.allow(self.device_key, now):
            return None

        self.tracker.mark_face_attempted(face.id)
        try:
            result = self.backend.identify(face.descriptor)
        except IdentificationError as exc:
            LOGGER.warning("Identification failed for face %s: %s", face.id[:13], exc)
            self.tracker.mark_face_no_match(face.id)
            return IdentificationOutcome(face.id, now, MatchResult.no_match(), accepted=False, error=str(exc))
        return self.report(face.id, result)

    def report(self, face_id: str, result: MatchResult) -> IdentificationOutcome:
        """Feed a backend result into the tracker and apply per-user cooldown."""
        now = self._clock()
        if not result.matched or result.user_id is None:
            face = self.tracker.get_face(face_id)
            if face is not None and face.descriptor is not None:
                self.unmatched_cache.add(face.descriptor, now)
            self._last_uncertain_at = now
            self.tracker.mark_face_no_match(face_id)
            LOGGER.info("No match for face %s (distance=%.3f)", face_id[:13], result.distance)
            return IdentificationOutcome(face_id, now, result, accepted=False)

        self._last_uncertain_at = None
        if result.confidence < self.config.min_match_confidence:
            LOGGER.info(
                "Face %s matched user %s but confidence %.3f < %.3f",
                face_id[:13],
                result.user_id,
                result.confidence,
                self.config.min_match_confidence,
            )
            self.tracker.mark_face_no_match(face_id)
            return IdentificationOutcome(face_id, now, result, accepted=False)

        self.tracker.mark_face_matched(face_id, result.user_id)
        if self.in_cooldown(result.user_id, now):
            LOGGER.info("User %s is in cooldown, skipping callback", result.user_id)
            return IdentificationOutcome(face_id, now, result, accepted=False)

        self._cooldown_until[result.user_id] = now + self.config.user_cooldown_ms
        outcome = IdentificationOutcome(face_id, now, result, accepted=True)
        LOGGER.info(
            "Face %s identified as user %s (confidence=%.3f)",
            face_id[:13],
            result.user_id,
            result.confidence,
        )
        if self.on_match is not None:
            self.on_match(outcome)
        return outcome

    def in_cooldown(self, user_id: int, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        until = self._cooldown_until.get(user_id)
        if until is None:
            return False
        if now >= until:
            del self._cooldown_until[user_id]
            return False
        return True

    def in_uncertain_cooldown(self, now: Optional[float] = None) -> bool:
        """True while the last no-match is more recent than the uncertain-query cooldown."""
        if self._last_uncertain_at is None:
            return False
        now = self._clock() if now is None else now
        return now - self._last_uncertain_at < self.config.uncertain_query_cooldown_ms

    def reset(self) -> None:
        """Drop all tracks, cooldowns and cached no-matches, e.g. when the camera disconnects."""
        self.tracker.clear()
        self._cooldown_until.clear()
        self._last_uncertain_at = None
        self.unmatched_cache.clear()
        self.rate_limiter.reset()
