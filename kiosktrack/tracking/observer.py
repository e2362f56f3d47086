"""Diagnostic observers notified when a tracked face's status changes."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

LOGGER = logging.getLogger("kiosktrack.tracking.face")


def short_id(face_id: str) -> str:
    return face_id[:13]


class TrackObserver:
    """No-op base observer. Subclass and override the hooks you need."""

    def on_eligibility_changed(self, face_id: str, eligible: bool, reasons: List[str]) -> None:
        return None

    def on_stability_changed(self, face_id: str, stable: bool, reason: str) -> None:
        return None

    def on_qualification_changed(self, face_id: str, qualified: bool, reason: str) -> None:
        return None


class LoggingTrackObserver(TrackObserver):
    """Writes status changes to the ``kiosktrack.tracking.face`` logger."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or LOGGER

    def on_eligibility_changed(self, face_id: str, eligible: bool, reasons: List[str]) -> None:
        if eligible:
            self.logger.info("Face %s now ELIGIBLE", short_id(face_id))
        else:
            self.logger.info("Face %s NOT ELIGIBLE: %s", short_id(face_id), "; ".join(reasons))

    def on_stability_changed(self, face_id: str, stable: bool, reason: str) -> None:
        if stable:
            self.logger.debug("Face %s now STABLE", short_id(face_id))
        else:
            self.logger.info("Face %s UNSTABLE: %s", short_id(face_id), reason)

    def on_qualification_changed(self, face_id: str, qualified: bool, reason: str) -> None:
        if qualified:
            self.logger.info("Face %s QUALIFIED for identification", short_id(face_id))
        else:
            self.logger.debug("Face %s not qualified: %s", short_id(face_id), reason)


class RecordingTrackObserver(TrackObserver):
    """Keeps every notification in memory; handy for tests and event dumps."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, str, object, object]] = []

    def on_eligibility_changed(self, face_id: str, eligible: bool, reasons: List[str]) -> None:
        self.events.append(("eligibility", face_id, eligible, list(reasons)))

    def on_stability_changed(self, face_id: str, stable: bool, reason: str) -> None:
        self.events.append(("stability", face_id, stable, reason))

    def on_qualification_changed(self, face_id: str, qualified: bool, reason: str) -> None:
        self.events.append(("qualification", face_id, qualified, reason))

    def of_kind(self, kind: str) -> List[Tuple[str, str, object, object]]:
        return [event for event in self.events if event[0] == kind]
