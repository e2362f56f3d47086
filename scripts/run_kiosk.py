#!/usr/bin/env python3
"""CLI for running the kiosk face tracking + identification loop on a camera or video."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Union

import cv2

from kiosktrack.config import KioskConfig, load_config
from kiosktrack.detectors.face_insight import InsightFaceDetector
from kiosktrack.io_utils import dump_json, ensure_dir, setup_logging
from kiosktrack.recognition.gallery import load_gallery
from kiosktrack.session import IdentificationOutcome, IdentificationSession
from kiosktrack.tracking.face_tracker import FaceTracker, FaceTrackerEvents
from kiosktrack.types import Clock, ManualClock, wall_clock_ms


LOGGER = logging.getLogger("scripts.run_kiosk")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run kiosk face tracking and identification")
    parser.add_argument("source", type=str, help="Camera index (e.g. 0) or path to a video file")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Kiosk configuration YAML (tracker/session/gallery sections)",
    )
    parser.add_argument(
        "--gallery-parquet",
        type=Path,
        default=Path("data/gallery.parquet"),
        help="Enrolled gallery built with kiosk-enroll",
    )
    parser.add_argument(
        "--providers",
        type=str,
        nargs="*",
        default=None,
        help="ONNX execution providers (overrides platform defaults)",
    )
    parser.add_argument("--det-thresh", type=float, default=None, help="Minimum detector score")
    parser.add_argument("--match-threshold", type=float, default=None, help="Gallery distance threshold")
    parser.add_argument(
        "--no-mirror",
        dest="mirrored",
        action="store_false",
        help="Source is not mirrored (keeps yaw sign as seen by the camera)",
    )
    parser.add_argument("--max-frames", type=int, default=None, help="Stop after N frames")
    parser.add_argument(
        "--stats-every",
        type=int,
        default=150,
        help="Log tracker stats every N frames (0 disables)",
    )
    parser.add_argument("--events-json", type=Path, default=None, help="Write identification outcomes here")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def resolve_source(source: str) -> Union[int, str]:
    """Camera indices are passed as integers, anything else is a file path."""
    try:
        return int(source)
    except ValueError:
        return source


def apply_overrides(args: argparse.Namespace, config: KioskConfig) -> KioskConfig:
    if args.match_threshold is not None:
        config.gallery.match_threshold = args.match_threshold
        config.gallery.validate()
    return config


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    config = apply_overrides(args, load_config(args.config))
    source = resolve_source(args.source)
    cap = cv2.VideoCapture(source)
    if not cap.isOpened():
        raise RuntimeError(f"Unable to open video source {args.source}")

    # Video files replay on their own timeline; live cameras use the wall clock.
    replay = isinstance(source, str)
    fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
    clock: Clock = ManualClock() if replay else wall_clock_ms

    detector_kwargs = {"providers": args.providers, "mirrored": args.mirrored}
    if args.det_thresh is not None:
        detector_kwargs["det_thresh"] = args.det_thresh
    detector = InsightFaceDetector(**detector_kwargs)
    gallery = load_gallery(args.gallery_parquet, config=config.gallery)

    events = FaceTrackerEvents(
        on_face_expired=lambda face: LOGGER.debug("Face %s left the scene", face.id[:13]),
    )
    tracker = FaceTracker(config=config.tracker, events=events, clock=clock)
    width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
    height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
    if width > 0 and height > 0:
        tracker.set_video_dimensions(width, height)

    outcomes: List[IdentificationOutcome] = []
    session = IdentificationSession(tracker, gallery, config=config.session, clock=clock)

    LOGGER.info(
        "Running kiosk source=%s fps=%.2f size=%dx%d gallery_users=%d replay=%s",
        args.source,
        fps,
        width,
        height,
        len(gallery),
        replay,
    )

    frame_idx = -1
    try:
        while args.max_frames is None or frame_idx + 1 < args.max_frames:
            ret, frame = cap.read()
            if not ret:
                break
            frame_idx += 1
            if isinstance(clock, ManualClock):
                clock.set(frame_idx / fps * 1000.0)
            frame_h, frame_w = frame.shape[:2]
            if (frame_w, frame_h) != (tracker.video_dimensions.width, tracker.video_dimensions.height):
                tracker.set_video_dimensions(frame_w, frame_h)

            outcome = session.step(detector.detect(frame))
            if outcome is not None:
                outcomes.append(outcome)
                if outcome.accepted:
                    LOGGER.info(
                        "Frame %d: user %s (%s) confidence=%.3f",
                        frame_idx,
                        outcome.result.user_id,
                        outcome.result.user_name or "-",
                        outcome.result.confidence,
                    )

            if args.stats_every and frame_idx % args.stats_every == 0:
                LOGGER.info("Frame %d tracker stats: %s", frame_idx, tracker.get_stats().to_dict())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted after %d frames", frame_idx + 1)
    finally:
        cap.release()
        session.reset()

    accepted = sum(1 for outcome in outcomes if outcome.accepted)
    LOGGER.info(
        "Processed %d frames: %d identification attempts, %d accepted matches",
        frame_idx + 1,
        len(outcomes),
        accepted,
    )
    if args.events_json is not None:
        ensure_dir(args.events_json.parent)
        dump_json(args.events_json, [outcome.to_dict() for outcome in outcomes])
        LOGGER.info("Wrote identification events to %s", args.events_json)


if __name__ == "__main__":
    main()
