#!/usr/bin/env python3
"""CLI for building the enrolled face gallery."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from kiosktrack.detectors.face_insight import InsightFaceDetector
from kiosktrack.io_utils import ensure_dir, setup_logging
from kiosktrack.recognition.gallery import GalleryArtifacts, build_gallery


LOGGER = logging.getLogger("scripts.gallery")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build gallery embeddings for kiosk identification")
    parser.add_argument(
        "--enroll-dir",
        type=Path,
        default=Path("data/enroll"),
        help="Directory with one <user_id>[_<name>] subdirectory of photos per user",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("data"),
        help="Directory where gallery artifacts will be written",
    )
    parser.add_argument(
        "--providers",
        type=str,
        nargs="*",
        default=None,
        help="Execution providers for ONNXRuntime (e.g. CUDAExecutionProvider)",
    )
    parser.add_argument("--det-thresh", type=float, default=0.5, help="Minimum detector score for enrollment")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging()

    if not args.enroll_dir.is_dir():
        raise SystemExit(f"Enrollment directory not found: {args.enroll_dir}")

    # Enrollment photos are not mirrored and yaw is irrelevant here.
    detector = InsightFaceDetector(providers=args.providers, det_thresh=args.det_thresh, mirrored=False)
    ensure_dir(args.output_dir)

    artifacts: GalleryArtifacts = build_gallery(
        enroll_dir=args.enroll_dir,
        output_dir=args.output_dir,
        detector=detector,
    )

    LOGGER.info("Gallery built: parquet=%s meta=%s", artifacts.parquet_path, artifacts.meta_json_path)


if __name__ == "__main__":
    main()
