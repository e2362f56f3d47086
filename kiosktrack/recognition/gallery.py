"""Enrolled face gallery: build/load utilities and nearest-neighbour matching."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import cv2
import numpy as np
import pandas as pd

from kiosktrack.config import GalleryConfig
from kiosktrack.io_utils import dump_json, ensure_dir, list_images
from kiosktrack.types import MatchResult, as_descriptor, euclidean_distance

LOGGER = logging.getLogger("kiosktrack.recognition.gallery")


@dataclass
class GalleryEntry:
    user_id: int
    embedding: np.ndarray
    user_name: Optional[str] = None
    count: int = 1


@dataclass
class GalleryArtifacts:
    parquet_path: Path
    meta_json_path: Path


class FaceGallery:
    """In-memory identification backend over enrolled user embeddings.

    The nearest enrolled embedding by Euclidean distance wins; it is reported as
    a match only when the distance is within ``match_threshold``. Confidence
    falls linearly from 1 at distance 0 to 0 at the threshold.
    """

    def __init__(self, entries: Iterable[GalleryEntry] = (), config: Optional[GalleryConfig] = None) -> None:
        self.config = config or GalleryConfig()
        self.config.validate()
        self._entries: Dict[int, GalleryEntry] = {}
        for entry in entries:
            self.enroll(entry.user_id, entry.embedding, user_name=entry.user_name, count=entry.count)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def user_ids(self) -> List[int]:
        return sorted(self._entries)

    def enroll(self, user_id: int, embedding, user_name: Optional[str] = None, count: int = 1) -> None:
        vector = as_descriptor(embedding)
        if vector is None:
            raise ValueError(f"Empty embedding for user {user_id}")
        if not np.all(np.isfinite(vector)):
            raise ValueError(f"Non-finite embedding for user {user_id}")
        self._entries[int(user_id)] = GalleryEntry(int(user_id), vector, user_name, count)

    def remove(self, user_id: int) -> bool:
        return self._entries.pop(int(user_id), None) is not None

    def nearest(self, descriptor: np.ndarray) -> Optional[Tuple[GalleryEntry, float]]:
        best: Optional[Tuple[GalleryEntry, float]] = None
        for entry in self._entries.values():
            distance = euclidean_distance(descriptor, entry.embedding)
            if best is None or distance < best[1]:
                best = (entry, distance)
        return best

    def identify(self, descriptor) -> MatchResult:
        vector = as_descriptor(descriptor)
        if vector is None or not np.all(np.isfinite(vector)):
            LOGGER.warning("Rejecting invalid face descriptor")
            return MatchResult.no_match()
        if not self._entries:
            LOGGER.debug("No enrolled faces found for matching")
            return MatchResult.no_match()

        best = self.nearest(vector)
        if best is None or math.isinf(best[1]):
            LOGGER.debug("No gallery entry comparable with descriptor of length %d", vector.size)
            return MatchResult.no_match()

        entry, distance = best
        threshold = self.config.match_threshold
        if distance <= threshold:
            confidence = max(0.0, 1.0 - distance / threshold)
            LOGGER.info(
                "Face matched user=%s distance=%.3f confidence=%.3f",
                entry.user_id,
                distance,
                confidence,
            )
            return MatchResult(
                matched=True,
                user_id=entry.user_id,
                confidence=confidence,
                distance=distance,
                user_name=entry.user_name,
            )

        LOGGER.debug("No face match within threshold best=%.3f threshold=%.3f", distance, threshold)
        return MatchResult.no_match(distance=distance)


def _parse_user_dir(name: str) -> Tuple[int, Optional[str]]:
    """Split ``<user_id>`` or ``<user_id>_<name>`` directory names."""
    head, _, tail = name.partition("_")
    try:
        user_id = int(head)
    except ValueError as exc:
        raise ValueError(f"Enrollment directory must start with a numeric user id: {name}") from exc
    return user_id, (tail or None)


def _load_image(path: Path) -> np.ndarray:
    image = cv2.imread(str(path))
    if image is None:
        raise FileNotFoundError(f"Unable to read image: {path}")
    return image


def build_gallery(enroll_dir: Path, output_dir: Path, detector) -> GalleryArtifacts:
    """Build per-user mean embeddings from ``enroll_dir/<user_id>[_<name>]/*.jpg``.

    ``detector`` must provide ``largest_face(image) -> Optional[FaceDetection]``.
    Images without a usable face are skipped with a warning.
    """
    ensure_dir(output_dir)
    rows: List[Dict] = []
    skipped: List[str] = []

    for user_dir in sorted(p for p in enroll_dir.iterdir() if p.is_dir()):
        user_id, user_name = _parse_user_dir(user_dir.name)
        embeddings: List[np.ndarray] = []
        for img_path in list_images(user_dir):
            detection = detector.largest_face(_load_image(img_path))
            if detection is None or detection.descriptor is None:
                LOGGER.warning("No usable face in %s", img_path)
                skipped.append(str(img_path))
                continue
            embeddings.append(detection.descriptor)
        if not embeddings:
            LOGGER.warning("User %s has no usable enrollment images", user_id)
            continue
        centroid = np.stack(embeddings, axis=0).mean(axis=0).astype(np.float32)
        rows.append(
            {
                "user_id": user_id,
                "user_name": user_name,
                "count": len(embeddings),
                "embedding": centroid.tolist(),
            }
        )

    if not rows:
        raise RuntimeError(f"No enrollment images found under {enroll_dir}")

    df = pd.DataFrame(rows)
    parquet_path = output_dir / "gallery.parquet"
    meta_json_path = output_dir / "gallery_meta.json"
    df.to_parquet(parquet_path, index=False)

    metadata = {
        "user_ids": df["user_id"].astype(int).tolist(),
        "counts": {str(k): int(v) for k, v in df.set_index("user_id")["count"].items()},
        "num_users": len(df),
        "skipped_images": skipped,
    }
    dump_json(meta_json_path, metadata)

    LOGGER.info("Gallery built: %s users (%s images skipped)", len(df), len(skipped))
    return GalleryArtifacts(parquet_path, meta_json_path)


def load_gallery(parquet_path: Path, config: Optional[GalleryConfig] = None) -> FaceGallery:
    df = pd.read_parquet(parquet_path)
    entries: List[GalleryEntry] = []
    for _, row in df.iterrows():
        user_name = row.get("user_name")
        if isinstance(user_name, float) and math.isnan(user_name):
            user_name = None
        entries.append(
            GalleryEntry(
                user_id=int(row["user_id"]),
                embedding=np.asarray(row["embedding"], dtype=np.float32).reshape(-1),
                user_name=user_name,
                count=int(row.get("count", 1)),
            )
        )
    LOGGER.info("Loaded gallery %s with %d users", parquet_path, len(entries))
    return FaceGallery(entries, config=config)
