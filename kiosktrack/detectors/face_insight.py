"""InsightFace detection + recognition adapter producing tracker detections."""

from __future__ import annotations

import logging
import os
import platform
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from kiosktrack.detectors.pose import estimate_yaw_angle
from kiosktrack.types import FaceBox, FaceDetection, as_descriptor, l2_normalize

LOGGER = logging.getLogger("kiosktrack.detectors.face")


def _default_providers() -> Tuple[str, ...]:
    """Choose default ONNX providers for InsightFace."""
    system = platform.system()
    machine = platform.machine().lower()
    if system == "Darwin" and machine in {"arm64", "aarch64"}:
        return ("CoreMLExecutionProvider", "CPUExecutionProvider")
    return ("CPUExecutionProvider",)


def to_tracker_detection(face: Any, mirrored: bool = True) -> Optional[FaceDetection]:
    """Convert one InsightFace ``Face`` result into a :class:`FaceDetection`.

    Returns None when the result carries no bounding box.
    """
    bbox = getattr(face, "bbox", None)
    if bbox is None:
        return None
    x1, y1, x2, y2 = (float(v) for v in bbox[:4])
    kps = getattr(face, "kps", None)
    landmarks = np.asarray(kps, dtype=np.float32) if kps is not None else None
    embedding = getattr(face, "normed_embedding", None)
    if embedding is None and getattr(face, "embedding", None) is not None:
        embedding = l2_normalize(np.asarray(face.embedding, dtype=np.float32))
    return FaceDetection(
        box=FaceBox.from_xyxy(x1, y1, x2, y2),
        confidence=float(getattr(face, "det_score", 0.0)),
        descriptor=as_descriptor(embedding),
        yaw_angle=estimate_yaw_angle(landmarks, mirrored=mirrored),
    )


class InsightFaceDetector:
    """Wrapper around InsightFace ``FaceAnalysis`` with detection and recognition."""

    def __init__(
        self,
        providers: Optional[Sequence[str]] = None,
        det_size: Tuple[int, int] = (640, 640),
        det_thresh: float = 0.35,
        model_name: str = "buffalo_l",
        mirrored: bool = True,
    ) -> None:
        os.environ.setdefault("OMP_NUM_THREADS", "2")
        os.environ.setdefault("MKL_NUM_THREADS", "2")
        os.environ.setdefault("ORT_INTRA_OP_NUM_THREADS", "2")
        try:
            from insightface.app import FaceAnalysis
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "insightface is required for InsightFaceDetector. "
                "Install it via `pip install insightface`."
            ) from exc

        self.det_size = det_size
        self.det_thresh = det_thresh
        self.mirrored = mirrored
        provider_list: Tuple[str, ...]
        if providers is None:
            provider_list = _default_providers()
        else:
            provider_list = tuple(providers)
        self.providers = provider_list
        self.app = FaceAnalysis(
            name=model_name,
            allowed_modules=["detection", "recognition"],
            providers=list(provider_list),
        )
        self.app.prepare(ctx_id=0, det_size=self.det_size)
        LOGGER.info(
            "Loaded InsightFace detector model=%s det_size=%s det_thresh=%.2f providers=%s",
            model_name,
            det_size,
            det_thresh,
            provider_list,
        )

    def detect(self, image: np.ndarray) -> List[FaceDetection]:
        """Run detection and embedding on a BGR frame."""
        detections: List[FaceDetection] = []
        for face in self.app.get(image):
            if float(face.det_score) < self.det_thresh:
                continue
            detection = to_tracker_detection(face, mirrored=self.mirrored)
            if detection is not None:
                detections.append(detection)
        return detections

    def largest_face(self, image: np.ndarray) -> Optional[FaceDetection]:
        """Return the biggest detected face, used for enrollment photos."""
        detections = self.detect(image)
        if not detections:
            return None
        return max(detections, key=lambda det: det.box.width * det.box.height)
