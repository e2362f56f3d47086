"""Head yaw estimation from facial landmarks."""

from __future__ import annotations

from typing import Optional

import numpy as np

MAX_ESTIMATED_YAW = 45.0

# 68-point layout (dlib / face-api)
_NOSE_TIP_68 = 30
_LEFT_EYE_OUTER_68 = 36
_RIGHT_EYE_OUTER_68 = 45

# 5-point layout (InsightFace kps): left eye, right eye, nose, mouth left, mouth right
_LEFT_EYE_5 = 0
_RIGHT_EYE_5 = 1
_NOSE_5 = 2


def estimate_yaw_angle(landmarks: Optional[np.ndarray], mirrored: bool = True) -> Optional[float]:
    """Approximate head yaw in degrees from 5- or 68-point landmarks.

    The horizontal offset of the nose tip from the midpoint between the eyes,
    relative to half the eye span, maps linearly onto +/-45 degrees. Kiosk
    previews are usually mirrored, so the sign is flipped by default to keep
    "user turns left" negative. Returns None when the landmarks are unusable.
    """
    if landmarks is None:
        return None
    points = np.asarray(landmarks, dtype=np.float32)
    if points.ndim != 2 or points.shape[1] < 2:
        return None

    if points.shape[0] >= 68:
        nose = points[_NOSE_TIP_68]
        left_eye = points[_LEFT_EYE_OUTER_68]
        right_eye = points[_RIGHT_EYE_OUTER_68]
    elif points.shape[0] == 5:
        nose = points[_NOSE_5]
        left_eye = points[_LEFT_EYE_5]
        right_eye = points[_RIGHT_EYE_5]
    else:
        return None

    eye_span = float(right_eye[0] - left_eye[0])
    if eye_span <= 0:
        return None
    eyes_center_x = float(left_eye[0] + right_eye[0]) / 2.0
    deviation = (float(nose[0]) - eyes_center_x) / (eye_span * 0.5)

    yaw = deviation * MAX_ESTIMATED_YAW
    if mirrored:
        yaw = -yaw
    return float(np.clip(yaw, -MAX_ESTIMATED_YAW, MAX_ESTIMATED_YAW))
