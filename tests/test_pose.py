import numpy as np
import pytest

from kiosktrack.detectors.pose import estimate_yaw_angle


def _five_point(nose_x):
    return np.array(
        [
            [40.0, 50.0],
            [80.0, 50.0],
            [nose_x, 70.0],
            [45.0, 90.0],
            [75.0, 90.0],
        ],
        dtype=np.float32,
    )


def test_frontal_face_has_zero_yaw():
    assert estimate_yaw_angle(_five_point(60.0)) == pytest.approx(0.0)


def test_mirrored_sign_flips():
    # Nose 5px right of the eye midpoint on a 40px eye span -> deviation 0.25
    assert estimate_yaw_angle(_five_point(65.0)) == pytest.approx(-11.25)
    assert estimate_yaw_angle(_five_point(65.0), mirrored=False) == pytest.approx(11.25)


def test_yaw_is_clamped():
    assert estimate_yaw_angle(_five_point(200.0), mirrored=False) == pytest.approx(45.0)


def test_sixty_eight_point_layout():
    points = np.zeros((68, 2), dtype=np.float32)
    points[36] = (30.0, 40.0)
    points[45] = (90.0, 40.0)
    points[30] = (60.0, 60.0)
    assert estimate_yaw_angle(points) == pytest.approx(0.0)
    points[30] = (45.0, 60.0)
    assert estimate_yaw_angle(points, mirrored=False) == pytest.approx(-22.5)


def test_degenerate_landmarks_return_none():
    assert estimate_yaw_angle(None) is None
    assert estimate_yaw_angle(np.zeros((3, 2))) is None
    flipped = _five_point(60.0)
    flipped[[0, 1]] = flipped[[1, 0]]
    assert estimate_yaw_angle(flipped) is None
