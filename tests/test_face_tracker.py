import numpy as np
import pytest

from kiosktrack.config import TrackerConfig
from kiosktrack.tracking.face_tracker import FaceTracker, FaceTrackerEvents
from kiosktrack.tracking.observer import TrackObserver
from kiosktrack.types import FaceBox, FaceDetection, FaceState, ManualClock


def _det(x=0.0, y=0.0, size=100.0, confidence=0.9, descriptor=(1.0, 2.0, 3.0), yaw=0.0):
    return FaceDetection(
        box=FaceBox(x, y, size, size),
        confidence=confidence,
        descriptor=descriptor,
        yaw_angle=yaw,
    )


def _tracker(clock, config=None, events=None):
    tracker = FaceTracker(config=config, events=events, clock=clock, observer=TrackObserver())
    tracker.set_video_dimensions(640, 480)
    return tracker


def _run_until_ready(tracker, clock, detection=None, start=0, step=16, limit=1000):
    for t in range(start, start + limit, step):
        clock.set(t)
        ready = tracker.process_frame([detection or _det()])
        if ready:
            return t, ready
    raise AssertionError("face never became ready")


def test_stable_face_becomes_ready_after_window():
    clock = ManualClock()
    tracker = _tracker(clock)

    results = {}
    for t in range(0, 201, 16):
        clock.set(t)
        results[t] = tracker.process_frame([_det()])

    first_ready = min(t for t, ready in results.items() if ready)
    assert first_ready == 112
    assert all(not results[t] for t in results if t < 112)
    ids = {ready[0].id for t, ready in results.items() if t >= 112}
    assert len(ids) == 1
    assert all(results[t] for t in results if t >= 112)
    assert len(tracker.get_all_faces()) == 1


def test_small_face_never_ready():
    clock = ManualClock()
    tracker = _tracker(clock)
    for t in range(0, 3000, 16):
        clock.set(t)
        assert tracker.process_frame([_det(size=20.0)]) == []
    assert tracker.get_face_ready_for_identification() is None


def test_turned_head_never_ready():
    clock = ManualClock()
    tracker = _tracker(clock)
    for t in range(0, 1000, 16):
        clock.set(t)
        assert tracker.process_frame([_det(yaw=40.0)]) == []


def test_match_then_reappear_after_suppression():
    clock = ManualClock()
    tracker = _tracker(clock)
    t_ready, ready = _run_until_ready(tracker, clock)
    face_id = ready[0].id

    tracker.mark_face_attempted(face_id)
    tracker.mark_face_matched(face_id, 42)
    assert tracker.process_frame([_det()]) == []

    for t in range(t_ready + 500, t_ready + 10000, 500):
        clock.set(t)
        assert tracker.process_frame([_det()]) == []

    clock.set(t_ready + 10001)
    ready = tracker.process_frame([_det()])
    assert [face.id for face in ready] == [face_id]
    assert tracker.get_face(face_id).matched_user_id == 42


def test_nearby_detections_merge_into_one_track():
    clock = ManualClock()
    tracker = _tracker(clock)

    tracker.process_frame([_det(0, 0)])
    first_id = tracker.get_all_faces()[0].id
    clock.set(16)
    tracker.process_frame([_det(20, 10)])

    faces = tracker.get_all_faces()
    assert len(faces) == 1
    assert faces[0].id == first_id
    assert faces[0].box.x == 20


def test_distant_detection_creates_new_track():
    clock = ManualClock()
    tracker = _tracker(clock)
    tracker.process_frame([_det(0, 0), _det(300, 0)])
    assert len(tracker.get_all_faces()) == 2


def test_descriptor_similarity_breaks_spatial_ties():
    clock = ManualClock()
    tracker = _tracker(clock)
    tracker.process_frame([_det(0, 0, descriptor=(0.0, 0.0, 0.0)), _det(60, 0, descriptor=(1.0, 1.0, 1.0))])
    face_a, face_b = tracker.get_all_faces()

    assert tracker.find_matching_face(_det(25, 0, descriptor=(1.0, 1.0, 1.0))) is face_b
    assert tracker.find_matching_face(_det(25, 0, descriptor=None)) is face_a


def test_expired_faces_removed_even_without_detections():
    clock = ManualClock()
    tracker = _tracker(clock)
    tracker.process_frame([_det()])

    clock.set(2000)
    tracker.process_frame([])
    assert len(tracker.get_all_faces()) == 1

    clock.set(2001)
    tracker.process_frame([])
    assert tracker.get_all_faces() == []


def test_stale_track_is_not_matched():
    clock = ManualClock()
    tracker = _tracker(clock)
    tracker.process_frame([_det()])
    old_id = tracker.get_all_faces()[0].id

    clock.set(2500)
    tracker.process_frame([_det()])

    faces = tracker.get_all_faces()
    assert len(faces) == 1
    assert faces[0].id != old_id


def test_greedy_matching_can_merge_simultaneous_faces():
    clock = ManualClock()
    tracker = _tracker(clock)
    tracker.process_frame([_det(0, 0)])

    clock.set(16)
    tracker.process_frame([_det(10, 0), _det(25, 0)])
    assert len(tracker.get_all_faces()) == 1


def test_exclusive_matching_keeps_simultaneous_faces_apart():
    clock = ManualClock()
    tracker = _tracker(clock, config=TrackerConfig(exclusive_matching=True))
    tracker.process_frame([_det(0, 0)])

    clock.set(16)
    tracker.process_frame([_det(10, 0), _det(25, 0)])
    assert len(tracker.get_all_faces()) == 2


def test_attempted_face_kept_until_hard_timeout():
    clock = ManualClock()
    tracker = _tracker(clock)
    t_ready, ready = _run_until_ready(tracker, clock)
    face_id = ready[0].id
    tracker.mark_face_attempted(face_id)

    clock.set(t_ready + 5000)
    tracker.process_frame([])
    assert tracker.get_face(face_id) is not None

    clock.set(t_ready + 15001)
    tracker.process_frame([])
    assert tracker.get_face(face_id) is None

    # Late results for dropped faces are ignored.
    tracker.mark_face_matched(face_id, 1)
    tracker.mark_face_no_match(face_id)
    tracker.mark_face_attempted(face_id)


def test_stats_and_state_queries():
    clock = ManualClock()
    tracker = _tracker(clock)
    _, ready = _run_until_ready(tracker, clock)
    tracker.process_frame([_det(), _det(400, 0)])
    tracker.mark_face_no_match(ready[0].id)

    stats = tracker.get_stats()
    assert stats.total_faces == 2
    assert stats.by_state["suppressed"] == 1
    assert stats.by_state["detected"] == 1
    assert stats.by_state["expired"] == 0
    assert [face.id for face in tracker.get_faces_by_state(FaceState.SUPPRESSED)] == [ready[0].id]
    assert len(tracker.get_faces_by_state("detected")) == 1

    tracker.clear()
    assert tracker.get_stats().total_faces == 0


def test_events_fire_on_qualify_match_and_expiry():
    clock = ManualClock()
    qualified, matched, expired = [], [], []
    events = FaceTrackerEvents(
        on_face_qualified=qualified.append,
        on_face_expired=expired.append,
        on_face_matched=lambda face, user_id: matched.append((face.id, user_id)),
    )
    tracker = _tracker(clock, events=events)
    t_ready, ready = _run_until_ready(tracker, clock)
    clock.set(t_ready + 16)
    tracker.process_frame([_det()])
    assert [face.id for face in qualified] == [ready[0].id]

    tracker.mark_face_matched(ready[0].id, 9)
    assert matched == [(ready[0].id, 9)]

    clock.set(t_ready + 5000)
    tracker.process_frame([])
    assert [face.id for face in expired] == [ready[0].id]


def test_invalid_video_dimensions_rejected():
    tracker = FaceTracker(clock=ManualClock(), observer=TrackObserver())
    with pytest.raises(ValueError):
        tracker.set_video_dimensions(0, 480)


def test_video_dimensions_drive_size_ratio():
    clock = ManualClock()
    tracker = _tracker(clock)
    tracker.set_video_dimensions(1920, 1080)
    # 100px is ~5.2% of a 1920px frame, below the 6% minimum.
    for t in range(0, 500, 16):
        clock.set(t)
        assert tracker.process_frame([_det()]) == []


def test_stored_descriptor_is_independent_of_detector_buffer():
    clock = ManualClock()
    tracker = _tracker(clock)
    buffer = np.array([1.0, 2.0, 3.0], dtype=np.float32)

    tracker.process_frame([_det(descriptor=buffer)])
    buffer[:] = 9.0

    face = tracker.get_all_faces()[0]
    assert face.descriptor.tolist() == [1.0, 2.0, 3.0]
