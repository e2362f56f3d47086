from kiosktrack.config import SessionConfig
from kiosktrack.recognition.backend import IdentificationError
from kiosktrack.session import IdentificationSession
from kiosktrack.tracking.face_tracker import FaceTracker
from kiosktrack.tracking.observer import TrackObserver
from kiosktrack.types import FaceBox, FaceDetection, FaceState, ManualClock, MatchResult


class _ScriptedBackend:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def identify(self, descriptor):
        self.calls.append(descriptor)
        result = self.results.pop(0) if self.results else MatchResult.no_match()
        if isinstance(result, Exception):
            raise result
        return result


def _det(x=0.0, descriptor=(0.1, 0.2)):
    return FaceDetection(box=FaceBox(x, 0, 100, 100), confidence=0.9, descriptor=descriptor, yaw_angle=0.0)


def _session(backend, config=None, on_match=None):
    clock = ManualClock()
    tracker = FaceTracker(clock=clock, observer=TrackObserver())
    tracker.set_video_dimensions(640, 480)
    session = IdentificationSession(tracker, backend, config=config, clock=clock, on_match=on_match)
    return session, tracker, clock


def _run(session, clock, start, end, step=16, descriptor=(0.1, 0.2)):
    outcomes = []
    for t in range(start, end, step):
        clock.set(t)
        outcome = session.step([_det(descriptor=descriptor)])
        if outcome is not None:
            outcomes.append(outcome)
    return outcomes


def test_single_attempt_per_ready_face():
    matches = []
    backend = _ScriptedBackend(MatchResult(matched=True, user_id=5, confidence=0.8, distance=0.1))
    session, tracker, clock = _session(backend, on_match=matches.append)

    outcomes = _run(session, clock, 0, 2000)

    assert len(backend.calls) == 1
    assert len(outcomes) == 1
    assert outcomes[0].accepted
    assert outcomes[0].result.user_id == 5
    assert [outcome.face_id for outcome in matches] == [outcomes[0].face_id]
    face = tracker.get_face(outcomes[0].face_id)
    assert face.state is FaceState.SUPPRESSED
    assert face.matched_user_id == 5


def test_no_match_retries_after_short_suppression():
    backend = _ScriptedBackend(MatchResult.no_match(0.9), MatchResult.no_match(0.9))
    session, tracker, clock = _session(backend)

    outcomes = _run(session, clock, 0, 3100)
    assert len(outcomes) == 1
    assert not outcomes[0].accepted

    outcomes += _run(session, clock, 3100, 3200)
    assert len(outcomes) == 2
    assert len(backend.calls) == 2


def test_user_cooldown_suppresses_repeat_callbacks():
    matches = []
    first = MatchResult(matched=True, user_id=5, confidence=0.8, distance=0.1)
    backend = _ScriptedBackend(first, first)
    session, tracker, clock = _session(
        backend, config=SessionConfig(user_cooldown_ms=60000), on_match=matches.append
    )

    _run(session, clock, 0, 500)
    # Same person shows up as a new track once the first one expires.
    tracker.clear()
    outcomes = _run(session, clock, 1000, 1500)

    assert len(backend.calls) == 2
    assert len(matches) == 1
    assert not outcomes[0].accepted
    assert session.in_cooldown(5)


def test_low_confidence_match_is_reported_as_no_match():
    backend = _ScriptedBackend(MatchResult(matched=True, user_id=5, confidence=0.1, distance=0.55))
    session, tracker, clock = _session(backend)

    outcomes = _run(session, clock, 0, 500)

    assert not outcomes[0].accepted
    face = tracker.get_face(outcomes[0].face_id)
    assert face.state is FaceState.SUPPRESSED
    assert face.matched_user_id is None


def test_backend_error_recovers_via_no_match():
    backend = _ScriptedBackend(IdentificationError("backend offline"))
    session, tracker, clock = _session(backend)

    outcomes = _run(session, clock, 0, 500)

    assert outcomes[0].error == "backend offline"
    assert tracker.get_face(outcomes[0].face_id).state is FaceState.SUPPRESSED


def test_rate_limit_blocks_attempts():
    backend = _ScriptedBackend()
    session, tracker, clock = _session(
        backend, config=SessionConfig(rate_limit_max_requests=1, rate_limit_window_ms=60000)
    )

    _run(session, clock, 0, 5000)

    assert len(backend.calls) == 1
    # Rate-limited face stays qualified, waiting for the next window.
    assert tracker.get_face_ready_for_identification() is not None


def test_reset_clears_tracks_and_cooldowns():
    backend = _ScriptedBackend(MatchResult(matched=True, user_id=5, confidence=0.8, distance=0.1))
    session, tracker, clock = _session(backend)
    _run(session, clock, 0, 500)

    session.reset()

    assert tracker.get_all_faces() == []
    assert not session.in_cooldown(5)


def test_outcome_serializes_infinite_distance_as_none():
    backend = _ScriptedBackend(MatchResult.no_match())
    session, _, clock = _session(backend)
    outcome = _run(session, clock, 0, 500)[0]
    payload = outcome.to_dict()
    assert payload["distance"] is None
    assert payload["matched"] is False


def test_recreated_unknown_face_is_not_requeried():
    backend = _ScriptedBackend()
    session, tracker, clock = _session(backend, config=SessionConfig(uncertain_query_cooldown_ms=0))

    _run(session, clock, 0, 500)
    assert len(backend.calls) == 1

    # The unknown person's track is dropped and a new one appears.
    tracker.clear()
    assert _run(session, clock, 1000, 1500) == []
    assert len(backend.calls) == 1
    assert tracker.get_face_ready_for_identification() is not None

    tracker.clear()
    outcomes = _run(session, clock, 1500, 2000, descriptor=(1.0, 1.0))
    assert len(outcomes) == 1
    assert len(backend.calls) == 2


def test_uncertain_cooldown_spaces_out_no_match_queries():
    backend = _ScriptedBackend()
    session, tracker, clock = _session(backend)

    _run(session, clock, 0, 500)
    tracker.clear()
    assert _run(session, clock, 1000, 1500, descriptor=(1.0, 1.0)) == []
    assert session.in_uncertain_cooldown()

    tracker.clear()
    outcomes = _run(session, clock, 3200, 3500, descriptor=(1.0, 1.0))
    assert len(outcomes) == 1
    assert len(backend.calls) == 2


def test_match_clears_uncertain_cooldown():
    backend = _ScriptedBackend(
        MatchResult.no_match(0.9),
        MatchResult(matched=True, user_id=5, confidence=0.8, distance=0.1),
    )
    session, tracker, clock = _session(backend, config=SessionConfig(uncertain_query_cooldown_ms=0))

    _run(session, clock, 0, 500)
    tracker.clear()
    _run(session, clock, 1000, 1500, descriptor=(1.0, 1.0))

    assert len(backend.calls) == 2
    assert not session.in_uncertain_cooldown()


def test_reset_forgets_unmatched_faces():
    backend = _ScriptedBackend()
    session, tracker, clock = _session(backend)
    _run(session, clock, 0, 500)

    session.reset()
    outcomes = _run(session, clock, 1000, 1500)

    assert len(outcomes) == 1
    assert len(backend.calls) == 2
    assert len(session.unmatched_cache) == 1
