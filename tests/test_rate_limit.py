import pytest

from kiosktrack.recognition.rate_limit import WindowRateLimiter


def test_limit_within_window_and_reset_after():
    limiter = WindowRateLimiter(max_requests=2, window_ms=1000)
    assert limiter.allow("kiosk", 0)
    assert limiter.allow("kiosk", 100)
    assert not limiter.allow("kiosk", 900)
    assert limiter.remaining("kiosk", 900) == 0
    # Window measured from its first request
    assert not limiter.allow("kiosk", 1000)
    assert limiter.allow("kiosk", 1001)


def test_keys_are_independent():
    limiter = WindowRateLimiter(max_requests=1, window_ms=1000)
    assert limiter.allow("a", 0)
    assert limiter.allow("b", 0)
    assert not limiter.allow("a", 10)


def test_invalid_settings_raise():
    with pytest.raises(ValueError):
        WindowRateLimiter(max_requests=0)
    with pytest.raises(ValueError):
        WindowRateLimiter(window_ms=0)
