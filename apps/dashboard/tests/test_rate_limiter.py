import pytest

from services.rate_limiter import FixedWindowRateLimiter


def test_first_requests_up_to_limit_are_allowed():
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=3)
    decisions = [limiter.check("esp32", now=1000.0 + i) for i in range(3)]
    assert all(decision.allowed for decision in decisions)
    assert [decision.remaining for decision in decisions] == [2, 1, 0]


def test_request_over_limit_is_rejected_with_retry_guidance():
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=2)
    limiter.check("esp32", now=1000.0)
    limiter.check("esp32", now=1001.0)

    rejected = limiter.check("esp32", now=1010.0)
    assert rejected.allowed is False
    assert rejected.remaining == 0
    assert rejected.retry_after_seconds == 50
    assert rejected.headers() == {
        "X-RateLimit-Limit": "2",
        "X-RateLimit-Remaining": "0",
        "Retry-After": "50",
    }


def test_window_expiry_starts_fresh_count():
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=1)
    assert limiter.check("esp32", now=1000.0).allowed
    assert not limiter.check("esp32", now=1030.0).allowed

    # The window closes strictly after its reset instant.
    assert not limiter.check("esp32", now=1060.0).allowed
    renewed = limiter.check("esp32", now=1060.5)
    assert renewed.allowed
    entry = limiter.snapshot("esp32")
    assert entry is not None
    assert entry.count == 1
    assert entry.window_reset_at == pytest.approx(1120.5)


def test_keys_are_counted_independently():
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=1)
    assert limiter.check("a", now=0.0).allowed
    assert limiter.check("b", now=0.0).allowed
    assert not limiter.check("a", now=1.0).allowed


def test_allowed_decision_omits_retry_after():
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=5)
    headers = limiter.check("esp32", now=0.0).headers()
    assert headers == {"X-RateLimit-Limit": "5", "X-RateLimit-Remaining": "4"}


def test_clear_forgets_all_windows():
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=1)
    limiter.check("esp32", now=0.0)
    limiter.clear()
    assert limiter.snapshot("esp32") is None
    assert limiter.check("esp32", now=1.0).allowed


@pytest.mark.parametrize("kwargs", [{"window_seconds": 0}, {"max_requests": 0}])
def test_invalid_configuration_is_rejected(kwargs):
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(**kwargs)
