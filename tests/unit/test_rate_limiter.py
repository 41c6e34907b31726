"""
Unit tests for RateLimiter.
"""
import pytest

from services.models import PipelineStats
from utils.rate_limiter import RateLimiter


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stats():
    return PipelineStats()


@pytest.fixture
def limiter(clock, stats):
    return RateLimiter(window_seconds=60, max_requests=5, stats=stats, clock=clock)


@pytest.mark.unit
class TestRateLimiter:
    """Test cases for RateLimiter."""

    def test_accepts_up_to_limit(self, limiter):
        """Test that the first MAX_REQUESTS checks are accepted."""
        results = [limiter.is_limited(1) for _ in range(5)]

        assert results == [False] * 5

    def test_rejects_request_at_limit(self, limiter, stats):
        """Test that the (MAX_REQUESTS+1)th check is rejected and counted."""
        for _ in range(5):
            limiter.is_limited(1)

        assert limiter.is_limited(1) is True
        assert limiter.limited_count == 1
        assert stats.rate_limit_hits == 1

    def test_rejected_request_not_recorded(self, limiter, clock):
        """Test that rejections do not extend the window."""
        for _ in range(5):
            limiter.is_limited(1)
        clock.now += 30
        assert limiter.is_limited(1) is True

        # The five accepted stamps expire 60s after they were taken
        clock.now += 30
        assert limiter.is_limited(1) is False

    def test_window_slides(self, limiter, clock):
        """Test that old stamps are pruned lazily."""
        limiter.is_limited(1)
        clock.now += 59
        for _ in range(4):
            assert limiter.is_limited(1) is False
        assert limiter.is_limited(1) is True

        clock.now += 1
        assert limiter.is_limited(1) is False

    def test_chats_are_independent(self, limiter):
        """Test that one chat's burst does not affect another."""
        for _ in range(5):
            limiter.is_limited(1)

        assert limiter.is_limited(1) is True
        assert limiter.is_limited(2) is False
        assert limiter.tracked_chats() == 2

    def test_remaining(self, limiter, clock):
        """Test remaining quota reporting."""
        assert limiter.remaining(1) == 5
        limiter.is_limited(1)
        limiter.is_limited(1)
        assert limiter.remaining(1) == 3

        clock.now += 60
        assert limiter.remaining(1) == 5

    def test_never_more_than_max_in_any_window(self, clock):
        """Test that accepted checks within any rolling window never exceed the limit."""
        limiter = RateLimiter(window_seconds=10, max_requests=3, clock=clock)
        accepted = []
        for step in range(100):
            clock.now = 1000.0 + step * 0.7
            if not limiter.is_limited(7):
                accepted.append(clock.now)

        for stamp in accepted:
            in_window = [other for other in accepted if stamp <= other < stamp + 10]
            assert len(in_window) <= 3
