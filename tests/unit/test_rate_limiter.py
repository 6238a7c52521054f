"""
Tests for the token bucket rate limiter.
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor

import pytest

from resilient_fetch.resilience.rate_limiter import TokenBucket, TokenBucketConfig


class TestTokenBucketConfig:
    """Tests for TokenBucketConfig."""

    def test_default_config(self) -> None:
        """Test default configuration matches market data limits."""
        config = TokenBucketConfig()
        assert config.capacity == 100
        assert config.refill_rate_per_second == 10

    def test_presets(self) -> None:
        """Test per-provider presets."""
        assert TokenBucketConfig.news().capacity == 10
        assert TokenBucketConfig.news().refill_rate_per_second == 0.001
        assert TokenBucketConfig.news().daily_quota == 200
        assert TokenBucketConfig.polling().daily_quota is None
        assert TokenBucketConfig.polling().capacity == 20
        assert TokenBucketConfig.social().refill_rate_per_second == 0.005

    def test_events_preset_scales_with_limit(self) -> None:
        """Test events preset refills a tenth of the limit per second."""
        config = TokenBucketConfig.events(50)
        assert config.capacity == 50
        assert config.refill_rate_per_second == 5

    def test_from_rps(self) -> None:
        """Test creating config from RPS."""
        config = TokenBucketConfig.from_rps(10)
        assert config.refill_rate_per_second == 10
        assert config.capacity == 15

    def test_invalid_capacity(self) -> None:
        """Test zero capacity is rejected."""
        with pytest.raises(ValueError, match="capacity"):
            TokenBucketConfig(capacity=0)

    def test_negative_rate(self) -> None:
        """Test negative refill rate is rejected."""
        with pytest.raises(ValueError, match="refill_rate_per_second"):
            TokenBucketConfig(capacity=1, refill_rate_per_second=-1)

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test reading limits from the environment."""
        monkeypatch.setenv("RESILIENT_FETCH_RATE_CAPACITY", "20")
        monkeypatch.setenv("RESILIENT_FETCH_RATE_REFILL_PER_SEC", "2.5")
        config = TokenBucketConfig.from_env()
        assert config.capacity == 20
        assert config.refill_rate_per_second == 2.5
        assert config.daily_quota is None

    def test_quota_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test reading the daily quota and its reset hour from the environment."""
        monkeypatch.setenv("RESILIENT_FETCH_DAILY_QUOTA", "5000")
        monkeypatch.setenv("RESILIENT_FETCH_QUOTA_RESET_HOUR", "6")
        config = TokenBucketConfig.from_env()
        assert config.daily_quota == 5000
        assert config.reset_hour == 6

    @pytest.mark.parametrize("kwargs", [{"daily_quota": -1}, {"reset_hour": 24}])
    def test_invalid_quota(self, kwargs) -> None:
        """Test out-of-range quota settings are rejected."""
        with pytest.raises(ValueError):
            TokenBucketConfig(**kwargs)

    def test_from_env_invalid_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test unparsable environment values raise ValueError."""
        monkeypatch.setenv("RESILIENT_FETCH_RATE_CAPACITY", "lots")
        with pytest.raises(ValueError):
            TokenBucketConfig.from_env()


class TestTokenBucket:
    """Tests for TokenBucket."""

    def test_starts_full(self, clock) -> None:
        """Test bucket starts at capacity."""
        bucket = TokenBucket(TokenBucketConfig(capacity=5, refill_rate_per_second=1), clock=clock)
        assert bucket.peek() == 5

    def test_initial_tokens(self, clock) -> None:
        """Test explicit initial tokens."""
        config = TokenBucketConfig(capacity=5, refill_rate_per_second=1, initial_tokens=2)
        bucket = TokenBucket(config, clock=clock)
        assert bucket.peek() == 2

    def test_consume_until_empty(self, clock) -> None:
        """Test capacity 10, rate 10: ten consumes succeed, the eleventh fails."""
        bucket = TokenBucket(TokenBucketConfig(capacity=10, refill_rate_per_second=10), clock=clock)

        assert all(bucket.try_consume() for _ in range(10))
        assert bucket.try_consume() is False

    def test_refill_after_wait(self, clock) -> None:
        """Test half a second refills at least five tokens."""
        bucket = TokenBucket(TokenBucketConfig(capacity=10, refill_rate_per_second=10), clock=clock)
        for _ in range(10):
            bucket.try_consume()

        clock.advance_ms(500)

        assert bucket.peek() >= 5

    def test_failed_consume_leaves_tokens(self, clock) -> None:
        """Test a rejected request does not spend tokens."""
        config = TokenBucketConfig(capacity=3, refill_rate_per_second=0, initial_tokens=2)
        bucket = TokenBucket(config, clock=clock)

        assert bucket.try_consume(3) is False
        assert bucket.peek() == 2

    def test_refill_capped_at_capacity(self, clock) -> None:
        """Test refill never exceeds capacity."""
        bucket = TokenBucket(TokenBucketConfig(capacity=5, refill_rate_per_second=100), clock=clock)
        bucket.try_consume(5)

        clock.advance(60)

        assert bucket.peek() == 5

    def test_tokens_stay_in_bounds(self, clock) -> None:
        """Test tokens remain within [0, capacity] for mixed consumes and waits."""
        bucket = TokenBucket(TokenBucketConfig(capacity=4, refill_rate_per_second=3), clock=clock)
        steps = [0.0, 0.1, 0.0, 2.0, 0.05, 0.0, 0.3, 10.0, 0.0, 0.01]

        for i, step in enumerate(steps):
            clock.advance(step)
            bucket.try_consume(1 + i % 3)
            tokens = bucket.peek()
            assert 0 <= tokens <= 4

    def test_zero_rate_never_refills(self, clock) -> None:
        """Test a zero refill rate leaves an empty bucket empty."""
        bucket = TokenBucket(TokenBucketConfig(capacity=1, refill_rate_per_second=0), clock=clock)
        assert bucket.try_consume()

        clock.advance(3600)

        assert bucket.try_consume() is False
        assert bucket.wait_time() == math.inf

    def test_wait_time(self, clock) -> None:
        """Test wait time for the next token."""
        bucket = TokenBucket(TokenBucketConfig(capacity=2, refill_rate_per_second=4), clock=clock)
        assert bucket.wait_time() == 0.0

        bucket.try_consume(2)

        assert bucket.wait_time() == pytest.approx(0.25)

    def test_wait_time_beyond_capacity(self, clock) -> None:
        """Test requesting more than capacity can never be satisfied."""
        bucket = TokenBucket(TokenBucketConfig(capacity=2, refill_rate_per_second=4), clock=clock)
        assert bucket.wait_time(3) == math.inf

    def test_negative_consume_rejected(self, clock) -> None:
        """Test negative token requests raise."""
        bucket = TokenBucket(clock=clock)
        with pytest.raises(ValueError):
            bucket.try_consume(-1)

    def test_reset(self, clock) -> None:
        """Test reset refills to capacity."""
        bucket = TokenBucket(TokenBucketConfig(capacity=3, refill_rate_per_second=0), clock=clock)
        bucket.try_consume(3)

        bucket.reset()

        assert bucket.peek() == 3

    def test_snapshot(self, clock) -> None:
        """Test snapshot reports throttling and time until full."""
        bucket = TokenBucket(TokenBucketConfig(capacity=10, refill_rate_per_second=5), clock=clock)
        for _ in range(10):
            bucket.try_consume()

        snapshot = bucket.snapshot()

        assert snapshot.tokens_available == 0
        assert snapshot.max_tokens == 10
        assert snapshot.is_throttled is True
        assert snapshot.seconds_until_full == pytest.approx(2.0)
        assert snapshot.utilization == 1.0
        assert snapshot.to_dict()["is_throttled"] is True


class TestDailyQuota:
    """Tests for the per-day consumption cap.

    The fake clock starts at epoch second 1000, so the first midnight UTC
    reset falls at epoch second 86400.
    """

    def make_bucket(self, clock, **kwargs) -> TokenBucket:
        config = TokenBucketConfig(capacity=100, refill_rate_per_second=0, **kwargs)
        return TokenBucket(config, clock=clock, wall_clock=clock)

    def test_quota_rejects_with_tokens_left(self, clock) -> None:
        """Test the quota is checked before the token count."""
        bucket = self.make_bucket(clock, daily_quota=3)
        for _ in range(3):
            assert bucket.try_consume() is True

        assert bucket.try_consume() is False
        assert bucket.peek() == 97

    def test_wait_time_until_reset(self, clock) -> None:
        """Test an exhausted quota waits for the next reset."""
        bucket = self.make_bucket(clock, daily_quota=1)
        bucket.try_consume()

        assert bucket.wait_time() == pytest.approx(85_400)

    def test_rejected_consume_not_counted(self, clock) -> None:
        """Test only granted tokens count towards daily usage."""
        config = TokenBucketConfig(capacity=1, refill_rate_per_second=0, daily_quota=5)
        bucket = TokenBucket(config, clock=clock, wall_clock=clock)
        bucket.try_consume()
        bucket.try_consume()

        assert bucket.snapshot().daily_usage == 1

    def test_usage_resets_at_reset_hour(self, clock) -> None:
        """Test usage clears once the configured UTC hour passes."""
        bucket = self.make_bucket(clock, daily_quota=2, reset_hour=6)
        bucket.try_consume(2)
        assert bucket.try_consume() is False

        clock.advance(21_600 - 1000)

        assert bucket.try_consume() is True
        assert bucket.snapshot().next_reset_at == 21_600 + 86_400

    def test_reset_clears_usage(self, clock) -> None:
        """Test a manual reset also clears daily usage."""
        bucket = self.make_bucket(clock, daily_quota=1)
        bucket.try_consume()

        bucket.reset()

        assert bucket.try_consume() is True

    def test_snapshot_reports_quota(self, clock) -> None:
        """Test snapshot carries usage, percentage and next reset."""
        bucket = self.make_bucket(clock, daily_quota=4)
        bucket.try_consume(4)

        snapshot = bucket.snapshot()

        assert snapshot.daily_usage == 4
        assert snapshot.daily_quota == 4
        assert snapshot.quota_percentage == 100.0
        assert snapshot.next_reset_at == 86_400
        assert snapshot.is_throttled is True
        assert snapshot.to_dict()["quota_percentage"] == 100.0

    def test_snapshot_without_quota(self, clock) -> None:
        """Test quota fields are empty when no quota is configured."""
        snapshot = TokenBucket(clock=clock).snapshot()

        assert snapshot.daily_quota is None
        assert snapshot.quota_percentage is None
        assert snapshot.next_reset_at is None


class TestConcurrentConsumption:
    """Tests for the bucket shared between threads."""

    def test_grants_exactly_capacity(self) -> None:
        """Test concurrent consumers never overdraw the bucket."""
        bucket = TokenBucket(TokenBucketConfig(capacity=50, refill_rate_per_second=0))

        with ThreadPoolExecutor(max_workers=8) as pool:
            granted = list(pool.map(lambda _: bucket.try_consume(), range(400)))

        assert sum(granted) == 50
        assert bucket.peek() == 0

    def test_quota_holds_under_contention(self) -> None:
        """Test concurrent consumers never exceed the daily quota."""
        config = TokenBucketConfig(capacity=100, refill_rate_per_second=0, daily_quota=30)
        bucket = TokenBucket(config)

        with ThreadPoolExecutor(max_workers=8) as pool:
            granted = list(pool.map(lambda _: bucket.try_consume(), range(100)))

        assert sum(granted) == 30
        assert bucket.snapshot().daily_usage == 30
