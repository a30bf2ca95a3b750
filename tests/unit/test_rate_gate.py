"""
Unit tests for the outbound Discogs rate gate.
"""

import threading

import pytest

from discogs_api import RateGate, RateLimitState, parse_rate_limit_headers


@pytest.mark.unit
class TestRateGate:
    """Test request spacing and the low-quota cooldown."""

    def test_first_request_is_immediate(self, fake_clock):
        """Test nothing waits before the first call."""
        gate = RateGate(clock=fake_clock, sleep=fake_clock.sleep)

        assert gate.acquire() == 0
        assert fake_clock.sleeps == []

    def test_back_to_back_requests_spaced(self, fake_clock):
        """Test a second call waits out the minimum interval."""
        gate = RateGate(min_interval=1.0, clock=fake_clock, sleep=fake_clock.sleep)

        gate.acquire()
        fake_clock.advance(0.25)
        waited = gate.acquire()

        assert waited == pytest.approx(0.75)
        assert fake_clock.sleeps == [pytest.approx(0.75)]

    def test_no_wait_after_interval(self, fake_clock):
        """Test calls spaced further apart than the interval do not wait."""
        gate = RateGate(min_interval=1.0, clock=fake_clock, sleep=fake_clock.sleep)

        gate.acquire()
        fake_clock.advance(3)

        assert gate.acquire() == 0

    def test_interval_measured_from_last_response(self, fake_clock):
        """Test the recorded response time is the reference point."""
        gate = RateGate(min_interval=1.0, clock=fake_clock, sleep=fake_clock.sleep)

        gate.acquire()
        fake_clock.advance(2)
        gate.record_response(60, 1, 59)
        fake_clock.advance(0.5)

        assert gate.acquire() == pytest.approx(0.5)

    def test_low_quota_adds_cooldown(self, fake_clock):
        """Test remaining quota under the low-water mark adds the cooldown."""
        gate = RateGate(min_interval=1.0, low_water=5, cooldown=5.0,
                        clock=fake_clock, sleep=fake_clock.sleep)

        gate.acquire()
        gate.record_response(60, 56, 4)

        assert gate.acquire() == pytest.approx(6.0)

    def test_quota_at_low_water_does_not_cool_down(self, fake_clock):
        """Test the cooldown only applies strictly below the mark."""
        gate = RateGate(min_interval=1.0, low_water=5, cooldown=5.0,
                        clock=fake_clock, sleep=fake_clock.sleep)

        gate.record_response(60, 55, 5)
        fake_clock.advance(10)

        assert gate.acquire() == 0

    def test_exhausted_quota_still_only_delays(self, fake_clock):
        """Test the gate never refuses a call."""
        gate = RateGate(min_interval=1.0, low_water=5, cooldown=5.0,
                        clock=fake_clock, sleep=fake_clock.sleep)

        gate.record_response(60, 60, 0)
        fake_clock.advance(10)

        assert gate.acquire() == pytest.approx(5.0)

    def test_snapshot_before_first_response(self, fake_clock):
        """Test no state is reported until a response was recorded."""
        gate = RateGate(clock=fake_clock, sleep=fake_clock.sleep)
        gate.acquire()

        assert gate.snapshot() is None

    def test_snapshot_is_a_copy(self, fake_clock):
        """Test callers cannot mutate the gate through a snapshot."""
        gate = RateGate(clock=fake_clock, sleep=fake_clock.sleep)
        gate.record_response(60, 10, 50)

        snapshot = gate.snapshot()
        assert snapshot == RateLimitState(limit=60, used=10, remaining=50,
                                          last_request_at=fake_clock.now)

        snapshot.remaining = 0
        assert gate.snapshot().remaining == 50

    def test_concurrent_callers_are_serialized(self):
        """Test two threads acquiring together are spaced by the interval."""
        clock = {'now': 0.0}
        lock = threading.Lock()

        def now():
            with lock:
                return clock['now']

        def sleep(seconds):
            with lock:
                clock['now'] += seconds

        gate = RateGate(min_interval=1.0, clock=now, sleep=sleep)
        waits = []
        threads = [threading.Thread(target=lambda: waits.append(gate.acquire()))
                   for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(waits) == [0, pytest.approx(1.0)]


@pytest.mark.unit
class TestRateLimitHeaders:
    """Test quota header parsing."""

    def test_headers_parsed(self):
        """Test all three headers are read as integers."""
        headers = {
            'X-Discogs-Ratelimit': '60',
            'X-Discogs-Ratelimit-Used': '12',
            'X-Discogs-Ratelimit-Remaining': '48',
        }
        assert parse_rate_limit_headers(headers) == (60, 12, 48)

    def test_missing_headers_default(self):
        """Test absent headers fall back to an untouched quota of 60."""
        assert parse_rate_limit_headers({}) == (60, 0, 60)

    def test_garbage_headers_default(self):
        """Test unparseable values fall back to the defaults."""
        headers = {'X-Discogs-Ratelimit': 'lots', 'X-Discogs-Ratelimit-Remaining': ''}
        assert parse_rate_limit_headers(headers, default_limit=25) == (25, 0, 25)
