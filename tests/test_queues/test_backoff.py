"""Tests for the consume loop's exponential backoff."""

from guardian.queues.backoff import ExponentialBackoff


class TestExponentialBackoff:
    def test_doubles_without_jitter(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=60.0, jitter_range=0.0)
        assert [backoff.next_delay() for _ in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self):
        backoff = ExponentialBackoff(base_delay=10.0, max_delay=30.0, jitter_range=0.0)
        delays = [backoff.next_delay() for _ in range(5)]
        assert max(delays) == 30.0
        assert delays[-1] == 30.0

    def test_jitter_stays_in_range(self):
        backoff = ExponentialBackoff(base_delay=4.0, max_delay=60.0, jitter_range=0.5)
        delay = backoff.next_delay()
        assert 2.0 <= delay <= 6.0

    def test_never_negative(self):
        backoff = ExponentialBackoff(base_delay=0.5, jitter_range=1.0)
        assert all(backoff.next_delay() >= 0 for _ in range(50))

    def test_reset(self):
        backoff = ExponentialBackoff(base_delay=1.0, jitter_range=0.0)
        backoff.next_delay()
        backoff.next_delay()
        assert backoff.attempt == 2

        backoff.reset()

        assert backoff.attempt == 0
        assert backoff.next_delay() == 1.0
