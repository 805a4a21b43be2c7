"""
Unit tests for the background throttle sweeper.
"""

import threading
import pytest
from unittest.mock import MagicMock

from service_gateway.app.ratelimit.sweeper import ThrottleSweeper
from service_gateway.app.ratelimit.throttle import RequestThrottle, ThrottleConfig
from shared.test_helpers import FakeClock

T0 = 1_700_000_000.0


class TestThrottleSweeper:
    """Test cases for ThrottleSweeper."""

    @pytest.fixture
    def throttles(self):
        return [
            RequestThrottle(ThrottleConfig(name="api", window_seconds=60, max_attempts=100)),
            RequestThrottle(ThrottleConfig(name="login", window_seconds=900, max_attempts=5)),
        ]

    def test_rejects_non_positive_interval(self, throttles):
        with pytest.raises(ValueError):
            ThrottleSweeper(lambda: throttles, interval=0)

    def test_run_once_sweeps_every_throttle(self, throttles):
        api, login = throttles
        api.check("1.2.3.4", T0)
        api.check("5.6.7.8", T0 + 30)
        login.check("login:1.2.3.4:", T0)

        clock = FakeClock(T0 + 61)
        metrics = MagicMock()
        sweeper = ThrottleSweeper(lambda: throttles, interval=60, metrics=metrics, clock=clock)

        assert sweeper.run_once() == {"api": 1, "login": 0}
        assert api.size() == 1
        assert login.size() == 1
        metrics.record_sweep.assert_any_call("api", 1, 1)
        metrics.record_sweep.assert_any_call("login", 0, 1)

    def test_failing_throttle_does_not_stop_others(self, throttles):
        broken = MagicMock()
        broken.name = "broken"
        broken.sweep.side_effect = RuntimeError("store exploded")
        api, login = throttles
        api.check("1.2.3.4", T0)

        sweeper = ThrottleSweeper(lambda: [broken, api, login], interval=60)
        assert sweeper.run_once(T0 + 61) == {"api": 1, "login": 0}

    def test_background_thread_sweeps_and_stops(self):
        swept = threading.Event()
        throttle = MagicMock()
        throttle.name = "api"
        throttle.sweep.side_effect = lambda now: swept.set() or 0
        throttle.size.return_value = 0

        sweeper = ThrottleSweeper(lambda: [throttle], interval=0.01)
        sweeper.start()
        try:
            assert sweeper.running is True
            assert sweeper._thread.daemon is True
            assert swept.wait(2.0) is True
        finally:
            sweeper.stop()

        assert sweeper.running is False

    def test_start_is_idempotent(self, throttles):
        sweeper = ThrottleSweeper(lambda: throttles, interval=60)
        sweeper.start()
        try:
            first_thread = sweeper._thread
            sweeper.start()
            assert sweeper._thread is first_thread
        finally:
            sweeper.stop()

    def test_stop_without_start(self, throttles):
        sweeper = ThrottleSweeper(lambda: throttles, interval=60)
        sweeper.stop()
        assert sweeper.running is False
