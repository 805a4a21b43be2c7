"""
Unit tests for the fixed-window request throttle.
"""

import math
import pytest
from unittest.mock import MagicMock

from service_gateway.app.ratelimit.keys import RequestContext
from service_gateway.app.ratelimit.policies import DEFAULT_POLICIES, LOGIN
from service_gateway.app.ratelimit.store import InMemoryThrottleStore, ThrottleEntry, ThrottleStoreError
from service_gateway.app.ratelimit.throttle import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MESSAGE,
    DEFAULT_WINDOW_SECONDS,
    RequestThrottle,
    ThrottleConfig,
    ThrottleDecision,
)
from shared.errors import ValidationError

T0 = 1_700_000_000.0


class TestThrottleConfig:
    """Test cases for ThrottleConfig."""

    def test_defaults(self):
        config = ThrottleConfig()
        assert config.window_seconds == DEFAULT_WINDOW_SECONDS == 900
        assert config.max_attempts == DEFAULT_MAX_ATTEMPTS == 5
        assert config.message == DEFAULT_MESSAGE
        assert config.key_func(RequestContext(client_address="1.2.3.4")) == "1.2.3.4"

    @pytest.mark.parametrize("window", [0, -1])
    def test_rejects_non_positive_window(self, window):
        with pytest.raises(ValidationError):
            ThrottleConfig(window_seconds=window)

    @pytest.mark.parametrize("max_attempts", [-1, 2.5, True])
    def test_rejects_invalid_max_attempts(self, max_attempts):
        with pytest.raises(ValidationError):
            ThrottleConfig(max_attempts=max_attempts)

    def test_with_overrides(self):
        config = ThrottleConfig(name="login").with_overrides(max_attempts=10, message="slow down")
        assert config.max_attempts == 10
        assert config.message == "slow down"
        assert config.window_seconds == DEFAULT_WINDOW_SECONDS

    def test_with_overrides_unknown_option(self):
        with pytest.raises(ValidationError) as exc_info:
            ThrottleConfig().with_overrides(burst=3)
        assert exc_info.value.details["options"] == ["burst"]


class TestRequestThrottle:
    """Test cases for RequestThrottle."""

    @pytest.fixture
    def login_throttle(self):
        """Throttle with the authentication policy parameters."""
        return RequestThrottle(DEFAULT_POLICIES[LOGIN])

    def test_login_lockout_scenario(self, login_throttle):
        key = "login:1.2.3.4:user@x.com"

        remaining = []
        for offset in range(5):
            decision = login_throttle.check(key, T0 + offset)
            assert decision.admitted is True
            assert decision.retry_after_seconds is None
            assert decision.reset_at == T0 + 900
            remaining.append(decision.remaining)
        assert remaining == [4, 3, 2, 1, 0]

        rejected = login_throttle.check(key, T0 + 5)
        assert rejected.admitted is False
        assert rejected.remaining == 0
        assert rejected.retry_after_seconds == 895

        later = login_throttle.check(key, T0 + 16 * 60)
        assert later.admitted is True
        assert later.remaining == 4
        assert later.reset_at == T0 + 16 * 60 + 900

    def test_rejection_after_max_attempts(self):
        throttle = RequestThrottle(ThrottleConfig(window_seconds=60, max_attempts=3))
        decisions = [throttle.check("k", T0) for _ in range(4)]
        assert [d.admitted for d in decisions] == [True, True, True, False]

    def test_rejected_attempts_keep_counting_without_renewing_window(self):
        throttle = RequestThrottle(ThrottleConfig(window_seconds=60, max_attempts=1))
        throttle.check("k", T0)
        for offset in (10, 20, 30):
            decision = throttle.check("k", T0 + offset)
            assert decision.admitted is False
            assert decision.reset_at == T0 + 60
            assert decision.retry_after_seconds == 60 - offset
        assert throttle.peek("k", T0 + 30).count == 4

    def test_fresh_window_after_expiry_regardless_of_rejections(self):
        throttle = RequestThrottle(ThrottleConfig(window_seconds=60, max_attempts=2))
        for _ in range(10):
            throttle.check("k", T0)

        decision = throttle.check("k", T0 + 60.5)
        assert decision.admitted is True
        assert decision.remaining == 1
        assert decision.reset_at == T0 + 60.5 + 60
        assert throttle.peek("k", T0 + 61).count == 1

    def test_window_boundary_is_inclusive(self):
        throttle = RequestThrottle(ThrottleConfig(window_seconds=60, max_attempts=1))
        throttle.check("k", T0)
        # now == reset_at still belongs to the old window
        decision = throttle.check("k", T0 + 60)
        assert decision.admitted is False
        assert decision.retry_after_seconds == 0

    def test_retry_after_rounds_up(self):
        throttle = RequestThrottle(ThrottleConfig(window_seconds=10, max_attempts=1))
        throttle.check("k", T0)
        decision = throttle.check("k", T0 + 0.25)
        assert decision.admitted is False
        assert decision.retry_after_seconds == 10

    def test_remaining_never_negative(self):
        throttle = RequestThrottle(ThrottleConfig(window_seconds=60, max_attempts=2))
        for _ in range(6):
            decision = throttle.check("k", T0)
            assert decision.remaining >= 0
        assert decision.remaining == 0

    def test_keys_are_independent(self):
        throttle = RequestThrottle(ThrottleConfig(name="write", window_seconds=60, max_attempts=30))
        for _ in range(31):
            throttle.check("write:ip:user1", T0)

        assert throttle.check("write:ip:user1", T0).admitted is False
        decision = throttle.check("write:ip:user2", T0)
        assert decision.admitted is True
        assert decision.remaining == 29

    def test_reset_behaves_like_unseen_key(self, login_throttle):
        key = "login:1.2.3.4:user@x.com"
        for _ in range(6):
            login_throttle.check(key, T0)

        assert login_throttle.reset(key) is True
        decision = login_throttle.check(key, T0 + 1)
        assert decision.admitted is True
        assert decision.remaining == 4
        assert decision.reset_at == T0 + 1 + 900

    def test_reset_unknown_key_is_noop(self, login_throttle):
        assert login_throttle.reset("never-seen") is False
        assert login_throttle.size() == 0

    def test_sweep_removes_only_expired_entries(self):
        throttle = RequestThrottle(ThrottleConfig(window_seconds=60, max_attempts=5))
        throttle.check("old", T0)
        throttle.check("new", T0 + 30)
        throttle.check("new", T0 + 31)

        assert throttle.sweep(T0 + 61) == 1
        assert throttle.size() == 1
        kept = throttle.store.get("new")
        assert kept.count == 2
        assert kept.reset_at == T0 + 90

    def test_sweep_does_not_change_decisions(self):
        throttle = RequestThrottle(ThrottleConfig(window_seconds=60, max_attempts=1))
        throttle.check("k", T0)
        throttle.sweep(T0 + 30)
        assert throttle.check("k", T0 + 31).admitted is False

    def test_corrupt_entry_is_rebuilt(self):
        store = InMemoryThrottleStore()
        store._entries["k"] = ThrottleEntry(key="k", count=-3, reset_at=T0 + 500)
        throttle = RequestThrottle(ThrottleConfig(window_seconds=60, max_attempts=5), store=store)

        decision = throttle.check("k", T0)
        assert decision.admitted is True
        assert decision.remaining == 4
        assert decision.reset_at == T0 + 60

    def test_empty_key_rejected(self, login_throttle):
        with pytest.raises(ValidationError):
            login_throttle.check("", T0)

    def test_store_failure_admits(self):
        store = MagicMock()
        store.hit.side_effect = ThrottleStoreError("redis down")
        throttle = RequestThrottle(ThrottleConfig(window_seconds=60, max_attempts=5), store=store)

        decision = throttle.check("k", T0)
        assert decision.admitted is True
        assert decision.remaining == 5
        assert decision.reset_at == T0 + 60

    def test_records_metrics(self):
        metrics = MagicMock()
        throttle = RequestThrottle(
            ThrottleConfig(name="api", window_seconds=60, max_attempts=1),
            metrics=metrics,
        )
        throttle.check("k", T0)
        throttle.check("k", T0)
        throttle.reset("k")

        metrics.record_throttle_decision.assert_any_call("api", True)
        metrics.record_throttle_decision.assert_any_call("api", False)
        metrics.increment_counter.assert_called_once_with("rate_limit_resets_total", policy="api")

    def test_key_for_falls_back_to_sentinel(self):
        def broken_key(context):
            raise AttributeError("no address")

        throttle = RequestThrottle(ThrottleConfig(key_func=broken_key))
        assert throttle.key_for(RequestContext()) == "unknown"

        empty = RequestThrottle(ThrottleConfig(key_func=lambda context: ""))
        assert empty.key_for(RequestContext()) == "unknown"

    def test_peek_ignores_expired_entries(self):
        throttle = RequestThrottle(ThrottleConfig(window_seconds=60, max_attempts=5))
        throttle.check("k", T0)
        assert throttle.peek("k", T0 + 10).count == 1
        assert throttle.peek("k", T0 + 61) is None
        assert throttle.peek("missing", T0) is None

    def test_describe(self, login_throttle):
        described = login_throttle.describe()
        assert described["name"] == "login"
        assert described["max_attempts"] == 5
        assert described["window_seconds"] == 900
        assert described["key_func"] == "login_key"


class TestThrottleDecision:
    """Test cases for ThrottleDecision headers."""

    def test_admitted_headers(self):
        decision = ThrottleDecision(admitted=True, limit=5, remaining=3, reset_at=T0 + 899.2)
        assert decision.headers() == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "3",
            "X-RateLimit-Reset": str(math.ceil(T0 + 899.2)),
        }

    def test_rejected_headers_include_retry_after(self):
        decision = ThrottleDecision(
            admitted=False, limit=5, remaining=0, reset_at=T0 + 900, retry_after_seconds=895
        )
        headers = decision.headers()
        assert headers["Retry-After"] == "895"
        assert headers["X-RateLimit-Remaining"] == "0"
