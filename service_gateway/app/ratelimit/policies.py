"""
Preconfigured throttle policies and the registry that owns them.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

import redis

from shared.config import BaseConfig, load_rate_limit_overrides
from shared.errors import NotFoundError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .keys import client_address_key, login_key, user_scoped_key
from .store import InMemoryThrottleStore, RedisThrottleStore, ThrottleStore
from .sweeper import ThrottleSweeper
from .throttle import RequestThrottle, ThrottleConfig

LOGIN = "login"
API = "api"
WRITE = "write"
AGGREGATION = "aggregation"
EXPORT = "export"

DEFAULT_POLICIES: Dict[str, ThrottleConfig] = {
    LOGIN: ThrottleConfig(
        name=LOGIN,
        window_seconds=15 * 60,
        max_attempts=5,
        key_func=login_key,
        message="Too many login attempts. Please try again in 15 minutes.",
    ),
    API: ThrottleConfig(
        name=API,
        window_seconds=60,
        max_attempts=100,
        key_func=client_address_key,
        message="Too many requests. Please slow down.",
    ),
    WRITE: ThrottleConfig(
        name=WRITE,
        window_seconds=60,
        max_attempts=30,
        key_func=user_scoped_key(WRITE),
        message="Too many write operations. Please slow down.",
    ),
    AGGREGATION: ThrottleConfig(
        name=AGGREGATION,
        window_seconds=60,
        max_attempts=10,
        key_func=user_scoped_key(AGGREGATION),
        message="Too many aggregation requests, please wait.",
    ),
    EXPORT: ThrottleConfig(
        name=EXPORT,
        window_seconds=60,
        max_attempts=5,
        key_func=user_scoped_key(EXPORT),
        message="Too many export requests, please wait.",
    ),
}

StoreFactory = Callable[[str], ThrottleStore]


def apply_overrides(
    policies: Mapping[str, ThrottleConfig],
    overrides: Mapping[str, Mapping[str, Any]]
) -> Dict[str, ThrottleConfig]:
    """Return ``policies`` with per-policy option overrides applied."""
    unknown = sorted(set(overrides) - set(policies))
    if unknown:
        raise ValidationError("Unknown rate limit policies", details={"policies": unknown})
    return {
        name: config.with_overrides(**overrides.get(name, {}))
        for name, config in policies.items()
    }


def memory_store_factory(policy: str) -> ThrottleStore:
    return InMemoryThrottleStore()


def redis_store_factory(redis_url: str) -> StoreFactory:
    """One Redis connection pool shared by every policy, one key prefix each."""
    client = redis.Redis.from_url(redis_url)

    def _factory(policy: str) -> ThrottleStore:
        return RedisThrottleStore(client, prefix=f"throttle:{policy}:")

    return _factory


class PolicyRegistry:
    """Named throttles, each with its own store, plus their sweeper."""

    def __init__(
        self,
        policies: Optional[Mapping[str, ThrottleConfig]] = None,
        store_factory: StoreFactory = memory_store_factory,
        metrics: Optional[MetricsCollector] = None,
        sweep_interval: float = 60.0,
        start_sweeper: bool = True,
    ):
        self.logger = get_logger("gateway.throttle_policies")
        self._throttles: Dict[str, RequestThrottle] = {
            name: RequestThrottle(config, store=store_factory(name), metrics=metrics)
            for name, config in (policies or DEFAULT_POLICIES).items()
        }

        self.sweeper: Optional[ThrottleSweeper] = None
        if sweep_interval and sweep_interval > 0:
            self.sweeper = ThrottleSweeper(
                lambda: list(self._throttles.values()),
                interval=sweep_interval,
                metrics=metrics,
            )
            if start_sweeper:
                self.sweeper.start()

    @classmethod
    def from_config(
        cls,
        config: BaseConfig,
        metrics: Optional[MetricsCollector] = None,
        start_sweeper: bool = True,
    ) -> "PolicyRegistry":
        """Build the default policies with settings and file overrides applied."""
        policies = apply_overrides(DEFAULT_POLICIES, load_rate_limit_overrides(config.rate_limits_file))

        backend = config.throttle_backend.lower()
        if backend == "memory":
            store_factory = memory_store_factory
        elif backend == "redis":
            store_factory = redis_store_factory(config.redis_url)
        else:
            raise ValidationError(
                "Unknown throttle backend",
                details={"backend": config.throttle_backend}
            )

        return cls(
            policies,
            store_factory=store_factory,
            metrics=metrics,
            sweep_interval=config.throttle_sweep_interval,
            start_sweeper=start_sweeper,
        )

    def get(self, name: str) -> RequestThrottle:
        try:
            return self._throttles[name]
        except KeyError:
            raise NotFoundError("Unknown rate limit policy", details={"policy": name}) from None

    def names(self) -> List[str]:
        return list(self._throttles)

    def __contains__(self, name: object) -> bool:
        return name in self._throttles

    def __iter__(self) -> Iterator[RequestThrottle]:
        return iter(list(self._throttles.values()))

    def describe(self) -> List[Dict[str, Any]]:
        described = []
        for throttle in self._throttles.values():
            info = throttle.describe()
            info["entries"] = throttle.size()
            described.append(info)
        return described

    def sweep(self, now: Optional[float] = None) -> Dict[str, int]:
        return {name: throttle.sweep(now) for name, throttle in self._throttles.items()}

    def close(self) -> None:
        """Stop the sweeper and release stores."""
        if self.sweeper is not None:
            self.sweeper.stop()
        for throttle in self._throttles.values():
            throttle.close()
        self.logger.info("Throttle policies closed")
