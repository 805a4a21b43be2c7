"""
Fixed-window request throttle.

Every call to :meth:`RequestThrottle.check` counts, admitted or not, so a
caller that keeps hammering a locked key stays locked until the window that
was opened by its first attempt runs out. The window is not renewed by
rejected attempts.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .keys import KeyFunc, RequestContext, UNKNOWN_CLIENT, client_address_key
from .store import InMemoryThrottleStore, ThrottleEntry, ThrottleStore, ThrottleStoreError

DEFAULT_WINDOW_SECONDS = 15 * 60
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_MESSAGE = "Too many requests, please try again later."

OVERRIDABLE_OPTIONS = ("window_seconds", "max_attempts", "message")


@dataclass(frozen=True)
class ThrottleConfig:
    """Parameters of one throttle instance."""

    name: str = "default"
    window_seconds: float = DEFAULT_WINDOW_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    key_func: KeyFunc = field(default=client_address_key, compare=False)
    message: str = DEFAULT_MESSAGE

    def __post_init__(self):
        if not isinstance(self.window_seconds, (int, float)) or self.window_seconds <= 0:
            raise ValidationError(
                "window_seconds must be a positive number",
                details={"policy": self.name, "window_seconds": self.window_seconds}
            )
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int) or self.max_attempts < 0:
            raise ValidationError(
                "max_attempts must be a non-negative integer",
                details={"policy": self.name, "max_attempts": self.max_attempts}
            )

    def with_overrides(self, **options: Any) -> "ThrottleConfig":
        """Copy with ``window_seconds``, ``max_attempts`` or ``message`` replaced."""
        unknown = sorted(set(options) - set(OVERRIDABLE_OPTIONS))
        if unknown:
            raise ValidationError(
                "Unknown rate limit options",
                details={"policy": self.name, "options": unknown}
            )
        return replace(self, **options)


@dataclass(frozen=True)
class ThrottleDecision:
    """Outcome of one :meth:`RequestThrottle.check` call."""

    admitted: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: Optional[int] = None
    key: str = ""
    policy: str = ""

    def headers(self) -> Dict[str, str]:
        """Rate limit response headers for this decision."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }
        if self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


class RequestThrottle:
    """Admit or reject attempts per key within a fixed window."""

    def __init__(
        self,
        config: Optional[ThrottleConfig] = None,
        store: Optional[ThrottleStore] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or ThrottleConfig()
        self.store = store if store is not None else InMemoryThrottleStore()
        self.metrics = metrics
        self.logger = get_logger(f"gateway.throttle.{self.config.name}")

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def limit(self) -> int:
        return self.config.max_attempts

    def key_for(self, context: RequestContext) -> str:
        """Derive the throttle key for a request context."""
        try:
            key = self.config.key_func(context)
        except Exception as e:
            self.logger.warning("Throttle key derivation failed, using sentinel", error=str(e))
            return UNKNOWN_CLIENT
        return key or UNKNOWN_CLIENT

    def check(self, key: str, now: Optional[float] = None) -> ThrottleDecision:
        """Count one attempt for ``key`` and decide whether it is admitted."""
        if not key:
            raise ValidationError("Throttle key must be a non-empty string", details={"policy": self.name})
        if now is None:
            now = time.time()

        try:
            entry = self.store.hit(key, now, self.config.window_seconds)
        except ThrottleStoreError as e:
            # Admit rather than fail the request when the shared store is down.
            self.logger.error("Throttle store unavailable, admitting request", key=key, error=e.message)
            return ThrottleDecision(
                admitted=True,
                limit=self.limit,
                remaining=self.limit,
                reset_at=now + self.config.window_seconds,
                key=key,
                policy=self.name,
            )

        remaining = max(0, self.limit - entry.count)
        admitted = entry.count <= self.limit
        decision = ThrottleDecision(
            admitted=admitted,
            limit=self.limit,
            remaining=remaining,
            reset_at=entry.reset_at,
            retry_after_seconds=None if admitted else math.ceil(entry.reset_at - now),
            key=key,
            policy=self.name,
        )

        if self.metrics is not None:
            self.metrics.record_throttle_decision(self.name, admitted)
        if not admitted:
            self.logger.warning(
                "Rate limit exceeded",
                key=key,
                count=entry.count,
                limit=self.limit,
                retry_after=decision.retry_after_seconds,
            )
        return decision

    def reset(self, key: str) -> bool:
        """Forget ``key``'s attempts; returns whether an entry existed."""
        try:
            removed = self.store.delete(key)
        except ThrottleStoreError as e:
            self.logger.error("Throttle reset failed", key=key, error=e.message)
            return False

        if removed:
            self.logger.info("Rate limit reset", key=key)
            if self.metrics is not None:
                self.metrics.increment_counter("rate_limit_resets_total", policy=self.name)
        return removed

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop entries whose window ended before ``now``."""
        if now is None:
            now = time.time()
        removed = self.store.purge_expired(now)
        if removed:
            self.logger.debug("Swept expired throttle entries", removed=removed)
        return removed

    def peek(self, key: str, now: Optional[float] = None) -> Optional[ThrottleEntry]:
        """Live entry for ``key`` without counting an attempt."""
        if now is None:
            now = time.time()
        entry = self.store.get(key)
        if entry is None or not entry.is_valid() or entry.is_expired(now):
            return None
        return entry

    def size(self) -> int:
        return self.store.size()

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "window_seconds": self.config.window_seconds,
            "max_attempts": self.config.max_attempts,
            "message": self.config.message,
            "key_func": getattr(self.config.key_func, "__name__", repr(self.config.key_func)),
        }

    def close(self) -> None:
        self.store.close()
