"""
Storage backends for throttle entries.

A store is owned by exactly one :class:`RequestThrottle`; nothing else reads
or writes entries. ``hit`` is the only mutating call on the hot path and must
be atomic per key: two concurrent requests for the same key never both see
the count before either increment lands.
"""

from __future__ import annotations

import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

import redis
from redis.exceptions import RedisError, WatchError

from shared.errors import ExternalServiceError
from shared.logging import get_logger


@dataclass
class ThrottleEntry:
    """Attempt count for one key inside its current window."""

    key: str
    count: int
    reset_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.reset_at

    def is_valid(self) -> bool:
        return self.count >= 0 and math.isfinite(self.reset_at)


class ThrottleStoreError(ExternalServiceError):
    """The backing store could not be read or updated."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("throttle-store", message, details)


class ThrottleStore(ABC):
    """Interface every throttle backend implements."""

    @abstractmethod
    def hit(self, key: str, now: float, window_seconds: float) -> ThrottleEntry:
        """Count one attempt for ``key`` and return a snapshot of its entry.

        Absent, expired (``now > reset_at``) or corrupt entries are replaced by
        a fresh window ending at ``now + window_seconds`` before counting.
        """

    @abstractmethod
    def get(self, key: str) -> Optional[ThrottleEntry]:
        """Return a snapshot of the stored entry, expired or not."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Drop the entry for ``key``; returns whether one existed."""

    @abstractmethod
    def purge_expired(self, now: float) -> int:
        """Remove entries whose window ended before ``now``."""

    @abstractmethod
    def size(self) -> int:
        """Number of stored entries."""

    def close(self) -> None:
        """Release backend resources."""


def _fresh_entry(key: str, now: float, window_seconds: float) -> ThrottleEntry:
    return ThrottleEntry(key=key, count=0, reset_at=now + window_seconds)


class InMemoryThrottleStore(ThrottleStore):
    """Process-local store.

    Counts are not shared between worker processes; run a single worker or
    use :class:`RedisThrottleStore` when the gateway is scaled out.
    """

    def __init__(self):
        self._entries: Dict[str, ThrottleEntry] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, now: float, window_seconds: float) -> ThrottleEntry:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not entry.is_valid() or entry.is_expired(now):
                entry = _fresh_entry(key, now, window_seconds)
                self._entries[key] = entry
            entry.count += 1
            return replace(entry)

    def get(self, key: str) -> Optional[ThrottleEntry]:
        with self._lock:
            entry = self._entries.get(key)
            return replace(entry) if entry is not None else None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def purge_expired(self, now: float) -> int:
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.reset_at < now]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisThrottleStore(ThrottleStore):
    """Store shared by every gateway process through Redis.

    Each entry is a hash ``{count, reset_at}``. Updates run as an optimistic
    WATCH/MULTI transaction, and the hash carries a PEXPIREAT at the end of
    its window so Redis reclaims it on its own; ``purge_expired`` has nothing
    left to do.
    """

    def __init__(self, client: redis.Redis, prefix: str = "throttle:", max_retries: int = 16):
        self.client = client
        self.prefix = prefix
        self.max_retries = max_retries
        self.logger = get_logger("gateway.throttle_store")

    @classmethod
    def from_url(cls, redis_url: str, prefix: str = "throttle:") -> "RedisThrottleStore":
        return cls(redis.Redis.from_url(redis_url), prefix=prefix)

    def _redis_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @staticmethod
    def _text(value: Any) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    def _decode(self, key: str, raw: Dict[Any, Any]) -> Optional[ThrottleEntry]:
        if not raw:
            return None
        fields = {self._text(name): self._text(value) for name, value in raw.items()}
        try:
            return ThrottleEntry(
                key=key,
                count=int(fields["count"]),
                reset_at=float(fields["reset_at"]),
            )
        except (KeyError, TypeError, ValueError):
            # Unreadable hashes behave like an expired window.
            return ThrottleEntry(key=key, count=-1, reset_at=float("nan"))

    def hit(self, key: str, now: float, window_seconds: float) -> ThrottleEntry:
        redis_key = self._redis_key(key)
        try:
            with self.client.pipeline() as pipe:
                for _ in range(self.max_retries):
                    try:
                        pipe.watch(redis_key)
                        entry = self._decode(key, pipe.hgetall(redis_key))
                        if entry is None or not entry.is_valid() or entry.is_expired(now):
                            entry = _fresh_entry(key, now, window_seconds)
                        entry.count += 1

                        pipe.multi()
                        pipe.hset(redis_key, mapping={
                            "count": entry.count,
                            "reset_at": repr(entry.reset_at),
                        })
                        pipe.pexpireat(redis_key, int(math.ceil(entry.reset_at * 1000)) + 1)
                        pipe.execute()
                        return entry
                    except WatchError:
                        self.logger.debug("Throttle entry changed concurrently, retrying", key=key)
        except RedisError as e:
            raise ThrottleStoreError("Redis throttle update failed", details={"error": str(e)}) from e

        raise ThrottleStoreError(
            "Throttle entry update kept conflicting",
            details={"key": key, "attempts": self.max_retries}
        )

    def get(self, key: str) -> Optional[ThrottleEntry]:
        try:
            return self._decode(key, self.client.hgetall(self._redis_key(key)))
        except RedisError as e:
            raise ThrottleStoreError("Redis throttle read failed", details={"error": str(e)}) from e

    def delete(self, key: str) -> bool:
        try:
            return bool(self.client.delete(self._redis_key(key)))
        except RedisError as e:
            raise ThrottleStoreError("Redis throttle delete failed", details={"error": str(e)}) from e

    def purge_expired(self, now: float) -> int:
        return 0

    def size(self) -> int:
        try:
            return sum(1 for _ in self.client.scan_iter(match=f"{self.prefix}*"))
        except RedisError as e:
            raise ThrottleStoreError("Redis throttle scan failed", details={"error": str(e)}) from e

    def close(self) -> None:
        self.client.close()
