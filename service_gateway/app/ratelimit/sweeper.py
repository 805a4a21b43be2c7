"""
Background sweeping of expired throttle entries.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Iterable, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .throttle import RequestThrottle

DEFAULT_SWEEP_INTERVAL = 60.0


class ThrottleSweeper:
    """Periodically calls ``sweep`` on a set of throttles.

    Runs on a daemon thread so an idle gateway can still exit; owners call
    :meth:`stop` on shutdown. Sweeping only reclaims memory, ``check``
    already ignores expired entries.
    """

    def __init__(
        self,
        throttles: Callable[[], Iterable[RequestThrottle]],
        interval: float = DEFAULT_SWEEP_INTERVAL,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        if interval <= 0:
            raise ValueError("Sweep interval must be positive")
        self._throttles = throttles
        self.interval = interval
        self.metrics = metrics
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = get_logger("gateway.throttle_sweeper")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="throttle-sweeper",
            daemon=True,
        )
        self._thread.start()
        self.logger.info("Throttle sweeper started", interval=self.interval)

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout)
        self._thread = None
        self.logger.info("Throttle sweeper stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.run_once()

    def run_once(self, now: Optional[float] = None) -> Dict[str, int]:
        """Sweep every throttle once; returns removed counts per policy."""
        if now is None:
            now = self._clock()

        results: Dict[str, int] = {}
        for throttle in self._throttles():
            try:
                removed = throttle.sweep(now)
                remaining = throttle.size()
            except Exception as e:
                self.logger.error("Throttle sweep failed", policy=throttle.name, error=str(e))
                continue

            results[throttle.name] = removed
            if self.metrics is not None:
                self.metrics.record_sweep(throttle.name, removed, remaining)
        return results
