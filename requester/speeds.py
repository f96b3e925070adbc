"""Transfer speed measurement and rate limiting."""

from __future__ import annotations

import threading
import time
from typing import Callable


class Speeds:
    """Counts bytes and reports throughput per interval."""

    def __init__(
        self, interval: float = 1.0, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.interval = interval if interval > 0 else 1.0
        self._clock = clock
        self._count = 0
        self._start: float | None = None
        self._lock = threading.Lock()

    def _init_once(self) -> None:
        if self._start is None:
            self._start = self._clock()

    def add(self, count: int) -> None:
        """Record ``count`` more bytes."""
        with self._lock:
            self._init_once()
            self._count += count

    def get_speeds(self) -> int:
        """Return bytes per interval; starts a new round once an interval passed."""
        with self._lock:
            self._init_once()
            since = self._clock() - self._start
            if since <= 0:
                return 0
            speeds = int(self._count * self.interval / since)
            if since >= self.interval:
                self._count = 0
                self._start = self._clock()
            return speeds


class RateLimit:
    """Blocks callers once ``max_rate`` bytes have passed within an interval."""

    def __init__(self, max_rate: int, interval: float = 1.0) -> None:
        self.max_rate = max_rate
        self._interval = interval if interval > 0 else 1.0
        self._count = 0
        self._cond = threading.Condition()
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def count(self) -> int:
        """Bytes counted in the current interval."""
        with self._cond:
            return self._count

    def set_interval(self, interval: float) -> None:
        """Set the reset interval in seconds; non-positive means one second."""
        with self._cond:
            self._interval = interval if interval > 0 else 1.0

    def _ensure_started(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, daemon=True)
            self._thread.start()

    def _run(self) -> None:
        while True:
            with self._cond:
                interval = self._interval
            if self._stopped.wait(interval):
                break
            with self._cond:
                self._count = 0
                self._cond.notify_all()
        with self._cond:
            self._cond.notify_all()

    def add(self, count: int) -> None:
        """Account for ``count`` bytes, waiting while the limit is exceeded."""
        with self._cond:
            self._ensure_started()
            while self._count >= self.max_rate and not self._stopped.is_set():
                self._cond.wait()
            self._count += count

    def stop(self) -> None:
        """Stop the reset timer and release any waiting callers."""
        self._stopped.set()
        with self._cond:
            self._cond.notify_all()

    def __enter__(self) -> RateLimit:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()