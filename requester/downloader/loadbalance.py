"""Download server selection and limits on how often connections are rebuilt."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from requester.downloader.common import random_number

RESET_WINDOW = 9.0


@dataclass
class LoadBalancerResponse:
    """A download server that answered like the main one."""

    url: str
    referer: str = ""


class LoadBalancerResponseList:
    """The servers a download may spread its workers over."""

    def __init__(self, responses: Iterable[LoadBalancerResponse]) -> None:
        self._responses = list(responses)
        self._cursor = 0
        self._lock = threading.Lock()

    def sequential_get(self) -> LoadBalancerResponse | None:
        """Return servers in turn, starting over after the last; None if empty."""
        with self._lock:
            if not self._responses:
                return None
            if self._cursor >= len(self._responses):
                self._cursor = 0
            item = self._responses[self._cursor]
            self._cursor += 1
            return item

    def random_get(self) -> LoadBalancerResponse:
        """Return a server picked at random; raises IndexError if there is none."""
        if not self._responses:
            raise IndexError("no load balancer responses")
        return self._responses[random_number(0, len(self._responses))]

    def __len__(self) -> int:
        return len(self._responses)


LoadBalancerCompareFunc = Callable[[Mapping[str, str], Any], bool]


def default_load_balancer_compare(info: Mapping[str, str] | None, resp: Any | None) -> bool:
    """True if every header in ``info`` has the same value in ``resp``."""
    if info is None or resp is None:
        return False
    return all(value == resp.headers.get(key, "") for key, value in info.items())


class ResetController:
    """Allows at most ``max_reset_num`` new connections within a sliding window."""

    def __init__(
        self,
        max_reset_num: int,
        window: float = RESET_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_reset_num = max_reset_num
        self._window = window
        self._clock = clock
        self._expiries: list[float] = []
        self._lock = threading.Lock()

    def _update(self) -> None:
        now = self._clock()
        self._expiries = [expiry for expiry in self._expiries if expiry >= now]

    def add_reset_num(self) -> None:
        """Record one new connection."""
        with self._lock:
            self._update()
            self._expiries.append(self._clock() + self._window)

    def can_reset(self) -> bool:
        """True if another connection may be made now."""
        with self._lock:
            self._update()
            return len(self._expiries) < self.max_reset_num