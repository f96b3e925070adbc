"""Byte ranges, range generators and download progress state."""

from __future__ import annotations

import enum
import json
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable, Iterator

from requester.speeds import RateLimit, Speeds

KB = 1024
DEFAULT_BLOCK_SIZE = 256 * KB


class RangeGenMode(enum.IntEnum):
    """How a range generator splits a file."""

    DEFAULT = 0
    BLOCK_SIZE = 1


@dataclass
class Range:
    """A half-open byte range ``[begin, end)``."""

    begin: int = 0
    end: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def length(self) -> int:
        return self.end - self.begin

    def add_begin(self, n: int) -> int:
        """Advance ``begin`` by ``n`` and return the new value."""
        with self._lock:
            self.begin += n
            return self.begin

    def show_details(self) -> str:
        return f"{{{self.begin}-{self.end}}}"

    def copy(self) -> Range:
        return Range(self.begin, self.end)

    def to_dict(self) -> dict[str, int]:
        return {"begin": self.begin, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Range:
        return cls(int(data.get("begin", 0)), int(data.get("end", 0)))


def remaining_length(ranges: Iterable[Range | None]) -> int:
    """Total length left across ``ranges``, skipping missing entries."""
    return sum(r.length() for r in ranges if r is not None)


class RangeListGen:
    """Hands out consecutive ranges of a file until it is fully covered."""

    def __init__(
        self,
        total: int,
        begin: int = 0,
        block_size: int = 0,
        parallel: int = 0,
        count: int = 0,
        mode: RangeGenMode = RangeGenMode.DEFAULT,
    ) -> None:
        self.total = total
        self.begin = begin
        self.block_size = block_size
        self.parallel = parallel
        self.count = count
        self.mode = mode
        self._lock = threading.RLock()

    def range_count(self) -> int:
        """Number of ranges still expected to be generated."""
        if self.mode is RangeGenMode.DEFAULT:
            return self.parallel - self.count
        count = (self.total - self.begin) // self.block_size
        if self.total % self.block_size != 0:
            count += 1
        return count

    def load_begin(self) -> int:
        with self._lock:
            return self.begin

    def load_block_size(self) -> int:
        """Block size in use, computing it from the parallelism if unset."""
        with self._lock:
            if self.mode is RangeGenMode.DEFAULT and self.block_size <= 0:
                self.block_size = max(
                    (self.total - self.begin) // max(self.parallel, 1), DEFAULT_BLOCK_SIZE
                )
            return self.block_size

    def is_done(self) -> bool:
        return self.begin >= self.total

    def gen_range(self) -> tuple[int, Range | None]:
        """Return the next range and its index; the range is None when done."""
        with self._lock:
            if self.parallel < 1:
                self.parallel = 1
            if self.mode is RangeGenMode.DEFAULT:
                self.load_block_size()
            elif self.block_size <= 0:
                self.block_size = DEFAULT_BLOCK_SIZE

            if self.is_done():
                return self.count, None

            self.count += 1
            if self.mode is RangeGenMode.DEFAULT and self.count >= self.parallel:
                end = self.total
            else:
                end = self.begin + self.block_size
            end = min(end, self.total)

            r = Range(self.begin, end)
            self.begin = end
            return self.count - 1, r

    def __iter__(self) -> Iterator[Range]:
        while True:
            _, r = self.gen_range()
            if r is None:
                return
            yield r


def default_range_gen(total_size: int, begin: int, count: int, parallel: int) -> RangeListGen:
    """A generator that splits the file evenly among ``parallel`` workers."""
    return RangeListGen(
        total_size, begin=begin, parallel=parallel, count=count, mode=RangeGenMode.DEFAULT
    )


def block_size_range_gen(total_size: int, begin: int, block_size: int) -> RangeListGen:
    """A generator that cuts the file into blocks of ``block_size`` bytes."""
    return RangeListGen(
        total_size, begin=begin, block_size=block_size, mode=RangeGenMode.BLOCK_SIZE
    )


class DownloadStatus:
    """Progress and speed statistics of one download."""

    def __init__(
        self,
        total_size: int = 0,
        downloaded: int = 0,
        range_gen: RangeListGen | None = None,
        rate_limit: RateLimit | None = None,
        speeds_stat: Speeds | None = None,
    ) -> None:
        self.total_size = total_size
        self.downloaded = downloaded
        self.range_gen = range_gen
        self.rate_limit = rate_limit
        self.speeds_stat = speeds_stat if speeds_stat is not None else Speeds()
        self.max_speeds = 0
        self._tmp_speeds = 0
        self._start_time = time.monotonic()
        self._lock = threading.Lock()

    def add_downloaded(self, d: int) -> None:
        with self._lock:
            self.downloaded += d

    def add_total_size(self, size: int) -> None:
        with self._lock:
            self.total_size += size

    def add_speeds_downloaded(self, d: int) -> None:
        """Count bytes for speed statistics, waiting on the rate limit if set."""
        if self.rate_limit is not None:
            self.rate_limit.add(d)
        self.speeds_stat.add(d)

    def update_max_speeds(self, speeds: int) -> None:
        """Raise the recorded maximum speed if ``speeds`` exceeds it."""
        with self._lock:
            if speeds > self.max_speeds:
                self.max_speeds = speeds

    def clear_max_speeds(self) -> None:
        with self._lock:
            self.max_speeds = 0

    def update_speeds(self) -> None:
        """Sample the current speed from the speed counter."""
        self._tmp_speeds = self.speeds_stat.get_speeds()

    def speeds_per_second(self) -> int:
        return self._tmp_speeds

    def time_elapsed(self) -> timedelta:
        return timedelta(seconds=time.monotonic() - self._start_time)

    def time_left(self) -> timedelta | None:
        """Estimated remaining time, or None when the speed is unknown."""
        speeds = self._tmp_speeds
        if speeds <= 0:
            return None
        return timedelta(seconds=(self.total_size - self.downloaded) // speeds)


@dataclass
class DownloadInstanceInfo:
    """Resumable state of a download: its status and outstanding ranges."""

    download_status: DownloadStatus | None = None
    ranges: list[Range] = field(default_factory=list)


@dataclass
class DownloadInstanceInfoExport:
    """Serialisable form of :class:`DownloadInstanceInfo`."""

    range_gen_mode: RangeGenMode = RangeGenMode.DEFAULT
    total_size: int = 0
    gen_begin: int = 0
    block_size: int = 0
    ranges: list[Range] = field(default_factory=list)

    def get_instance_info(self) -> DownloadInstanceInfo:
        """Rebuild download state from the saved values."""
        left = remaining_length(self.ranges)
        if self.range_gen_mode is RangeGenMode.BLOCK_SIZE:
            downloaded = self.gen_begin - left
            gen = block_size_range_gen(self.total_size, self.gen_begin, self.block_size)
        else:
            downloaded = self.total_size - left
            gen = default_range_gen(
                self.total_size, self.total_size, len(self.ranges), len(self.ranges)
            )
        status = DownloadStatus(
            total_size=self.total_size, downloaded=downloaded, range_gen=gen
        )
        return DownloadInstanceInfo(download_status=status, ranges=list(self.ranges))

    def set_instance_info(self, info: DownloadInstanceInfo | None) -> None:
        """Capture the values needed to resume ``info`` later."""
        if info is None:
            return
        status = info.download_status
        if status is not None:
            self.total_size = status.total_size
            gen = status.range_gen
            if gen is not None:
                self.gen_begin = gen.load_begin()
                self.block_size = gen.load_block_size()
                self.range_gen_mode = gen.mode
            else:
                self.range_gen_mode = RangeGenMode.DEFAULT
        self.ranges = list(info.ranges)

    def to_dict(self) -> dict[str, Any]:
        return {
            "range_gen_mode": int(self.range_gen_mode),
            "total_size": self.total_size,
            "gen_begin": self.gen_begin,
            "block_size": self.block_size,
            "ranges": [r.to_dict() for r in self.ranges],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def instance_info_export_from_json(data: str | bytes) -> DownloadInstanceInfoExport:
    """Parse saved resume state; raises ValueError on malformed input."""
    raw = json.loads(data)
    if not isinstance(raw, dict):
        raise ValueError("instance info must be a JSON object")
    return DownloadInstanceInfoExport(
        range_gen_mode=RangeGenMode(int(raw.get("range_gen_mode", 0))),
        total_size=int(raw.get("total_size", 0)),
        gen_begin=int(raw.get("gen_begin", 0)),
        block_size=int(raw.get("block_size", 0)),
        ranges=[Range.from_dict(r) for r in raw.get("ranges") or []],
    )