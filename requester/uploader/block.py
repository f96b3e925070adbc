"""Splitting an upload into blocks, and the state needed to resume it."""

from __future__ import annotations

import itertools
import json
import os
import threading
from dataclasses import dataclass, field
from typing import Any

from requester.rio import ReaderAtLen
from requester.speeds import RateLimit, Speeds
from requester.transfer import Range, block_size_range_gen
from requester.uploader.uploader import BUFIO_READ_SIZE


class MultiError(Exception):
    """An error from one block of a parallel upload."""

    def __init__(self, err: BaseException, terminated: bool = False) -> None:
        super().__init__(str(err))
        self.err = err
        self.terminated = terminated

    def __str__(self) -> str:
        return str(self.err)


@dataclass
class BlockState:
    """One block of the file: its id, byte range and checksum once uploaded."""

    id: int
    range: Range = field(default_factory=Range)
    checksum: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "range": self.range.to_dict(), "checksum": self.checksum}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BlockState:
        return cls(
            id=int(data.get("id", 0)),
            range=Range.from_dict(data.get("range") or {}),
            checksum=str(data.get("checksum", "")),
        )


@dataclass
class UploadInstanceState:
    """Resume information of a parallel upload."""

    block_list: list[BlockState] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps({"block_list": [b.to_dict() for b in self.block_list]})


def upload_instance_state_from_json(data: str | bytes) -> UploadInstanceState:
    """Parse saved upload state; raises ValueError on malformed input."""
    raw = json.loads(data)
    if not isinstance(raw, dict):
        raise ValueError("upload instance state must be a JSON object")
    return UploadInstanceState(
        block_list=[BlockState.from_dict(b) for b in raw.get("block_list") or []]
    )


def split_block(file_size: int, block_size: int) -> list[BlockState]:
    """Cut a file of ``file_size`` bytes into blocks of ``block_size`` bytes."""
    gen = block_size_range_gen(file_size, 0, block_size)
    count = gen.range_count()
    return [BlockState(i, r) for i, r in enumerate(itertools.islice(gen, count))]


class FileBlock:
    """Reads one range of a positional reader, tracking how much was read."""

    def __init__(
        self,
        reader_at: ReaderAtLen,
        read_range: Range,
        speeds_stat: Speeds | None = None,
        rate_limit: RateLimit | None = None,
        readed: int = 0,
    ) -> None:
        self._reader_at = reader_at
        self._range = read_range
        self._speeds_stat = speeds_stat
        self._rate_limit = rate_limit
        self._readed = readed
        self._lock = threading.Lock()

    @property
    def range(self) -> Range:
        return self._range

    @property
    def readed(self) -> int:
        return self._readed

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes of the range; empty once it is exhausted."""
        with self._lock:
            left = self.left()
            if left <= 0:
                return b""
            if size is None or size < 0 or size > left:
                size = left
            data = self._reader_at.read_at(size, self._readed + self._range.begin)
            n = len(data)
            self._readed += n
            if self._rate_limit is not None:
                self._rate_limit.add(n)
            if self._speeds_stat is not None:
                self._speeds_stat.add(n)
            return data

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        """Move the read position within the range; returns the new position."""
        with self._lock:
            if whence == os.SEEK_SET:
                self._readed = offset
            elif whence == os.SEEK_CUR:
                self._readed += offset
            elif whence == os.SEEK_END:
                self._readed = self._range.end - self._range.begin + offset
            else:
                raise ValueError(f"unsupport whence: {whence}")
            if self._readed < 0:
                self._readed = 0
            return self._readed

    def left(self) -> int:
        return self._range.end - self._range.begin - self._readed

    def __len__(self) -> int:
        return self._range.end - self._range.begin


class BufferedSplitUnit:
    """A :class:`FileBlock` read through a buffer, so small reads stay cheap."""

    def __init__(
        self,
        reader_at: ReaderAtLen,
        read_range: Range,
        speeds_stat: Speeds | None = None,
        rate_limit: RateLimit | None = None,
        buffer_size: int = BUFIO_READ_SIZE,
    ) -> None:
        self._block = FileBlock(reader_at, read_range, speeds_stat, rate_limit)
        self._buffer_size = buffer_size
        self._buf = b""
        self._lock = threading.Lock()

    @property
    def range(self) -> Range:
        return self._block.range

    @property
    def readed(self) -> int:
        return self._block.readed

    def read(self, size: int = -1) -> bytes:
        with self._lock:
            if size is None or size < 0:
                data = self._buf + self._block.read(-1)
                self._buf = b""
                return data
            if size == 0:
                return b""
            if not self._buf:
                if size >= self._buffer_size:
                    return self._block.read(size)
                self._buf = self._block.read(self._buffer_size)
                if not self._buf:
                    return b""
            chunk, self._buf = self._buf[:size], self._buf[size:]
            return chunk

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        """Reposition the underlying block and discard buffered data."""
        with self._lock:
            self._buf = b""
            return self._block.seek(offset, whence)

    def left(self) -> int:
        """Bytes of the range not yet fetched from the underlying reader."""
        return self._block.left()

    def __len__(self) -> int:
        return len(self._block)