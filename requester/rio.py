"""Readers and writers that know how much data they still hold."""

from __future__ import annotations

import os
import threading
from collections import deque
from typing import BinaryIO, Protocol, runtime_checkable


@runtime_checkable
class ReaderLen(Protocol):
    """A reader that reports how many bytes are left to read."""

    def read(self, size: int = -1) -> bytes: ...

    def __len__(self) -> int: ...


@runtime_checkable
class ReaderAtLen(Protocol):
    """A positional reader that reports its remaining length."""

    def read_at(self, size: int, offset: int) -> bytes: ...

    def __len__(self) -> int: ...


@runtime_checkable
class WriterAt(Protocol):
    """Something that accepts data written at an absolute offset."""

    def write_at(self, data: bytes, offset: int) -> int: ...


class Buffer:
    """A fixed-length in-memory buffer supporting positional reads and writes."""

    def __init__(self, buf: bytearray | bytes | int) -> None:
        if isinstance(buf, int):
            self.buf = bytearray(buf)
        elif isinstance(buf, bytearray):
            self.buf = buf
        else:
            self.buf = bytearray(buf)

    def read_at(self, size: int, offset: int) -> bytes:
        """Return up to ``size`` bytes starting at ``offset``."""
        if offset > len(self.buf):
            raise IndexError(f"offset {offset} beyond buffer of {len(self.buf)} bytes")
        return bytes(self.buf[offset:offset + size])

    def write_at(self, data: bytes, offset: int) -> int:
        """Copy ``data`` into the buffer at ``offset``; returns the bytes copied."""
        if offset > len(self.buf):
            raise IndexError(f"offset {offset} beyond buffer of {len(self.buf)} bytes")
        n = min(len(data), len(self.buf) - offset)
        self.buf[offset:offset + n] = data[:n]
        return n

    def bytes(self) -> bytes:
        """Return the buffer contents."""
        return bytes(self.buf)

    def __len__(self) -> int:
        return len(self.buf)

    def __str__(self) -> str:
        return self.buf.decode("utf-8", errors="replace")


class BytesReader:
    """Reads from an in-memory byte string; its length is the unread part."""

    def __init__(self, data: bytes | str) -> None:
        self._data = data.encode() if isinstance(data, str) else bytes(data)
        self._pos = 0

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            end = len(self._data)
        else:
            end = min(len(self._data), self._pos + size)
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def __len__(self) -> int:
        return len(self._data) - self._pos


class FileReaderLen64:
    """Wraps a binary file, counting bytes consumed by sequential reads."""

    def __init__(self, file: BinaryIO) -> None:
        self._file = file
        self._readed = 0
        self._lock = threading.Lock()

    def read(self, size: int = -1) -> bytes:
        with self._lock:
            data = self._file.read(size)
            self._readed += len(data)
        return data

    def read_at(self, size: int, offset: int) -> bytes:
        """Read at an absolute offset without moving the read position."""
        with self._lock:
            position = self._file.tell()
            try:
                self._file.seek(offset)
                return self._file.read(size)
            finally:
                self._file.seek(position)

    def __len__(self) -> int:
        try:
            size = os.fstat(self._file.fileno()).st_size
        except OSError:
            return 0
        return max(size - self._readed, 0)


class RandomReaderLen64:
    """Produces cryptographically random bytes, declaring a fixed size."""

    def __init__(self, size: int) -> None:
        self._size = size
        self._readed = 0
        self._lock = threading.Lock()

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = len(self)
        data = os.urandom(size)
        with self._lock:
            self._readed += len(data)
        return data

    def read_at(self, size: int, offset: int) -> bytes:
        """Return ``size`` random bytes; the offset carries no meaning here."""
        return os.urandom(size)

    def __len__(self) -> int:
        return max(self._size - self._readed, 0)


class MultiReaderLen:
    """Concatenates several length-aware readers into one."""

    def __init__(self, *readers: ReaderLen | None) -> None:
        self._readers = [r for r in readers if r is not None]
        self._pending: deque[ReaderLen] = deque(self._readers)

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            chunks = [reader.read() for reader in self._pending]
            self._pending.clear()
            return b"".join(chunks)
        if size == 0:
            return b""
        while self._pending:
            data = self._pending[0].read(size)
            if data:
                return data
            self._pending.popleft()
        return b""

    def __len__(self) -> int:
        return sum(len(reader) for reader in self._readers)