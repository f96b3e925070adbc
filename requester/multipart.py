"""Streaming multipart/form-data bodies built from length-aware readers."""

from __future__ import annotations

import secrets
import threading

from requester.rio import BytesReader, MultiReaderLen, ReaderLen

_SPECIAL = set('()<>@,;:\\"/[]?= ')


class MultipartError(Exception):
    """Raised when a multipart body is used in the wrong state."""


class MultipartReader:
    """Encodes form fields and files as multipart without loading them into memory.

    Fields come before files in the output; call :meth:`close_multipart`
    before reading.
    """

    def __init__(self, boundary: str | None = None) -> None:
        self.boundary = boundary or secrets.token_hex(30)
        self._form_body = b""
        self._fields: list[tuple[bytes, ReaderLen]] = []
        self._files: list[tuple[bytes, ReaderLen]] = []
        self._form_close = b""
        self._length = len(self._form_body)
        self._lock = threading.Lock()
        self._closed = False
        self._reader: MultiReaderLen | None = None

    @property
    def content_type(self) -> str:
        boundary = self.boundary
        if any(c in _SPECIAL for c in boundary):
            boundary = f'"{boundary}"'
        return f"multipart/form-data; boundary={boundary}"

    def add_form_field(self, fieldname: str, reader: ReaderLen | None) -> None:
        """Add a plain form field whose value comes from ``reader``."""
        if reader is None:
            return
        form = (
            f'--{self.boundary}\r\nContent-Disposition: form-data; name="{fieldname}"\r\n\r\n'
        ).encode()
        with self._lock:
            self._length += len(form) + len(reader)
            self._fields.append((form, reader))

    def add_form_file(self, fieldname: str, filename: str, reader: ReaderLen | None) -> None:
        """Add a file field named ``filename`` whose content comes from ``reader``."""
        if reader is None:
            return
        form = (
            f"--{self.boundary}\r\nContent-Disposition: form-data; "
            f'name="{fieldname}"; filename="{filename}"\r\n\r\n'
        ).encode()
        with self._lock:
            self._length += len(form) + len(reader)
            self._files.append((form, reader))

    def close_multipart(self) -> None:
        """Finish the body; raises MultipartError if already closed."""
        with self._lock:
            if self._closed:
                raise MultipartError("multipartreader already closed")
            self._form_close = f"\r\n--{self.boundary}--\r\n".encode()
            self._length += len(self._form_close)
            readers: list[ReaderLen] = [BytesReader(self._form_body)]
            for form, reader in (*self._fields, *self._files):
                readers.append(BytesReader(form))
                readers.append(reader)
            readers.append(BytesReader(self._form_close))
            self._reader = MultiReaderLen(*readers)
            self._closed = True

    def read(self, size: int = -1) -> bytes:
        """Read the encoded body; raises MultipartError before it is closed."""
        if not self._closed or self._reader is None:
            raise MultipartError("multipartreader not closed")
        return self._reader.read(size)

    def __len__(self) -> int:
        """Total encoded length of the body."""
        with self._lock:
            return self._length