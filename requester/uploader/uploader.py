"""Single-request uploads with progress reporting."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Iterator

import requests

from requester.http_client import HTTPClient
from requester.rio import ReaderLen

KB = 1024
BUFIO_READ_SIZE = 64 * KB

CheckFunc = Callable[["requests.Response | None", "BaseException | None"], None]


class CountingReader:
    """Wraps a length-aware reader and counts the bytes read from it."""

    def __init__(self, reader: ReaderLen) -> None:
        self._reader = reader
        self._readed = 0
        self._lock = threading.Lock()

    def read(self, size: int = -1) -> bytes:
        data = self._reader.read(size)
        with self._lock:
            self._readed += len(data)
        return data

    @property
    def readed(self) -> int:
        with self._lock:
            return self._readed

    def __len__(self) -> int:
        return len(self._reader)


@dataclass(frozen=True)
class UploadStatus:
    """A snapshot of upload progress."""

    total_size: int
    uploaded: int
    speeds_per_second: int
    time_elapsed: timedelta


class Uploader:
    """Posts the whole content of a reader to a URL in one request."""

    def __init__(self, url: str, reader: ReaderLen, client: HTTPClient | None = None) -> None:
        self.url = url
        self.reader = CountingReader(reader)
        self.content_type = ""
        self.client = client
        self.check_func: CheckFunc | None = None
        self.on_execute: Callable[[], None] | None = None
        self.on_finish: Callable[[], None] | None = None
        self.status_interval = 1.0
        self.executed = False
        self._execute_time = 0.0
        self._finished = threading.Event()

    def _prepare_client(self) -> HTTPClient:
        if self.client is None:
            self.client = HTTPClient()
        self.client.timeout = 0
        self.client.response_header_timeout = 10.0
        return self.client

    def _send(self) -> requests.Response:
        client = self._prepare_client()
        header = {"Content-Type": self.content_type} if self.content_type else {}
        return client.req("POST", self.url, self.reader, header)

    def execute(self) -> None:
        """Upload, then hand the response or the error to the check function."""
        if self.on_execute is not None:
            self.on_execute()
        self._execute_time = time.monotonic()
        self.executed = True
        resp: Any = None
        err: BaseException | None = None
        try:
            resp = self._send()
        except (requests.RequestException, OSError) as exc:
            err = exc
        self._finished.set()
        if self.check_func is not None:
            self.check_func(resp, err)
        if self.on_finish is not None:
            self.on_finish()

    def iter_status(self) -> Iterator[UploadStatus]:
        """Yield progress once per interval until the upload finishes."""
        interval = self.status_interval
        while not self._finished.is_set():
            if not self.executed:
                time.sleep(interval)
                continue
            old = self.reader.readed
            time.sleep(interval)
            readed = self.reader.readed
            elapsed = time.monotonic() - self._execute_time
            yield UploadStatus(
                total_size=len(self.reader),
                uploaded=readed,
                speeds_per_second=readed - old,
                time_elapsed=timedelta(milliseconds=int(elapsed * 100) * 10),
            )