"""A download worker that fetches one byte range of a file."""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Any

import requests

from requester.downloader.common import (
    CACHE_SIZE,
    StatusCode,
    WorkerStatus,
    parse_content_range,
)
from requester.http_client import HTTPClient
from requester.rio import WriterAt
from requester.speeds import Speeds
from requester.transfer import DownloadStatus, Range

logger = logging.getLogger(__name__)

_READ_ERRORS = (requests.RequestException, OSError, ValueError)


def _content_length(resp: Any) -> int:
    value = resp.headers.get("Content-Length")
    if value is None:
        return -1
    try:
        return int(value)
    except ValueError:
        return -1


def _status_line(resp: Any) -> str:
    return f"{resp.status_code} {resp.reason or ''}".strip()


class Worker:
    """Downloads its range and writes the data at the matching offset."""

    def __init__(
        self,
        worker_id: int,
        url: str,
        writer: WriterAt | None = None,
        client: HTTPClient | None = None,
    ) -> None:
        self.id = worker_id
        self.url = url
        self.writer = writer
        self.client = client
        self.referer = ""
        self.accept_ranges = ""
        self.total_size = 0
        self.range: Range | None = None
        self.first_resp: Any = None
        self.write_lock: threading.Lock | None = None
        self.download_status: DownloadStatus | None = None
        self.cache_size = CACHE_SIZE
        self.speeds_stat = Speeds()
        self.status = WorkerStatus()
        self.err: BaseException | None = None
        self._exec_lock = threading.Lock()
        self._pause_event = threading.Event()
        self._cancel_event: threading.Event | None = None
        self._reset_event: threading.Event | None = None
        self._current_resp: Any = None

    def _lazy_init(self) -> None:
        if self.client is None:
            self.client = HTTPClient()
        if self.range is None:
            self.range = Range()
        if self.range.begin == 0 and self.range.end == 0:
            # Nothing assigned: download the whole file in one piece.
            self.accept_ranges = ""
            self.range.end = -2

    def set_range(self, new_range: Range) -> None:
        """Assign the range, reusing the current range object if there is one."""
        if self.range is None:
            self.range = new_range
            return
        self.range.begin = new_range.begin
        self.range.end = new_range.end

    def speeds_per_second(self) -> int:
        return self.speeds_stat.get_speeds()

    def pause(self) -> None:
        """Ask the running download to stop where it is."""
        self._lazy_init()
        if not self.accept_ranges:
            logger.warning("worker %d does not support pause", self.id)
            return
        if self.status.status_code is StatusCode.PAUSED:
            return
        self._pause_event.set()
        self.status.status_code = StatusCode.PAUSED

    def _start(self) -> threading.Thread:
        thread = threading.Thread(target=self.execute, daemon=True)
        thread.start()
        return thread

    def resume(self) -> None:
        """Continue a paused download in the background."""
        if self.status.status_code is not StatusCode.PAUSED:
            return
        self._start()

    def _close_current(self) -> None:
        resp = self._current_resp
        if resp is not None:
            with contextlib.suppress(Exception):
                resp.close()

    def cancel(self) -> None:
        """Stop the download; raises RuntimeError if it never started."""
        if self._cancel_event is None:
            raise RuntimeError("cancelFunc not set")
        self._cancel_event.set()
        self._close_current()

    def reset(self) -> None:
        """Drop the current connection and start over in the background."""
        if self._reset_event is None:
            logger.debug("worker %d: resetFunc not set", self.id)
            return
        self._reset_event.set()
        self._close_current()
        self.clear_status()
        self._start()

    def canceled(self) -> bool:
        return self.status.status_code is StatusCode.CANCELED

    def completed(self) -> bool:
        return self.status.status_code in (StatusCode.SUCCESSED, StatusCode.CANCELED)

    def failed(self) -> bool:
        return self.status.status_code in (
            StatusCode.FAILED,
            StatusCode.INTERNAL_ERROR,
            StatusCode.TOO_MANY_CONNECTIONS,
            StatusCode.NET_ERROR,
        )

    def clear_status(self) -> None:
        self.status.status_code = StatusCode.INIT

    def _fail(self, code: StatusCode, err: BaseException) -> None:
        self.status.status_code = code
        self.err = err

    def execute(self) -> None:
        """Download the range; the outcome is left in ``status`` and ``err``."""
        self._lazy_init()
        assert self.range is not None and self.client is not None
        with self._exec_lock:
            self.status.status_code = StatusCode.INIT
            self._pause_event.clear()
            single = not self.accept_ranges

            if not single:
                rlen = self.range.length()
                if rlen <= 0:
                    if rlen < 0:
                        logger.debug("range length is negative at begin: %s", self.range.show_details())
                    self.status.status_code = StatusCode.SUCCESSED
                    return

            cancel_event = threading.Event()
            reset_event = threading.Event()
            self._cancel_event = cancel_event
            self._reset_event = reset_event

            header: dict[str, str] = {}
            if self.referer:
                header["Referer"] = self.referer
            if self.accept_ranges and self.range.length() >= 0:
                header["Range"] = f"{self.accept_ranges}={self.range.begin}-{self.range.end - 1}"

            self.status.status_code = StatusCode.PENDING
            using_first = self.first_resp is not None
            resp = self.first_resp
            if resp is None:
                self.err = None
                try:
                    resp = self.client.req("GET", self.url, None, header)
                except (requests.RequestException, OSError) as exc:
                    self._fail(StatusCode.NET_ERROR, exc)
                    return
            self._current_resp = resp
            try:
                self._download(resp, single, using_first, cancel_event, reset_event)
            finally:
                self._current_resp = None
                self.first_resp = None
                with contextlib.suppress(Exception):
                    resp.close()

    def _check_response(self, resp: Any, single: bool, using_first: bool) -> bool:
        code = resp.status_code
        if code in (200, 206):
            pass
        elif code in (416, 403, 404):
            self._fail(StatusCode.INTERNAL_ERROR, requests.HTTPError(_status_line(resp), response=resp))
            return False
        elif code == 406:
            self._fail(StatusCode.NET_ERROR, requests.HTTPError(_status_line(resp), response=resp))
            return False
        elif code in (429, 509):
            self._fail(
                StatusCode.TOO_MANY_CONNECTIONS,
                requests.HTTPError(_status_line(resp), response=resp),
            )
            return False
        else:
            self._fail(
                StatusCode.NET_ERROR,
                requests.HTTPError(
                    f"unexpected http status code, {code}, {_status_line(resp)}", response=resp
                ),
            )
            return False

        if single:
            return True
        assert self.range is not None
        content_length = _content_length(resp)
        range_length = self.range.length()
        if content_length != range_length and not using_first:
            self._fail(
                StatusCode.NET_ERROR,
                ValueError(f"Content-Length is unexpected: {content_length}, need {range_length}"),
            )
            return False
        if self.total_size > 0:
            total = parse_content_range(resp.headers.get("Content-Range", ""))
            if total > 0 and total != self.total_size:
                # A different file behind the URL: stop the whole download.
                self._fail(
                    StatusCode.INTERNAL_ERROR,
                    ValueError(
                        f"Content-Range total length is unexpected: {total}, need {self.total_size}"
                    ),
                )
                return False
        return True

    def _interrupted(self, cancel_event: threading.Event, reset_event: threading.Event) -> bool:
        if cancel_event.is_set():
            self.status.status_code = StatusCode.CANCELED
            return True
        if reset_event.is_set():
            self.status.status_code = StatusCode.RESETED
            return True
        if self._pause_event.is_set():
            self.status.status_code = StatusCode.PAUSED
            return True
        return False

    def _download(
        self,
        resp: Any,
        single: bool,
        using_first: bool,
        cancel_event: threading.Event,
        reset_event: threading.Event,
    ) -> None:
        if not self._check_response(resp, single, using_first):
            return
        assert self.range is not None
        chunks = resp.iter_content(chunk_size=max(self.cache_size, 1))
        write_lock = self.write_lock if self.write_lock is not None else contextlib.nullcontext()

        while True:
            if self._interrupted(cancel_event, reset_event):
                return
            self.status.status_code = StatusCode.DOWNLOADING

            data = b""
            eof = False
            read_err: BaseException | None = None
            if single or self.range.length() > 0:
                try:
                    chunk = next(chunks, None)
                except _READ_ERRORS as exc:
                    chunk = b""
                    read_err = exc
                if chunk is None:
                    eof = True
                else:
                    data = chunk

            if self._interrupted(cancel_event, reset_event):
                return

            n = len(data)
            if n:
                if self.download_status is not None:
                    self.download_status.add_speeds_downloaded(n)
                self.speeds_stat.add(n)

            if not single:
                range_length = self.range.length()
                if range_length <= 0:
                    self._fail(StatusCode.CANCELED, RuntimeError("worker already complete"))
                    return
                if n > range_length:
                    data = data[:range_length]
                    n = range_length
                    eof = True

            if self.writer is not None and data:
                self.status.status_code = StatusCode.WAIT_TO_WRITE
                try:
                    with write_lock:
                        self.writer.write_at(data, self.range.begin)
                except OSError as exc:
                    self._fail(StatusCode.INTERNAL_ERROR, exc)
                    return
                self.status.status_code = StatusCode.DOWNLOADING

            self.range.add_begin(n)
            if self.download_status is not None:
                self.download_status.add_downloaded(n)
                if single:
                    self.download_status.add_total_size(n)

            if read_err is not None:
                self._fail(StatusCode.FAILED, read_err)
                return

            rlen = self.range.length()
            if not single and rlen <= 0:
                if rlen < 0:
                    logger.debug("range length is negative at end: %s", self.range.show_details())
                self.status.status_code = StatusCode.SUCCESSED
                return
            if eof:
                if single:
                    self.status.status_code = StatusCode.SUCCESSED
                else:
                    self._fail(StatusCode.FAILED, EOFError("unexpected EOF"))
                return


def sort_by_left_desc(workers: list[Worker]) -> list[Worker]:
    """Sort ``workers`` in place, most bytes left first, and return the list."""
    workers.sort(key=lambda w: w.range.length() if w.range is not None else 0, reverse=True)
    return workers