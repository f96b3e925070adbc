"""Parallel block uploads that can be resumed."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Protocol

from requester.rio import ReaderAtLen, ReaderLen
from requester.speeds import RateLimit, Speeds
from requester.uploader.block import (
    BlockState,
    BufferedSplitUnit,
    FileBlock,
    MultiError,
    UploadInstanceState,
    split_block,
)
from requester.uploader.uploader import UploadStatus

logger = logging.getLogger(__name__)

GB = 1024 * 1024 * 1024
DEFAULT_PARALLEL = 4
DEFAULT_BLOCK_SIZE = 1 * GB
STATUS_INTERVAL = 3.0

UploadStatusFunc = Callable[[UploadStatus, threading.Event], None]


class MultiUpload(Protocol):
    """The server side of a block upload."""

    def precreate(self, file_size: int, policy: str) -> None:
        """Announce the upload; raises on failure."""

    def tmp_file(
        self, cancel_event: threading.Event, partseq: int, part_offset: int, reader: ReaderLen
    ) -> str:
        """Upload one block and return its checksum; raises on failure."""

    def create_super_file(self, policy: str, *checksums: str) -> None:
        """Join the uploaded blocks into the final file; raises on failure."""


@dataclass
class MultiUploaderConfig:
    """Settings of a parallel upload; zero values fall back to defaults."""

    parallel: int = 0
    block_size: int = 0
    max_rate: int = 0
    policy: str = ""


class _Canceled(Exception):
    pass


@dataclass
class _UploadWorker:
    id: int
    part_offset: int
    split_unit: BufferedSplitUnit | FileBlock
    checksum: str = ""


class MultiUploader:
    """Uploads a file in blocks, several at a time, retrying failed blocks."""

    def __init__(
        self,
        multi_upload: MultiUpload | None,
        file: ReaderAtLen | None,
        config: MultiUploaderConfig | None = None,
        resume_state: UploadInstanceState | None = None,
    ) -> None:
        self.multi_upload = multi_upload
        self.file = file
        self.config = config
        self.resume_state = resume_state
        self.on_execute: Callable[[], None] | None = None
        self.on_success: Callable[[], None] | None = None
        self.on_finish: Callable[[], None] | None = None
        self.on_cancel: Callable[[], None] | None = None
        self.on_error: Callable[[BaseException], None] | None = None
        self.on_upload_status: UploadStatusFunc | None = None
        self.status_interval = STATUS_INTERVAL
        self.instance_state_updated = threading.Event()
        self.err: BaseException | None = None
        self._workers: list[_UploadWorker] = []
        self._speeds = Speeds()
        self._rate_limit: RateLimit | None = None
        self._canceled = threading.Event()
        self._finished = threading.Event()
        self._terminal_error: BaseException | None = None
        self._lock = threading.Lock()
        self._execute_time = 0.0

    def _lazy_init(self) -> MultiUploaderConfig:
        if self.config is None:
            self.config = MultiUploaderConfig()
        if self.config.parallel <= 0:
            self.config.parallel = DEFAULT_PARALLEL
        if self.config.block_size <= 0:
            self.config.block_size = DEFAULT_BLOCK_SIZE
        return self.config

    def _workers_from_state(self, state: UploadInstanceState) -> list[_UploadWorker]:
        assert self.file is not None
        workers = []
        for block in state.block_list:
            if not block.checksum:
                unit: BufferedSplitUnit | FileBlock = BufferedSplitUnit(
                    self.file, block.range, self._speeds, self._rate_limit
                )
            else:
                unit = FileBlock(
                    self.file, block.range, readed=block.range.end - block.range.begin
                )
            workers.append(_UploadWorker(block.id, block.range.begin, unit, block.checksum))
        return workers

    def execute(self) -> None:
        """Upload every block; the outcome is reported through the event callbacks."""
        if self.file is None:
            raise ValueError("file is None")
        if self.multi_upload is None:
            raise ValueError("multi_upload is None")
        config = self._lazy_init()
        self._finished = threading.Event()
        if config.max_rate > 0:
            self._rate_limit = RateLimit(config.max_rate)
        try:
            if self.resume_state is not None:
                self._workers = self._workers_from_state(self.resume_state)
                logger.info("upload task CREATED from instance state")
            else:
                blocks = split_block(len(self.file), config.block_size)
                self._workers = self._workers_from_state(UploadInstanceState(blocks))
                logger.info(
                    "upload task CREATED: block size: %d, num: %d",
                    config.block_size,
                    len(self._workers),
                )

            self._execute_time = time.monotonic()
            if self.on_execute is not None:
                self.on_execute()
            self._start_status_reporter()

            canceled = False
            self.err = None
            try:
                self._upload()
            except _Canceled:
                canceled = True
            except Exception as exc:
                self.err = exc
            self._finished.set()

            if canceled:
                if self.on_cancel is not None:
                    self.on_cancel()
            elif self.err is not None:
                if self.on_error is not None:
                    self.on_error(self.err)
            elif self.on_success is not None:
                self.on_success()
            if self.on_finish is not None:
                self.on_finish()
        finally:
            self._finished.set()
            if self._rate_limit is not None:
                self._rate_limit.stop()

    def _retry(self, worker: _UploadWorker, queue: deque[_UploadWorker], exc: BaseException) -> None:
        logger.warning("upload err: %s, id: %d", exc, worker.id)
        worker.split_unit.seek(0)
        queue.append(worker)

    def _upload_one(self, worker: _UploadWorker, queue: deque[_UploadWorker]) -> None:
        assert self.multi_upload is not None
        if self._canceled.is_set():
            return
        try:
            checksum = self.multi_upload.tmp_file(
                self._canceled, worker.id, worker.part_offset, worker.split_unit
            )
        except MultiError as exc:
            if exc.terminated:
                with self._lock:
                    if self._terminal_error is None:
                        self._terminal_error = exc.err
                self._canceled.set()
                return
            self._retry(worker, queue, exc)
            return
        except Exception as exc:
            if self._canceled.is_set():
                return
            self._retry(worker, queue, exc)
            return
        if self._canceled.is_set():
            return
        worker.checksum = checksum
        self.instance_state_updated.set()

    def _upload(self) -> None:
        assert self.multi_upload is not None and self.file is not None and self.config is not None
        self.multi_upload.precreate(len(self.file), self.config.policy)
        queue: deque[_UploadWorker] = deque(w for w in self._workers if not w.checksum)
        while queue:
            with ThreadPoolExecutor(max_workers=self.config.parallel) as pool:
                futures = []
                while queue:
                    futures.append(pool.submit(self._upload_one, queue.popleft(), queue))
            for future in futures:
                future.result()

        if self._canceled.is_set():
            if self._terminal_error is not None:
                raise self._terminal_error
            raise _Canceled()

        self.multi_upload.create_super_file(
            self.config.policy, *(w.checksum for w in self._workers)
        )

    def _start_status_reporter(self) -> None:
        if self.on_upload_status is None:
            return
        callback = self.on_upload_status
        finished = self._finished

        def run() -> None:
            while not finished.wait(self.status_interval):
                readed = sum(w.split_unit.readed for w in self._workers)
                elapsed = time.monotonic() - self._execute_time
                callback(
                    UploadStatus(
                        total_size=len(self.file),
                        uploaded=readed,
                        speeds_per_second=self._speeds.get_speeds(),
                        time_elapsed=timedelta(seconds=int(elapsed * 10) / 10),
                    ),
                    self.instance_state_updated,
                )

        threading.Thread(target=run, daemon=True).start()

    def instance_state(self) -> UploadInstanceState:
        """Resume information reflecting the blocks uploaded so far."""
        return UploadInstanceState(
            [BlockState(w.id, w.split_unit.range, w.checksum) for w in self._workers]
        )

    def cancel(self) -> None:
        """Stop the upload; blocks in flight are abandoned."""
        self._canceled.set()