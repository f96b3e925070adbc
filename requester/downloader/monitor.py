"""Supervision of the workers of one download."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from requester.downloader.common import MIN_PARALLEL_SIZE, StatusCode
from requester.downloader.instance_state import InstanceState
from requester.downloader.loadbalance import ResetController
from requester.downloader.worker import Worker, sort_by_left_desc
from requester.transfer import (
    DownloadInstanceInfo,
    DownloadStatus,
    Range,
    RangeListGen,
)

logger = logging.getLogger(__name__)

MAX_RESET_NUM = 80

RangeWorkerFunc = Callable[[int, Worker], bool]

_SPLITTABLE = (StatusCode.DOWNLOADING, StatusCode.FAILED, StatusCode.NET_ERROR)
_NOT_RESETTABLE = (
    StatusCode.PENDING,
    StatusCode.RESETED,
    StatusCode.WAIT_TO_WRITE,
    StatusCode.PAUSED,
)


class NoWorkersError(RuntimeError):
    """Raised when a download is started without any worker."""

    def __init__(self) -> None:
        super().__init__("no workers")


def _start(worker: Worker) -> threading.Thread:
    thread = threading.Thread(target=worker.execute, daemon=True)
    thread.start()
    return thread


class Monitor:
    """Runs the workers, rebalances their ranges and restarts stalled ones."""

    def __init__(
        self,
        status: DownloadStatus | None = None,
        reset_controller: ResetController | None = None,
    ) -> None:
        self.workers: list[Worker] = []
        self.status = status if status is not None else DownloadStatus()
        self.reset_controller = (
            reset_controller if reset_controller is not None else ResetController(MAX_RESET_NUM)
        )
        self.instance_state: InstanceState | None = None
        self.range_gen: RangeListGen | None = None
        self.is_reload_worker = False
        self.err: BaseException | None = None
        self.completed = threading.Event()
        self.monitor_interval = 0.99
        self.add_work_interval = 0.099
        self.check_interval = 1.0
        self._last_available_index = 0
        self._max_speeds = 0
        self._lock = threading.Lock()

    def _snapshot(self) -> list[Worker]:
        with self._lock:
            return list(self.workers)

    def append(self, worker: Worker | None) -> None:
        """Add a worker; None is ignored."""
        if worker is None:
            return
        with self._lock:
            self.workers.append(worker)

    def get_available_worker(self) -> Worker | None:
        """A finished worker that can take new work, searching round-robin."""
        workers = self._snapshot()
        count = len(workers)
        start = self._last_available_index
        for index in (i % count for i in range(start, start + count)):
            worker = workers[index]
            if worker.completed():
                self._last_available_index = index
                return worker
        return None

    def get_all_workers_range(self) -> list[Range | None]:
        return [worker.range for worker in self._snapshot()]

    def num_left_workers(self) -> int:
        return sum(1 for worker in self._snapshot() if not worker.completed())

    def is_left_workers_all_failed(self) -> bool:
        """True if some workers are unfinished and every one of them failed."""
        left = [worker for worker in self._snapshot() if not worker.completed()]
        return bool(left) and all(worker.failed() for worker in left)

    def reset_failed_and_net_error_workers(self) -> None:
        """Restart workers stopped by a network error or a failed read."""
        for worker in self._snapshot():
            if not self.reset_controller.can_reset():
                continue
            code = worker.status.status_code
            if code not in (StatusCode.NET_ERROR, StatusCode.FAILED):
                continue
            logger.debug("monitor: reset %s worker, id: %d", code.name, worker.id)
            worker.reset()
            self.reset_controller.add_reset_num()

    def range_worker(self, func: RangeWorkerFunc) -> None:
        """Call ``func(index, worker)`` for each worker until it returns False."""
        for index, worker in enumerate(self._snapshot()):
            if not func(index, worker):
                break

    def pause(self) -> None:
        for worker in self._snapshot():
            worker.pause()

    def resume(self) -> None:
        for worker in self._snapshot():
            worker.resume()

    def try_add_new_work(self) -> None:
        """Give the next generated range to an idle worker, if allowed."""
        gen = self.range_gen
        if gen is None or gen.is_done():
            return
        if not self.reset_controller.can_reset():
            return
        worker = self.get_available_worker()
        if worker is None:
            return
        new_range = next(iter(gen), None)
        if new_range is None:
            return
        worker.set_range(new_range)
        worker.clear_status()
        self.reset_controller.add_reset_num()
        logger.debug("monitor: worker[%d] add new range: %s", worker.id, new_range.show_details())
        _start(worker)

    def dynamic_split_worker(self, worker: Worker) -> None:
        """Hand the second half of ``worker``'s range to an idle worker."""
        if not self.reset_controller.can_reset():
            return
        if worker.status.status_code not in _SPLITTABLE:
            return
        available = self.get_available_worker()
        if available is None or available is worker or worker.range is None:
            return
        worker_range = worker.range
        end = worker_range.end
        middle = (worker_range.begin + end) // 2
        if end - middle < MIN_PARALLEL_SIZE // 5:
            return
        available.set_range(Range(begin=middle, end=end))
        available.clear_status()
        worker_range.end = middle
        self.reset_controller.add_reset_num()
        logger.debug("monitor: worker duplicated: %d <- %d", available.id, worker.id)
        _start(available)

    def reset_worker(self, worker: Worker) -> None:
        """Restart a worker that has stalled at zero speed."""
        if not self.reset_controller.can_reset():
            return
        if worker.completed():
            return
        if worker.speeds_per_second() != 0:
            return
        if worker.status.status_code in _NOT_RESETTABLE:
            return
        self.reset_controller.add_reset_num()
        logger.debug("monitor: worker[%d] reload", worker.id)
        worker.reset()

    def _watch_completion(self, cancel_event: threading.Event) -> None:
        while not self.completed.wait(self.check_interval):
            if cancel_event.is_set():
                return
            workers = self._snapshot()
            complete = 0
            for worker in workers:
                code = worker.status.status_code
                if code is StatusCode.INTERNAL_ERROR:
                    self.err = worker.err
                    self.completed.set()
                    return
                if code in (StatusCode.SUCCESSED, StatusCode.CANCELED):
                    complete += 1
            gen = self.range_gen
            if complete >= len(workers) and (gen is None or gen.is_done()):
                self.completed.set()
                return

    def _on_tick(self) -> None:
        self.reset_failed_and_net_error_workers()
        self.status.update_speeds()
        if self.instance_state is not None:
            self.instance_state.put(
                DownloadInstanceInfo(self.status, self.get_all_workers_range())
            )
        if not self.is_reload_worker:
            return
        speeds = self.status.speeds_per_second()
        self.status.update_max_speeds(speeds)
        self._max_speeds = max(self._max_speeds, speeds)
        all_failed = self.is_left_workers_all_failed()
        if speeds < self._max_speeds // 6 or all_failed:
            if all_failed:
                logger.debug("monitor: all workers failed")
            self.status.clear_max_speeds()
            self._max_speeds = 0
            with self._lock:
                sort_by_left_desc(self.workers)
            for worker in self._snapshot():
                self.dynamic_split_worker(worker)
            for worker in self._snapshot():
                self.reset_worker(worker)

    def _cancel_all(self) -> None:
        for worker in self._snapshot():
            try:
                worker.cancel()
            except RuntimeError as exc:
                logger.debug("cancel failed, worker id: %d, err: %s", worker.id, exc)

    def execute(self, cancel_event: threading.Event | None = None) -> None:
        """Run until every worker is done, one fails fatally, or ``cancel_event`` is set.

        A fatal worker error is left in ``err``.
        """
        if not self.workers:
            self.err = NoWorkersError()
            raise self.err
        if cancel_event is None:
            cancel_event = threading.Event()
        self.completed = threading.Event()
        for worker in self._snapshot():
            worker.download_status = self.status
            _start(worker)
        threading.Thread(target=self._watch_completion, args=(cancel_event,), daemon=True).start()

        next_tick = time.monotonic() + self.monitor_interval
        while True:
            if cancel_event.is_set():
                self._cancel_all()
                return
            if self.completed.wait(self.add_work_interval):
                return
            if cancel_event.is_set():
                continue
            now = time.monotonic()
            if now >= next_tick:
                self._on_tick()
                next_tick = now + self.monitor_interval
            self.try_add_new_work()