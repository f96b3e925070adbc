"""Multi-connection downloader that splits a file into ranges and resumes them."""

from __future__ import annotations

import itertools
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable
from urllib.parse import urlsplit

import requests

from requester.downloader.common import (
    MIN_PARALLEL_SIZE,
    Config,
    DownloadFirstInfo,
    InstanceStateStorageFormat,
)
from requester.downloader.instance_state import InstanceState
from requester.downloader.loadbalance import (
    LoadBalancerCompareFunc,
    LoadBalancerResponse,
    LoadBalancerResponseList,
    default_load_balancer_compare,
)
from requester.downloader.monitor import Monitor, NoWorkersError, RangeWorkerFunc
from requester.downloader.worker import Worker
from requester.http_client import HTTPClient
from requester.speeds import RateLimit
from requester.transfer import (
    DownloadStatus,
    Range,
    RangeGenMode,
    block_size_range_gen,
    default_range_gen,
)

logger = logging.getLogger(__name__)

KB = 1024
MB = 1024 * KB
GB = 1024 * MB

DEFAULT_ACCEPT_RANGES = "bytes"
BLOCK_SIZE_LIST = (128 * KB, 256 * KB, 1024 * KB, 2 * MB, 4 * MB, 999 * GB)
DOWNLOAD_TIMEOUT = 300.0
LOAD_BALANCER_TIMEOUT = 5.0
LOAD_BALANCER_CONCURRENCY = 4
STATUS_INTERVAL = 1.0

DURLCheckFunc = Callable[[HTTPClient, str], "tuple[int, Any]"]
StatusCodeBodyCheckFunc = Callable[[Any], None]
DownloadStatusFunc = Callable[[DownloadStatus, Callable[[RangeWorkerFunc], None]], None]

_REQUEST_ERRORS = (requests.RequestException, OSError)


class DownloadError(Exception):
    """The download server answered with an error status."""


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


def _is_error_status(resp: Any) -> bool:
    return resp.status_code // 100 in (4, 5)


def default_durl_check(client: HTTPClient, durl: str) -> tuple[int, Any]:
    """GET ``durl`` and return its Content-Length (-1 if unknown) and the response."""
    resp = client.req("GET", durl, None, None)
    return _content_length(resp), resp


class Downloader:
    """Downloads ``durl`` into ``writer`` over several connections."""

    def __init__(
        self,
        durl: str,
        writer: Any = None,
        config: Config | None = None,
        client: HTTPClient | None = None,
    ) -> None:
        self.durl = durl
        self.writer = writer
        self.config = config
        self.client = client
        self.first_info: DownloadFirstInfo | None = None
        self.durl_check: DURLCheckFunc | None = None
        self.load_balancer_compare: LoadBalancerCompareFunc | None = None
        self.status_code_body_check: StatusCodeBodyCheckFunc | None = None
        self.monitor: Monitor | None = None
        self.instance_state: InstanceState | None = None
        self.on_execute: Callable[[], None] | None = None
        self.on_success: Callable[[], None] | None = None
        self.on_finish: Callable[[], None] | None = None
        self.on_pause: Callable[[], None] | None = None
        self.on_resume: Callable[[], None] | None = None
        self.on_cancel: Callable[[], None] | None = None
        self.on_download_status: DownloadStatusFunc | None = None
        self.status_interval = STATUS_INTERVAL
        self.execute_time = 0.0
        self._load_balancers: list[str] = []
        self._cancel_event: threading.Event | None = None

    def add_load_balance_server(self, *args: str) -> None:
        """Add mirror URLs that may serve parts of the file."""
        self._load_balancers.extend(args)

    def set_file_content_length(self, length: int) -> None:
        """Skip probing the URL by stating the file length up front."""
        if self.first_info is None:
            self.first_info = DownloadFirstInfo(
                content_length=length, accept_ranges=DEFAULT_ACCEPT_RANGES
            )

    def _lazy_init(self) -> None:
        if self.config is None:
            self.config = Config()
        if self.client is None:
            self.client = HTTPClient()
            self.client.timeout = DOWNLOAD_TIMEOUT
        if self.monitor is None:
            self.monitor = Monitor()
        if self.durl_check is None:
            self.durl_check = default_durl_check
        if self.load_balancer_compare is None:
            self.load_balancer_compare = default_load_balancer_compare

    def select_parallel(
        self,
        single: bool,
        max_parallel: int,
        total_size: int,
        instance_ranges: list[Range] | None,
    ) -> int:
        """Number of connections to use."""
        if single:
            parallel = 1
        elif instance_ranges:
            parallel = len(instance_ranges)
        else:
            parallel = max_parallel
            if parallel > total_size // MIN_PARALLEL_SIZE:
                parallel = total_size // MIN_PARALLEL_SIZE + 1
        return max(parallel, 1)

    def select_block_size_and_init_range_gen(
        self, single: bool, status: DownloadStatus, parallel: int
    ) -> int:
        """Pick the block size and give ``status`` a range generator if it lacks one.

        Returns -1 for a single-connection download; raises ValueError for an
        unknown range mode.
        """
        if single:
            return -1
        assert self.config is not None
        gen = status.range_gen
        if gen is not None:
            return gen.load_block_size()
        mode = self.config.mode
        if mode == RangeGenMode.DEFAULT:
            gen = default_range_gen(status.total_size, 0, 0, parallel)
            block_size = gen.load_block_size()
        elif mode == RangeGenMode.BLOCK_SIZE:
            total_size = status.total_size
            if total_size < 2 * MB:
                block_size = BLOCK_SIZE_LIST[1]
            elif total_size < 10 * MB:
                block_size = BLOCK_SIZE_LIST[2]
            elif total_size < 80 * MB:
                block_size = BLOCK_SIZE_LIST[3]
            else:
                block_size = BLOCK_SIZE_LIST[4]
            gen = block_size_range_gen(total_size, 0, block_size)
        else:
            raise ValueError("Unknown RangeGenMode")
        status.range_gen = gen
        return block_size

    def select_cache_size(self, conf_cache_size: int, block_size: int) -> int:
        """The read buffer size, never larger than a block."""
        if 0 < block_size < conf_cache_size:
            return block_size
        return conf_cache_size

    def _probe_load_balancer(self, url: str) -> LoadBalancerResponse | None:
        assert self.durl_check is not None and self.first_info is not None
        assert self.load_balancer_compare is not None and self.config is not None
        try:
            length, resp = self.durl_check(self.client, url)
        except _REQUEST_ERRORS as exc:
            logger.debug("load balancer error: %s", exc)
            return None
        try:
            if _is_error_status(resp):
                if self.status_code_body_check is not None:
                    try:
                        self.status_code_body_check(resp)
                    except Exception as exc:
                        logger.debug("load balancer status error: %s", exc)
                        return None
                logger.debug("load balancer status error: %s", _status_line(resp))
                return None
            if self.first_info.content_length != length:
                logger.debug("load balancer Content-Length not equal to main server")
                return None
            if not self.load_balancer_compare(self.first_info.to_map(), resp):
                logger.debug("load balancer not equal to main server")
                return None
            request = getattr(resp, "request", None)
            final_url = getattr(request, "url", None) or url
            referer = request.headers.get("Referer", "") if request is not None else ""
        finally:
            resp.close()
        if self.config.try_http:
            final_url = urlsplit(final_url)._replace(scheme="http").geturl()
        logger.debug("load balance task: URL: %s, Referer: %s", final_url, referer)
        return LoadBalancerResponse(url=final_url, referer=referer)

    def _check_load_balancers(self) -> LoadBalancerResponseList:
        assert self.client is not None
        responses = [LoadBalancerResponse(url=self.durl)]
        if self._load_balancers:
            saved_timeout = self.client.timeout
            self.client.timeout = LOAD_BALANCER_TIMEOUT
            try:
                with ThreadPoolExecutor(max_workers=LOAD_BALANCER_CONCURRENCY) as pool:
                    found = list(pool.map(self._probe_load_balancer, self._load_balancers))
            finally:
                self.client.timeout = saved_timeout
            responses.extend(r for r in found if r is not None)
        return LoadBalancerResponseList(responses)

    def _probe_main_server(self) -> DownloadFirstInfo:
        assert self.durl_check is not None
        content_length, resp = self.durl_check(self.client, self.durl)
        try:
            if _is_error_status(resp):
                if self.status_code_body_check is not None:
                    self.status_code_body_check(resp)
                raise DownloadError(_status_line(resp))
            accept_ranges = DEFAULT_ACCEPT_RANGES if content_length >= 0 else ""
            info = DownloadFirstInfo(
                content_length=content_length,
                content_md5=resp.headers.get("Content-MD5", ""),
                content_crc32=resp.headers.get("x-bs-meta-crc32", ""),
                accept_ranges=accept_ranges,
                referer=resp.headers.get("Referer", ""),
            )
        finally:
            resp.close()
        logger.debug("download task: URL: %s", self.durl)
        return info

    def _init_instance_state(self, format: InstanceStateStorageFormat) -> None:
        if self.instance_state is not None:
            raise RuntimeError("already initInstanceState")
        assert self.config is not None
        if not self.config.is_test and self.config.instance_state_path:
            self.instance_state = InstanceState.from_path(self.config.instance_state_path, format)
        else:
            self.instance_state = InstanceState(None, format)

    def _remove_instance_state(self) -> None:
        assert self.config is not None
        if self.instance_state is not None:
            self.instance_state.close()
        if not self.config.is_test and self.config.instance_state_path:
            try:
                os.remove(self.config.instance_state_path)
            except OSError as exc:
                logger.debug("remove instance state error: %s", exc)

    def _preallocate(self, size: int) -> None:
        fileno = getattr(self.writer, "fileno", None)
        if not callable(fileno):
            return
        try:
            os.ftruncate(fileno(), size)
        except (OSError, ValueError) as exc:
            logger.debug("truncate file error: %s", exc)

    def _start_status_reporter(self, status: DownloadStatus, stop: threading.Event) -> None:
        callback = self.on_download_status
        monitor = self.monitor
        if callback is None or monitor is None:
            return

        def run() -> None:
            while not stop.wait(self.status_interval):
                callback(status, monitor.range_worker)

        threading.Thread(target=run, daemon=True).start()

    def execute(self) -> None:
        """Download the file; raises the first fatal error encountered."""
        self._lazy_init()
        assert self.config is not None and self.monitor is not None
        config = self.config
        if self.first_info is None:
            self.first_info = self._probe_main_server()
        elif not self.first_info.accept_ranges:
            self.first_info.accept_ranges = DEFAULT_ACCEPT_RANGES
        info = self.first_info

        lb_list = self._check_load_balancers()
        single = not info.accept_ranges

        saved = None
        if not single:
            self._init_instance_state(config.instance_state_storage_format)
            assert self.instance_state is not None
            saved = self.instance_state.get()
        is_instance = saved is not None
        ranges: list[Range] = list(saved.ranges or []) if is_instance else []

        if saved is not None and saved.download_status is not None:
            status = saved.download_status
        else:
            status = DownloadStatus()
            status.total_size = info.content_length

        rate_limit: RateLimit | None = None
        if config.max_rate > 0:
            rate_limit = RateLimit(config.max_rate)
            status.rate_limit = rate_limit

        state_removed = False
        try:
            err = self._run(status, ranges, single, lb_list)
            if err is None and not single:
                self._remove_instance_state()
                state_removed = True
        finally:
            if rate_limit is not None:
                rate_limit.stop()
            if not state_removed and self.instance_state is not None:
                self.instance_state.close()
        if err is not None:
            raise err

    def _run(
        self,
        status: DownloadStatus,
        ranges: list[Range],
        single: bool,
        lb_list: LoadBalancerResponseList,
    ) -> BaseException | None:
        assert self.config is not None and self.monitor is not None
        assert self.first_info is not None
        config = self.config
        monitor = self.monitor

        parallel = self.select_parallel(single, config.max_parallel, status.total_size, ranges)
        block_size = self.select_block_size_and_init_range_gen(single, status, parallel)
        cache_size = self.select_cache_size(config.cache_size, block_size)
        logger.debug("download task CREATED: parallel: %d, cache size: %d", parallel, cache_size)

        writer = None
        if not config.is_test:
            self._preallocate(status.total_size)
            writer = self.writer

        if not ranges:
            if single:
                ranges = [Range()]
            else:
                ranges = list(itertools.islice(status.range_gen, parallel))

        monitor.workers = []
        write_lock = threading.Lock()
        for index, worker_range in enumerate(ranges):
            balancer = lb_list.sequential_get()
            if balancer is None:
                continue
            worker = Worker(index, balancer.url, writer, self.client)
            worker.write_lock = write_lock
            worker.referer = balancer.referer
            worker.total_size = self.first_info.content_length
            worker.accept_ranges = self.first_info.accept_ranges
            worker.cache_size = cache_size
            worker.set_range(worker_range)
            monitor.append(worker)

        monitor.status = status
        monitor.range_gen = status.range_gen
        monitor.is_reload_worker = parallel > 1
        monitor.instance_state = self.instance_state

        self._cancel_event = threading.Event()
        self.execute_time = time.monotonic()
        if self.on_execute is not None:
            self.on_execute()
        stop_reporter = threading.Event()
        self._start_status_reporter(status, stop_reporter)
        try:
            monitor.execute(self._cancel_event)
        except NoWorkersError:
            pass
        finally:
            stop_reporter.set()

        err = monitor.err
        if err is None and self.on_success is not None:
            self.on_success()
        if self.on_finish is not None:
            self.on_finish()
        return err

    def pause(self) -> None:
        if self.monitor is None:
            return
        if self.on_pause is not None:
            self.on_pause()
        self.monitor.pause()

    def resume(self) -> None:
        if self.monitor is None:
            return
        if self.on_resume is not None:
            self.on_resume()
        self.monitor.resume()

    def cancel(self) -> None:
        if self.monitor is None:
            return
        if self.on_cancel is not None:
            self.on_cancel()
        if self._cancel_event is not None:
            self._cancel_event.set()