"""Download configuration, first-response info, worker status codes and helpers."""

from __future__ import annotations

import dataclasses
import enum
import logging
import random
import re
import threading
from dataclasses import dataclass
from email.message import Message
from email.utils import collapse_rfc2231_value
from typing import Any, BinaryIO
from urllib.parse import unquote_plus

from requester.http_client import HTTPClient
from requester.transfer import RangeGenMode

logger = logging.getLogger(__name__)

CACHE_SIZE = 8192
PARALLEL_SIZE = 5
MIN_PARALLEL_SIZE = 256 * 1024
MIN_CACHE_SIZE = 1024

CONTENT_RANGE_RE = re.compile(r"^.*? \d*?-\d*?/(\d*?)\Z")
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class InstanceStateStorageFormat(enum.IntEnum):
    """How resume state is stored on disk."""

    JSON = 0


@dataclass
class Config:
    """Settings of one download."""

    mode: RangeGenMode = RangeGenMode.DEFAULT
    max_parallel: int = PARALLEL_SIZE
    cache_size: int = CACHE_SIZE
    block_size: int = 0
    max_rate: int = 0
    instance_state_storage_format: InstanceStateStorageFormat = InstanceStateStorageFormat.JSON
    instance_state_path: str = ""
    is_test: bool = False
    try_http: bool = False

    def fix(self) -> None:
        """Clamp the settings to legal values."""
        if self.cache_size < MIN_CACHE_SIZE:
            self.cache_size = MIN_CACHE_SIZE
        if self.max_parallel < 1:
            self.max_parallel = 1

    def copy(self) -> Config:
        return dataclasses.replace(self)


@dataclass
class DownloadFirstInfo:
    """What the first response told about the file being downloaded."""

    content_length: int = 0
    content_md5: str = ""
    content_crc32: str = ""
    accept_ranges: str = ""
    referer: str = ""

    def compare(self, other: DownloadFirstInfo | None) -> bool:
        """True if ``other`` describes the same file on the same terms."""
        if other is None:
            return False
        return (
            self.content_length == other.content_length
            and self.accept_ranges == other.accept_ranges
            and self.referer == other.referer
        )

    def to_map(self) -> dict[str, str]:
        """The values keyed by the response headers they come from."""
        return {
            "Content-MD5": self.content_md5,
            "x-bs-meta-crc32": self.content_crc32,
            "Accept-Ranges": self.accept_ranges,
            "Referer": self.referer,
        }

    def to_field_map(self) -> dict[str, str]:
        """Every field, keyed by field name, as text."""
        return {f.name: str(getattr(self, f.name)) for f in dataclasses.fields(self)}


def _response_content_length(resp: Any) -> int:
    value = resp.headers.get("Content-Length")
    if value is None:
        return -1
    try:
        return int(value)
    except ValueError:
        return -1


def first_info_from_response(content_length: int, resp: Any | None) -> DownloadFirstInfo:
    """Build first info from a response; the length is kept only if it differs."""
    info = DownloadFirstInfo()
    if resp is None:
        info.content_length = content_length
        return info
    if content_length != _response_content_length(resp):
        info.content_length = content_length
    info.accept_ranges = resp.headers.get("Accept-Ranges", "")
    info.referer = resp.headers.get("Referer", "")
    return info


class StatusCode(enum.IntEnum):
    """State of a download worker."""

    INIT = 0
    SUCCESSED = 1
    PENDING = 2
    DOWNLOADING = 3
    WAIT_TO_WRITE = 4
    INTERNAL_ERROR = 5
    TOO_MANY_CONNECTIONS = 6
    NET_ERROR = 7
    FAILED = 8
    PAUSED = 9
    RESETED = 10
    CANCELED = 11


_STATUS_TEXT = {
    StatusCode.INIT: "初始化",
    StatusCode.SUCCESSED: "成功",
    StatusCode.PENDING: "等待响应",
    StatusCode.DOWNLOADING: "下载中",
    StatusCode.WAIT_TO_WRITE: "等待写入数据",
    StatusCode.INTERNAL_ERROR: "内部错误",
    StatusCode.TOO_MANY_CONNECTIONS: "连接数太多",
    StatusCode.NET_ERROR: "网络错误",
    StatusCode.FAILED: "下载失败",
    StatusCode.PAUSED: "已暂停",
    StatusCode.RESETED: "已重设连接",
    StatusCode.CANCELED: "已取消",
}


def get_status_text(code: int) -> str:
    """Human-readable text for a status code."""
    try:
        return _STATUS_TEXT[StatusCode(code)]
    except ValueError:
        return "未知状态码"


@dataclass
class WorkerStatus:
    """Current status of a worker."""

    status_code: StatusCode = StatusCode.INIT

    def status_text(self) -> str:
        return get_status_text(self.status_code)


class FileWriterAt:
    """A file accepting writes at absolute offsets from several threads."""

    def __init__(self, file: BinaryIO) -> None:
        self._file = file
        self._lock = threading.Lock()

    def write_at(self, data: bytes, offset: int) -> int:
        with self._lock:
            self._file.seek(offset)
            n = self._file.write(data)
            self._file.flush()
        return n

    def fileno(self) -> int:
        return self._file.fileno()

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> FileWriterAt:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def open_downloader_writer(name: str) -> FileWriterAt:
    """Create or truncate ``name`` and return a positional writer for it."""
    return FileWriterAt(open(name, "w+b"))


def random_number(low: int, high: int) -> int:
    """A random integer in ``[low, high)``; the bounds may come in any order."""
    if low > high:
        low, high = high, low
    return random.randrange(high - low) + low


def _path_base(path: str) -> str:
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]


def _query_unescape(value: str) -> str:
    match = _BAD_ESCAPE_RE.search(value)
    if match:
        raise ValueError(f"invalid URL escape {value[match.start():match.start() + 3]!r}")
    return unquote_plus(value)


def get_file_name(uri: str, client: HTTPClient | None = None) -> str:
    """Name of the file behind ``uri``, from Content-Disposition or the URL path."""
    if client is None:
        client = HTTPClient()
    with client.req("HEAD", uri) as resp:
        disposition = resp.headers.get("Content-Disposition", "")
    if not disposition.strip():
        logger.debug("get_file_name: no media type in Content-Disposition")
        return _path_base(uri)
    msg = Message()
    msg["Content-Disposition"] = disposition
    raw = msg.get_param("filename", header="content-disposition")
    if raw is None:
        raw = ""
    elif isinstance(raw, tuple):
        raw = collapse_rfc2231_value(raw)
    filename = _query_unescape(str(raw))
    return filename or _path_base(uri)


def parse_content_range(content_range: str) -> int:
    """Total length stated by a Content-Range header, or -1 if absent."""
    match = CONTENT_RANGE_RE.match(content_range)
    if match is None:
        return -1
    try:
        return int(match.group(1))
    except ValueError:
        return -1