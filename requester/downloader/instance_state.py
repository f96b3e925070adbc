"""Resume state of a download kept in a file."""

from __future__ import annotations

import logging
import os
import threading
from typing import BinaryIO

from requester.downloader.common import InstanceStateStorageFormat
from requester.transfer import (
    DownloadInstanceInfo,
    DownloadInstanceInfoExport,
    instance_info_export_from_json,
)

logger = logging.getLogger(__name__)

_MAX_STATE_SIZE = 0xFFFFFFFF


class InstanceState:
    """Saves and loads resume information; does nothing without a file."""

    def __init__(
        self,
        save_file: BinaryIO | None,
        format: InstanceStateStorageFormat = InstanceStateStorageFormat.JSON,
    ) -> None:
        self._file = save_file
        self.format = InstanceStateStorageFormat(format)
        self._export: DownloadInstanceInfoExport | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_path(
        cls, path: str, format: InstanceStateStorageFormat = InstanceStateStorageFormat.JSON
    ) -> InstanceState:
        """Open ``path`` for reading and writing, creating it if needed."""
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o777)
        return cls(os.fdopen(fd, "r+b"), format)

    def _contents(self) -> bytes:
        assert self._file is not None
        size = os.fstat(self._file.fileno()).st_size
        if size > _MAX_STATE_SIZE:
            raise ValueError("savePath too large")
        self._file.seek(0)
        return self._file.read(size)

    def get(self) -> DownloadInstanceInfo | None:
        """Load saved state, or None if there is none or it cannot be read."""
        if self._file is None:
            return None
        with self._lock:
            contents = self._contents()
            if not contents:
                return None
            try:
                self._export = instance_info_export_from_json(contents)
            except (ValueError, TypeError, KeyError, AttributeError) as exc:
                logger.debug("instance info unmarshal error: %s", exc)
                return None
            return self._export.get_instance_info()

    def put(self, info: DownloadInstanceInfo) -> None:
        """Save ``info``, replacing what the file held before."""
        if self._file is None:
            return
        with self._lock:
            if self._export is None:
                self._export = DownloadInstanceInfoExport()
            self._export.set_instance_info(info)
            data = self._export.to_json().encode("utf-8")
            try:
                self._file.truncate(len(data))
            except OSError as exc:
                logger.debug("truncate file error: %s", exc)
            try:
                self._file.seek(0)
                self._file.write(data)
                self._file.flush()
            except OSError as exc:
                logger.debug("write instance state error: %s", exc)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()

    def __enter__(self) -> InstanceState:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()