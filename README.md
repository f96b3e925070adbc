# requester

HTTP helpers together with a multi-connection, resumable downloader and a
block-based parallel uploader. It is a library; it has no command-line tool.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `requester.http_client`: `HTTPClient` wraps a `requests` session with a
  browser User-Agent, a cookie jar (`reset_cookiejar`) and proxy support
  (`set_proxy`, or `set_global_proxy` for every client without its own).
  `req` returns a streamed response, `fetch` returns the body. Request bodies
  may be bytes, text, a mapping (sent form-encoded) or any object with
  `read`. The module-level `http_get`, `req` and `fetch` use a shared default
  client. `parse_cookie_str` turns `name=value; other=value` into cookies,
  skipping entries without `=`.
- `requester.rio`: readers that know their remaining length: `Buffer`,
  `BytesReader`, `FileReaderLen64`, `RandomReaderLen64`, and
  `MultiReaderLen`, which reads several readers one after another.
- `requester.speeds`: `Speeds` measures throughput per interval; `RateLimit`
  blocks callers once a byte budget per interval is used up.
- `requester.transfer`: half-open byte `Range` objects, `RangeListGen`
  (built with `default_range_gen` to split evenly among workers, or
  `block_size_range_gen` to cut fixed-size blocks), `DownloadStatus`, and the
  JSON resume data `DownloadInstanceInfoExport`.
- `requester.multipart`: `MultipartReader` streams a `multipart/form-data`
  body built from length-aware readers, with its total length known before
  reading. Call `close_multipart` before `read`.
- `requester.downloader.common`: `Config`, `DownloadFirstInfo`, the worker
  `StatusCode` values, `FileWriterAt` / `open_downloader_writer`,
  `get_file_name` and `parse_content_range`.
- `requester.downloader.downloader`: `Downloader` probes the URL, splits the
  file into ranges and fetches them in parallel with `Worker` objects
  (`requester.downloader.worker`) supervised by a `Monitor`
  (`requester.downloader.monitor`). The monitor splits slow ranges, restarts
  stalled workers (rate-limited by `ResetController`) and saves resume data
  through `InstanceState` (`requester.downloader.instance_state`).
  `execute` raises the first fatal error; `pause`, `resume` and `cancel` may
  be called from another thread.
- `requester.uploader.uploader`: `Uploader` posts a whole reader in one
  request and can report progress with `iter_status`.
- `requester.uploader.multi`: `MultiUploader` cuts a file into blocks
  (`split_block` in `requester.uploader.block`) and sends them in parallel
  through a `MultiUpload` back end, retrying failed blocks. `instance_state`
  returns an `UploadInstanceState` that can be saved with `to_json` and
  passed back as `resume_state`.

## Example: downloading a file

```python
from requester.downloader.common import Config, open_downloader_writer
from requester.downloader.downloader import Downloader

config = Config(max_parallel=8, instance_state_path="file.bin.resume")

with open_downloader_writer("file.bin") as writer:
    downloader = Downloader("https://example.com/file.bin", writer, config)
    downloader.execute()
```

If the run is interrupted, starting it again with the same
`instance_state_path` continues where it stopped. The resume file is removed
after a successful download.

## Example: fetching a page

```python
from requester.http_client import HTTPClient

with HTTPClient() as client:
    body = client.fetch("GET", "https://example.com/")
```

## Example: a parallel upload

`MultiUploader` needs a back end that knows the server's protocol:

```python
import hashlib

from requester.rio import FileReaderLen64
from requester.uploader.multi import MultiUploader, MultiUploaderConfig


class Backend:
    def precreate(self, file_size, policy):
        print("announce", file_size)

    def tmp_file(self, cancel_event, partseq, part_offset, reader):
        return hashlib.md5(reader.read()).hexdigest()

    def create_super_file(self, policy, *checksums):
        print("join", checksums)


with open("file.bin", "rb") as f:
    uploader = MultiUploader(
        Backend(), FileReaderLen64(f), MultiUploaderConfig(parallel=4, block_size=4 * 1024 * 1024)
    )
    uploader.on_error = print
    uploader.execute()
```

`MultiUploader.execute` does not raise upload errors; it reports the outcome
through `on_success`, `on_error`, `on_cancel` and `on_finish`.

## Limits

- Resume data is stored as JSON only; `InstanceStateStorageFormat` has no
  other format.
- There is no talk to any particular storage service: the uploader needs a
  `MultiUpload` back end supplied by the caller.
- Connections use the system resolver and default network interface; there
  is no binding to chosen local addresses or fixed host-to-IP mappings.