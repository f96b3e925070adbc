import pytest
import requests
import responses

from requester.downloader.common import (
    CACHE_SIZE,
    PARALLEL_SIZE,
    Config,
    DownloadFirstInfo,
    StatusCode,
    WorkerStatus,
    first_info_from_response,
    get_file_name,
    get_status_text,
    open_downloader_writer,
    parse_content_range,
    random_number,
)
from requester.http_client import HTTPClient


def _response(headers):
    resp = requests.Response()
    resp.status_code = 200
    resp.headers.update(headers)
    return resp


def test_random_number_in_range():
    for _ in range(10):
        n = random_number(0, 5)
        assert 0 <= n < 5


def test_random_number_swapped_bounds():
    for _ in range(10):
        assert 3 <= random_number(8, 3) < 8


def test_random_number_empty_range_raises():
    with pytest.raises(ValueError):
        random_number(4, 4)


def test_config_defaults():
    cfg = Config()
    assert cfg.max_parallel == PARALLEL_SIZE == 5
    assert cfg.cache_size == CACHE_SIZE == 8192
    assert cfg.is_test is False


def test_config_fix_clamps():
    cfg = Config(max_parallel=0, cache_size=10)
    cfg.fix()
    assert cfg.max_parallel == 1
    assert cfg.cache_size == 1024


def test_config_copy_is_independent():
    cfg = Config(max_parallel=10)
    other = cfg.copy()
    other.max_parallel = 3
    assert cfg.max_parallel == 10
    assert other == Config(max_parallel=3)


def test_first_info_compare():
    a = DownloadFirstInfo(content_length=10, accept_ranges="bytes", referer="r")
    b = DownloadFirstInfo(content_length=10, accept_ranges="bytes", referer="r", content_md5="x")
    assert a.compare(b)
    assert not a.compare(None)
    assert not a.compare(DownloadFirstInfo(content_length=11, accept_ranges="bytes", referer="r"))


def test_first_info_to_map_keys():
    info = DownloadFirstInfo(content_md5="md5", content_crc32="crc", accept_ranges="bytes")
    assert info.to_map() == {
        "Content-MD5": "md5",
        "x-bs-meta-crc32": "crc",
        "Accept-Ranges": "bytes",
        "Referer": "",
    }


def test_first_info_to_field_map():
    info = DownloadFirstInfo(content_length=42)
    fields = info.to_field_map()
    assert fields["content_length"] == "42"
    assert set(fields) == {"content_length", "content_md5", "content_crc32", "accept_ranges", "referer"}


def test_first_info_from_none_response():
    assert first_info_from_response(100, None).content_length == 100


def test_first_info_from_response_headers():
    resp = _response({"Accept-Ranges": "bytes", "Referer": "http://ref.example.com/"})
    info = first_info_from_response(100, resp)
    assert info.content_length == 100
    assert info.accept_ranges == "bytes"
    assert info.referer == "http://ref.example.com/"


def test_first_info_same_length_is_not_kept():
    resp = _response({"Content-Length": "100"})
    assert first_info_from_response(100, resp).content_length == 0


def test_status_text():
    assert get_status_text(StatusCode.SUCCESSED) == "成功"
    assert get_status_text(StatusCode.CANCELED) == "已取消"
    assert get_status_text(99) == "未知状态码"
    assert WorkerStatus().status_text() == "初始化"


def test_parse_content_range():
    assert parse_content_range("bytes 0-99/1000") == 1000
    assert parse_content_range("bytes 0-99/") == -1
    assert parse_content_range("garbage") == -1


def test_file_writer_at(tmp_path):
    path = tmp_path / "out.bin"
    with open_downloader_writer(str(path)) as writer:
        writer.write_at(b"world", 5)
        writer.write_at(b"hello", 0)
    assert path.read_bytes() == b"helloworld"


def test_get_file_name_from_disposition():
    url = "http://files.example.com/dir/file.bin"
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.HEAD, url, headers={"Content-Disposition": 'attachment; filename="a%20b.txt"'}
        )
        assert get_file_name(url, HTTPClient()) == "a b.txt"


def test_get_file_name_falls_back_to_path():
    url = "http://files.example.com/dir/file.bin"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.HEAD, url)
        assert get_file_name(url, None) == "file.bin"


def test_get_file_name_bad_escape():
    url = "http://files.example.com/dir/file.bin"
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.HEAD, url, headers={"Content-Disposition": 'attachment; filename="bad%zz"'}
        )
        with pytest.raises(ValueError):
            get_file_name(url, HTTPClient())