import threading
import time

import requests
import responses

from requester.rio import BytesReader
from requester.uploader.uploader import CountingReader, Uploader

URL = "http://upload.example.com/upload"


def _echo(request):
    body = request.body
    data = body.read() if hasattr(body, "read") else (body or b"")
    if isinstance(data, str):
        data = data.encode()
    return 200, {"X-Content-Type": request.headers.get("Content-Type", "")}, data


def test_counting_reader_counts():
    reader = CountingReader(BytesReader(b"abcdef"))
    assert reader.read(4) == b"abcd"
    assert reader.read() == b"ef"
    assert reader.readed == 6
    assert len(reader) == 0


def test_execute_posts_body_and_calls_hooks():
    with responses.RequestsMock() as rsps:
        rsps.add_callback(responses.POST, URL, callback=_echo)
        payload = b"upload payload"
        u = Uploader(URL, BytesReader(payload))
        u.content_type = "application/octet-stream"
        events = []
        results = []
        u.on_execute = lambda: events.append("execute")
        u.on_finish = lambda: events.append("finish")
        u.check_func = lambda resp, err: results.append((resp, err))
        u.execute()
    assert events == ["execute", "finish"]
    resp, err = results[0]
    assert err is None
    assert resp.status_code == 200
    assert resp.content == payload
    assert resp.headers["X-Content-Type"] == "application/octet-stream"
    assert u.reader.readed == len(payload)


def test_execute_reports_connection_error():
    results = []
    with responses.RequestsMock():
        u = Uploader("http://other.example.com/none", BytesReader(b"x"))
        u.check_func = lambda resp, err: results.append((resp, err))
        u.execute()
    resp, err = results[0]
    assert resp is None
    assert isinstance(err, requests.ConnectionError)


def test_iter_status_empty_after_finish():
    with responses.RequestsMock() as rsps:
        rsps.add_callback(responses.POST, URL, callback=_echo)
        u = Uploader(URL, BytesReader(b"data"))
        u.execute()
        assert list(u.iter_status()) == []


def test_iter_status_during_upload():
    def slow(request):
        time.sleep(0.5)
        return _echo(request)

    payload = b"z" * 100
    with responses.RequestsMock() as rsps:
        rsps.add_callback(responses.POST, URL, callback=slow)
        u = Uploader(URL, BytesReader(payload))
        u.status_interval = 0.05
        thread = threading.Thread(target=u.execute)
        thread.start()
        statuses = list(u.iter_status())
        thread.join()
    assert len(statuses) >= 1
    assert all(0 <= s.uploaded <= len(payload) for s in statuses)
    assert all(s.speeds_per_second >= 0 for s in statuses)