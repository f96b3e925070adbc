import pytest
import requests

from requester.downloader.loadbalance import (
    LoadBalancerResponse,
    LoadBalancerResponseList,
    ResetController,
    default_load_balancer_compare,
)


def _response(headers):
    resp = requests.Response()
    resp.headers.update(headers)
    return resp


def test_sequential_get_cycles_through_servers():
    a = LoadBalancerResponse("http://a.example.com/f")
    b = LoadBalancerResponse("http://b.example.com/f", referer="http://example.com/")
    servers = LoadBalancerResponseList([a, b])
    got = [servers.sequential_get() for _ in range(5)]
    assert got == [a, b, a, b, a]


def test_sequential_get_empty_returns_none():
    assert LoadBalancerResponseList([]).sequential_get() is None


def test_random_get_returns_member():
    items = [LoadBalancerResponse(f"http://{n}.example.com/") for n in "xyz"]
    servers = LoadBalancerResponseList(items)
    for _ in range(20):
        assert servers.random_get() in items


def test_random_get_empty_raises():
    with pytest.raises(IndexError):
        LoadBalancerResponseList([]).random_get()


def test_compare_matching_headers():
    info = {"Content-MD5": "abc", "Accept-Ranges": "bytes", "Referer": ""}
    resp = _response({"Content-MD5": "abc", "Accept-Ranges": "bytes"})
    assert default_load_balancer_compare(info, resp) is True


def test_compare_mismatching_header():
    info = {"Content-MD5": "abc"}
    resp = _response({"Content-MD5": "def"})
    assert default_load_balancer_compare(info, resp) is False


def test_compare_missing_inputs():
    assert default_load_balancer_compare(None, _response({})) is False
    assert default_load_balancer_compare({}, None) is False


def test_reset_controller_limits_and_expires():
    now = [100.0]
    controller = ResetController(2, clock=lambda: now[0])
    assert controller.can_reset() is True
    controller.add_reset_num()
    assert controller.can_reset() is True
    controller.add_reset_num()
    assert controller.can_reset() is False
    now[0] += 10.0
    assert controller.can_reset() is True


def test_reset_controller_zero_limit_never_allows():
    controller = ResetController(0)
    assert controller.can_reset() is False