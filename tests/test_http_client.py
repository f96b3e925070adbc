import pytest
import responses

from requester.http_client import (
    DEFAULT_USER_AGENT,
    HTTPClient,
    ProxyAddrEmptyError,
    check_proxy_addr,
    fetch,
    http_get,
    parse_cookie_str,
    req,
    set_global_proxy,
)
from requester.rio import BytesReader

URL = "http://example.com/path"


@pytest.fixture
def global_proxy():
    yield set_global_proxy
    set_global_proxy("")


class _Typed:
    content_type = "application/x-custom"

    def __init__(self, data):
        self._reader = BytesReader(data)

    def read(self, size=-1):
        return self._reader.read(size)

    def __len__(self):
        return len(self._reader)


def test_fetch_returns_body():
    client = HTTPClient()
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, URL, body=b"payload")
        assert client.fetch("GET", URL) == b"payload"


def test_default_user_agent_is_sent():
    client = HTTPClient()
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, URL, body=b"")
        client.fetch("GET", URL)
        assert rsps.calls[0].request.headers["User-Agent"] == DEFAULT_USER_AGENT


def test_header_overrides_user_agent_and_sets_host():
    client = HTTPClient()
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, URL, body=b"")
        client.fetch("GET", URL, None, {"User-Agent": "agent", "Host": "other.example.com"})
        headers = rsps.calls[0].request.headers
        assert headers["User-Agent"] == "agent"
        assert headers["Host"] == "other.example.com"


def test_dict_post_is_urlencoded_sorted():
    client = HTTPClient()
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL, body=b"")
        client.fetch("POST", URL, {"b": "x y", "a": 1})
        assert rsps.calls[0].request.body == b"a=1&b=x+y"


def test_str_post_is_utf8_encoded():
    client = HTTPClient()
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL, body=b"")
        client.fetch("POST", URL, "héllo")
        assert rsps.calls[0].request.body == "héllo".encode("utf-8")


def test_reader_post_sets_length_and_content_type():
    client = HTTPClient()
    data = b"hello world"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL, body=b"")
        client.fetch("POST", URL, _Typed(data))
        headers = rsps.calls[0].request.headers
        assert headers["Content-Length"] == str(len(data))
        assert headers["Content-Type"] == _Typed.content_type


def test_unknown_post_type_raises():
    client = HTTPClient()
    with pytest.raises(TypeError):
        client.req("POST", URL, 3.5)


def test_error_status_is_returned_not_raised():
    client = HTTPClient()
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, URL, status=404)
        resp = client.req("GET", URL)
        assert resp.status_code == 404


def test_keep_alive_and_gzip_switches():
    client = HTTPClient()
    client.keep_alive = False
    client.gzip = False
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, URL, body=b"")
        client.fetch("GET", URL)
        headers = rsps.calls[0].request.headers
        assert headers["Connection"] == "close"
        assert headers["Accept-Encoding"] == "identity"


def test_check_proxy_addr_host_port():
    assert check_proxy_addr("127.0.0.1:8080") == "http://127.0.0.1:8080"
    assert check_proxy_addr("[::1]:1080") == "http://[::1]:1080"


def test_check_proxy_addr_full_url_kept():
    addr = "socks5://proxy.example.com:1080"
    assert check_proxy_addr(addr) == addr


def test_check_proxy_addr_empty_raises():
    with pytest.raises(ProxyAddrEmptyError):
        check_proxy_addr("")


def test_set_proxy_explicit():
    client = HTTPClient()
    client.set_proxy("127.0.0.1:8080")
    url = check_proxy_addr("127.0.0.1:8080")
    assert client.proxies == {"http": url, "https": url}


def test_set_proxy_empty_ignores_global(global_proxy):
    global_proxy("127.0.0.1:3128")
    client = HTTPClient()
    client.set_proxy("")
    assert client.proxies is None


def test_global_proxy_used_by_default(global_proxy):
    client = HTTPClient()
    assert client.proxies is None
    global_proxy("127.0.0.1:3128")
    url = check_proxy_addr("127.0.0.1:3128")
    assert client.proxies == {"http": url, "https": url}


def test_reset_cookiejar():
    client = HTTPClient()
    for cookie in parse_cookie_str("a=1; b=2"):
        client.cookies.set_cookie(cookie)
    assert len(client.cookies) == 2
    client.reset_cookiejar()
    assert len(client.cookies) == 0


def test_parse_cookie_str():
    cookies = parse_cookie_str("a=1; b = two ;broken; c=x=y;")
    assert [(c.name, c.value) for c in cookies] == [("a", "1"), ("b", "two"), ("c", "x=y")]


def test_module_level_helpers():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, URL, body=b"one")
        rsps.add(responses.POST, URL, body=b"two")
        assert http_get(URL) == b"one"
        assert fetch("POST", URL, b"x") == b"two"
        rsps.add(responses.GET, URL, status=201)
        assert req("GET", URL).status_code == 201