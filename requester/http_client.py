"""HTTP client with proxy, cookie and request-body conveniences."""

from __future__ import annotations

from dataclasses import dataclass
from http.cookiejar import Cookie, CookieJar
from typing import Any, Callable, Mapping
from urllib.parse import urlencode, urlsplit

import requests
from requests.adapters import HTTPAdapter
from requests.cookies import RequestsCookieJar, create_cookie

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_13_2) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/63.0.3239.132 Safari/537.36"
)

Event = Callable[[], None]
EventOnError = Callable[[BaseException], None]


@dataclass
class _GlobalProxy:
    addr: str = ""


_global_proxy = _GlobalProxy()


class ProxyAddrEmptyError(ValueError):
    """Raised when a proxy address is required but empty."""

    def __init__(self) -> None:
        super().__init__("proxy addr is empty")


def set_global_proxy(proxy_addr: str) -> None:
    """Set the proxy used by clients that have no proxy of their own."""
    _global_proxy.addr = proxy_addr


def _split_host_port(address: str) -> tuple[str, str]:
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {address!r}")
        if end + 1 >= len(address) or address[end + 1] != ":":
            raise ValueError(f"missing port in address {address!r}")
        host, port = address[1:end], address[end + 2:]
    else:
        i = address.rfind(":")
        if i < 0:
            raise ValueError(f"missing port in address {address!r}")
        host, port = address[:i], address[i + 1:]
        if ":" in host:
            raise ValueError(f"too many colons in address {address!r}")
    if "[" in host or "]" in host or "[" in port or "]" in port:
        raise ValueError(f"unexpected bracket in address {address!r}")
    return host, port


def _join_host_port(host: str, port: str) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def check_proxy_addr(proxy_addr: str) -> str:
    """Normalise a proxy address to a URL; raises ValueError if unusable."""
    if not proxy_addr:
        raise ProxyAddrEmptyError()
    try:
        host, port = _split_host_port(proxy_addr)
    except ValueError:
        urlsplit(proxy_addr)
        return proxy_addr
    return "http://" + _join_host_port(host, port)


def _content_length_of(post: Any) -> int | None:
    length = getattr(post, "content_length", None)
    if callable(length):
        length = length()
    if isinstance(length, int):
        return length
    try:
        return len(post)
    except TypeError:
        return None


def _content_type_of(post: Any) -> str | None:
    ctype = getattr(post, "content_type", None)
    if callable(ctype):
        ctype = ctype()
    return ctype if isinstance(ctype, str) and ctype else None


def _encode_body(post: Any) -> tuple[Any, int | None, str | None]:
    if post is None:
        return None, None, None
    length: int | None = None
    if isinstance(post, (bytes, bytearray, memoryview)):
        body: Any = bytes(post)
    elif isinstance(post, str):
        body = post.encode("utf-8")
    elif isinstance(post, Mapping):
        body = urlencode(sorted((str(k), str(v)) for k, v in post.items())).encode()
    elif hasattr(post, "read"):
        body = post
        length = _content_length_of(post)
    else:
        raise TypeError(f"requester.req: unknown post type: {type(post).__name__}")
    return body, length, _content_type_of(post)


class HTTPClient:
    """A session-backed HTTP client with browser-like defaults."""

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, timeout: float = 50.0) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.connect_timeout = 30.0
        self.response_header_timeout = 25.0
        self.keep_alive = True
        self.gzip = True
        self.https_secure = False
        self._session = requests.Session()
        adapter = HTTPAdapter(pool_connections=100, pool_maxsize=100)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)
        self._use_global_proxy = True
        self._proxies: dict[str, str] | None = None

    @property
    def proxies(self) -> dict[str, str] | None:
        """Proxies for the next request; None means the environment decides."""
        if not self._use_global_proxy:
            return dict(self._proxies) if self._proxies is not None else None
        try:
            url = check_proxy_addr(_global_proxy.addr)
        except ValueError:
            return None
        return {"http": url, "https": url}

    def set_proxy(self, proxy_addr: str) -> None:
        """Use ``proxy_addr``; an unusable address falls back to the environment."""
        self._use_global_proxy = False
        try:
            url = check_proxy_addr(proxy_addr)
        except ValueError:
            self._proxies = None
            return
        self._proxies = {"http": url, "https": url}

    @property
    def cookies(self) -> CookieJar:
        return self._session.cookies

    @cookies.setter
    def cookies(self, jar: CookieJar) -> None:
        self._session.cookies = jar

    def reset_cookiejar(self) -> None:
        """Drop all stored cookies."""
        self._session.cookies = RequestsCookieJar()

    def _timeouts(self) -> tuple[float, float | None]:
        connect = self.connect_timeout
        read: float | None = self.response_header_timeout or None
        if self.timeout and self.timeout > 0:
            connect = min(connect, self.timeout)
            read = self.timeout if read is None else min(read, self.timeout)
        return connect, read

    def req(
        self,
        method: str,
        url: str,
        post: Any = None,
        header: Mapping[str, str] | None = None,
    ) -> requests.Response:
        """Send a request and return the streamed response."""
        body, length, ctype = _encode_body(post)
        headers = {"User-Agent": self.user_agent}
        if not self.keep_alive:
            headers["Connection"] = "close"
        if not self.gzip:
            headers["Accept-Encoding"] = "identity"
        if length:
            headers["Content-Length"] = str(length)
        if ctype:
            headers["Content-Type"] = ctype
        if header:
            headers.update(header)
        return self._session.request(
            method,
            url,
            data=body,
            headers=headers,
            proxies=self.proxies,
            timeout=self._timeouts(),
            verify=self.https_secure,
            stream=True,
        )

    def fetch(
        self,
        method: str,
        url: str,
        post: Any = None,
        header: Mapping[str, str] | None = None,
    ) -> bytes:
        """Send a request and return the whole response body."""
        with self.req(method, url, post, header) as resp:
            return resp.content

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> HTTPClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


default_client = HTTPClient()


def http_get(url: str) -> bytes:
    """GET ``url`` with the default client and return the body."""
    return default_client.fetch("GET", url)


def req(
    method: str, url: str, post: Any = None, header: Mapping[str, str] | None = None
) -> requests.Response:
    """:meth:`HTTPClient.req` on the default client."""
    return default_client.req(method, url, post, header)


def fetch(
    method: str, url: str, post: Any = None, header: Mapping[str, str] | None = None
) -> bytes:
    """:meth:`HTTPClient.fetch` on the default client."""
    return default_client.fetch(method, url, post, header)


def parse_cookie_str(cookie_str: str) -> list[Cookie]:
    """Parse ``name=value; name2=value2`` into cookies, skipping bad entries."""
    cookies = []
    for raw in cookie_str.split(";"):
        name, sep, value = raw.partition("=")
        if not sep:
            continue
        cookies.append(create_cookie(name.strip(), value.strip()))
    return cookies