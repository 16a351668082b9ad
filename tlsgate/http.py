"""Request/response values shared by the HTTP/1.x and HTTP/2 servers."""

from __future__ import annotations

import inspect
from http import HTTPStatus
from typing import Awaitable, Callable, Iterable, Mapping, Protocol, Tuple, Union
from urllib.parse import parse_qs, urlsplit


class Request:
    """Represent an incoming HTTP request."""

    def __init__(
        self,
        method: str = "GET",
        url: str = "/",
        body: bytes = b"",
        headers: Mapping[str, str] | Iterable[Tuple[str, str]] | None = None,
        http_version: str = "HTTP/1.1",
    ) -> None:
        self.method = method
        self.url = url
        self.body = body
        items = headers.items() if isinstance(headers, Mapping) else (headers or ())
        self.headers = {k.lower(): v for k, v in items}
        self.http_version = http_version
        if url.startswith("/"):
            # Origin form: "//x" is a path here, not a network location.
            path, _, query = url.partition("?")
            path = path.split("#", 1)[0]
        else:
            parts = urlsplit(url)
            path, query = parts.path or "/", parts.query
        self.path = path
        self.query_params = {
            k: (v[0] if len(v) == 1 else v) for k, v in parse_qs(query).items()
        }

    def __repr__(self) -> str:
        return f"Request({self.method} {self.url} {self.http_version})"


class Response:
    """HTTP response container."""

    def __init__(
        self,
        content: str | bytes = b"",
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        media_type: str | None = None,
    ) -> None:
        self.body = content.encode() if isinstance(content, str) else content
        self.status_code = status_code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        if media_type is not None:
            self.headers.setdefault("content-type", media_type)

    @property
    def reason(self) -> str:
        try:
            return HTTPStatus(self.status_code).phrase
        except ValueError:
            return ""

    @property
    def status_line(self) -> str:
        """Return e.g. ``"404 Not Found"``."""
        return f"{self.status_code} {self.reason}".rstrip()

    def set_header(self, key: str, value: str) -> None:
        """Set or replace a header."""
        self.headers[key.lower()] = value

    def serialize(self) -> tuple[int, bytes, dict[str, str]]:
        """Return ``(status_code, body, headers)`` for transmission."""
        return self.status_code, self.body, self.headers.copy()


class PlainTextResponse(Response):
    """Return plain text content."""

    def __init__(
        self,
        content: str,
        *,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            content,
            status_code=status_code,
            headers=headers,
            media_type="text/plain; charset=utf-8",
        )


Handler = Callable[[Request], Union[Response, Awaitable[Response]]]


class Stream(Protocol):
    """Decrypted byte stream an HTTP server loop runs over."""

    async def receive(self, max_bytes: int = ...) -> bytes:
        ...

    def unread(self, data: bytes) -> None:
        ...

    async def send(self, data: bytes) -> None:
        ...


async def call_handler(handler: Handler, request: Request) -> Response:
    """Invoke *handler*, awaiting it when it is a coroutine function."""
    response = handler(request)
    if inspect.isawaitable(response):
        response = await response
    return response


__all__ = [
    "Request",
    "Response",
    "PlainTextResponse",
    "Handler",
    "Stream",
    "call_handler",
]
