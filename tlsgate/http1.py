"""HTTP/1.0 and HTTP/1.1 connection loop."""

from __future__ import annotations

import asyncio
import logging
import re
from email.utils import formatdate
from typing import List, Optional, Tuple

from . import metrics
from .exceptions import ProtocolError
from .http import Handler, Request, Response, Stream, call_handler

LOGGER = logging.getLogger("tlsgate.http1")

MAX_HEAD_SIZE = 65536
MAX_BODY_SIZE = 1 << 20
MAX_LINE_SIZE = 8192
VERSIONS = ("HTTP/1.0", "HTTP/1.1")

_TOKEN = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+\Z")
_HEX = re.compile(rb"[0-9A-Fa-f]+\Z")

Headers = List[Tuple[str, str]]


class _Reader:
    """Buffered reads over a :class:`Stream` with an optional idle timeout."""

    def __init__(self, stream: Stream, idle_timeout: float | None) -> None:
        self._stream = stream
        self._idle_timeout = idle_timeout
        self._buffer = bytearray()

    async def _fill(self) -> bool:
        data = await asyncio.wait_for(self._stream.receive(), self._idle_timeout)
        if not data:
            return False
        self._buffer += data
        return True

    async def read_head(self) -> Optional[bytes]:
        """Return the next request head, or ``None`` on a clean end of stream."""

        while True:
            # Stray CRLFs between pipelined requests are ignored.
            while self._buffer.startswith(b"\r\n"):
                del self._buffer[:2]
            end = self._buffer.find(b"\r\n\r\n")
            if end >= 0:
                if end > MAX_HEAD_SIZE:
                    raise ProtocolError("request head too large", 431)
                head = bytes(self._buffer[:end])
                del self._buffer[: end + 4]
                return head
            if len(self._buffer) > MAX_HEAD_SIZE:
                raise ProtocolError("request head too large", 431)
            if not await self._fill():
                if not self._buffer:
                    return None
                raise asyncio.IncompleteReadError(bytes(self._buffer), None)

    async def read_exactly(self, size: int) -> bytes:
        while len(self._buffer) < size:
            if not await self._fill():
                raise asyncio.IncompleteReadError(bytes(self._buffer), size)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    async def read_line(self) -> bytes:
        while True:
            end = self._buffer.find(b"\r\n")
            if end >= 0:
                line = bytes(self._buffer[:end])
                del self._buffer[: end + 2]
                return line
            if len(self._buffer) > MAX_LINE_SIZE:
                raise ProtocolError("line too long")
            if not await self._fill():
                raise asyncio.IncompleteReadError(bytes(self._buffer), None)


def parse_head(head: bytes) -> Tuple[str, str, str, Headers]:
    """Split a request head into ``(method, target, version, headers)``."""

    request_line, *header_lines = head.decode("latin-1").split("\r\n")
    parts = request_line.split(" ")
    if len(parts) != 3 or not _TOKEN.match(parts[0]) or not parts[1]:
        raise ProtocolError(f"malformed request line: {request_line!r}")
    method, target, version = parts
    if version not in VERSIONS:
        raise ProtocolError(f"unsupported HTTP version: {version}", 505)
    headers: Headers = []
    for line in header_lines:
        name, sep, value = line.partition(":")
        if not sep or not _TOKEN.match(name):
            raise ProtocolError(f"malformed header line: {line!r}")
        headers.append((name.lower(), value.strip(" \t")))
    return method, target, version, headers


def _values(headers: Headers, name: str) -> List[str]:
    return [value for key, value in headers if key == name]


def wants_keep_alive(version: str, headers: Headers) -> bool:
    """HTTP/1.1 persists unless told to close; HTTP/1.0 only on request."""
    tokens = {
        token.strip().lower()
        for value in _values(headers, "connection")
        for token in value.split(",")
    }
    if "close" in tokens:
        return False
    if version == "HTTP/1.0":
        return "keep-alive" in tokens
    return True


async def _read_chunked(reader: _Reader) -> bytes:
    body = bytearray()
    while True:
        size_field = (await reader.read_line()).split(b";", 1)[0].strip()
        if not _HEX.match(size_field):
            raise ProtocolError("invalid chunk size")
        size = int(size_field, 16)
        if size == 0:
            break
        if len(body) + size > MAX_BODY_SIZE:
            raise ProtocolError("request body too large", 413)
        body += await reader.read_exactly(size)
        if await reader.read_exactly(2) != b"\r\n":
            raise ProtocolError("missing chunk terminator")
    while await reader.read_line():
        pass  # trailers
    return bytes(body)


async def _read_body(
    stream: Stream, reader: _Reader, version: str, headers: Headers
) -> bytes:
    encodings = _values(headers, "transfer-encoding")
    lengths = set(_values(headers, "content-length"))
    if encodings and lengths:
        raise ProtocolError("both content-length and transfer-encoding present")
    if len(lengths) > 1:
        raise ProtocolError("conflicting content-length headers")

    if version == "HTTP/1.1" and any(
        value.lower() == "100-continue" for value in _values(headers, "expect")
    ):
        await stream.send(b"HTTP/1.1 100 Continue\r\n\r\n")

    if encodings:
        if encodings[-1].split(",")[-1].strip().lower() != "chunked":
            raise ProtocolError("unsupported transfer-encoding", 501)
        return await _read_chunked(reader)
    if not lengths:
        return b""
    length = lengths.pop()
    if not length.isdigit():
        raise ProtocolError(f"invalid content-length: {length!r}")
    size = int(length)
    if size > MAX_BODY_SIZE:
        raise ProtocolError("request body too large", 413)
    return await reader.read_exactly(size)


def render_response(
    response: Response, version: str, keep_alive: bool, *, include_body: bool = True
) -> bytes:
    """Serialize *response* for the wire."""

    status, body, headers = response.serialize()
    headers["content-length"] = str(len(body))
    headers.setdefault("date", formatdate(usegmt=True))
    if version == "HTTP/1.0":
        headers["connection"] = "keep-alive" if keep_alive else "close"
    elif not keep_alive:
        headers["connection"] = "close"
    lines = [f"{version} {status} {response.reason}"]
    lines.extend(f"{name}: {value}" for name, value in headers.items())
    head = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")
    return head + body if include_body else head


async def _reject(stream: Stream, exc: ProtocolError) -> None:
    response = Response(status_code=exc.status_code)
    await stream.send(render_response(response, "HTTP/1.1", keep_alive=False))
    metrics.responses_total.labels(protocol="http/1.1", status=str(exc.status_code)).inc()


async def serve_http1(
    stream: Stream, handler: Handler, *, idle_timeout: float | None = None
) -> None:
    """Serve requests on *stream* until the client closes or stops persisting."""

    reader = _Reader(stream, idle_timeout)
    while True:
        try:
            head = await reader.read_head()
        except asyncio.TimeoutError:
            LOGGER.debug("idle timeout after %ss, closing", idle_timeout)
            return
        except ProtocolError as exc:
            await _reject(stream, exc)
            raise
        if head is None:
            return

        try:
            method, target, version, headers = parse_head(head)
            body = await _read_body(stream, reader, version, headers)
        except ProtocolError as exc:
            await _reject(stream, exc)
            raise
        keep_alive = wants_keep_alive(version, headers)
        request = Request(method, target, body, headers, version)

        try:
            response = await call_handler(handler, request)
        except Exception:
            LOGGER.exception("handler failed for %r", request)
            response = Response(status_code=500)
            keep_alive = False

        await stream.send(
            render_response(response, version, keep_alive, include_body=method != "HEAD")
        )
        metrics.responses_total.labels(
            protocol=version.lower(), status=str(response.status_code)
        ).inc()
        if not keep_alive:
            return


__all__ = ["serve_http1", "parse_head", "render_response", "wants_keep_alive"]
