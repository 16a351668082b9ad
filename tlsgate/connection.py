"""Pick HTTP/1.x or HTTP/2 for an established stream and serve it."""

from __future__ import annotations

import asyncio
import logging

from .http import Handler, Stream
from .http1 import serve_http1
from .http2 import PREFACE, serve_http2
from .tls import HandshakeResult

LOGGER = logging.getLogger("tlsgate.connection")

HTTP2 = "h2"
HTTP1 = "http/1.1"


async def sniff_protocol(stream: Stream) -> str:
    """Detect the HTTP/2 client preface without consuming any bytes."""

    seen = b""
    while len(seen) < len(PREFACE) and PREFACE.startswith(seen):
        chunk = await stream.receive()
        if not chunk:
            break
        seen += chunk
    stream.unread(seen)
    return HTTP2 if seen.startswith(PREFACE) else HTTP1


class ConnectionServer:
    """Serve HTTP over one established TLS stream per :meth:`serve` call."""

    def __init__(self, handler: Handler, *, idle_timeout: float | None = None) -> None:
        self.handler = handler
        self.idle_timeout = idle_timeout

    async def select_protocol(self, stream: Stream, alpn_protocol: str | None) -> str:
        if alpn_protocol == HTTP2:
            return HTTP2
        if alpn_protocol is not None:
            return alpn_protocol
        return await asyncio.wait_for(sniff_protocol(stream), self.idle_timeout)

    async def serve(self, stream: Stream, result: HandshakeResult) -> None:
        try:
            protocol = await self.select_protocol(stream, result.alpn_protocol)
        except asyncio.TimeoutError:
            LOGGER.debug("no request within %ss, closing", self.idle_timeout)
            return
        LOGGER.debug(
            "serving %s over %s (%s, alpn=%s)",
            protocol,
            result.protocol_version,
            result.cipher,
            result.alpn_protocol,
        )
        if protocol == HTTP2:
            await serve_http2(stream, self.handler, idle_timeout=self.idle_timeout)
        else:
            await serve_http1(stream, self.handler, idle_timeout=self.idle_timeout)


__all__ = ["ConnectionServer", "sniff_protocol", "HTTP1", "HTTP2"]
