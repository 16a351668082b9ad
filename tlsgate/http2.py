"""HTTP/2 connection loop multiplexing concurrent streams."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from h2.config import H2Configuration
from h2.connection import H2Connection
from h2.events import (
    ConnectionTerminated,
    DataReceived,
    RequestReceived,
    StreamEnded,
    StreamReset,
    WindowUpdated,
)
from h2.exceptions import ProtocolError as H2ProtocolError
from h2.exceptions import StreamClosedError

from . import metrics
from .exceptions import ProtocolError
from .http import Handler, Request, Response, Stream, call_handler

LOGGER = logging.getLogger("tlsgate.http2")

PREFACE = b"PRI * HTTP/2.0\r\n\r\nSM\r\n\r\n"

FRAME_HEADER_SIZE = 9
GOAWAY_FRAME = 0x7


@dataclass(slots=True)
class _Exchange:
    headers: List[Tuple[str, str]]
    body: bytearray = field(default_factory=bytearray)

    def to_request(self) -> Request:
        pseudo = {k: v for k, v in self.headers if k.startswith(":")}
        regular = [(k, v) for k, v in self.headers if not k.startswith(":")]
        return Request(
            pseudo.get(":method", "GET"),
            pseudo.get(":path", "/"),
            bytes(self.body),
            regular,
            "HTTP/2",
        )


class _FrameScanner:
    """Follow frame boundaries in the inbound byte stream.

    h2 refuses to send anything once it has parsed a GOAWAY, so the
    connection holds that frame back until open streams are answered.
    """

    def __init__(self) -> None:
        self._skip = len(PREFACE)
        self._header = b""

    def split_at_goaway(self, data: bytes) -> Tuple[bytes, bytes]:
        """Return *data* cut where the first GOAWAY frame begins."""

        pos = 0
        while pos < len(data):
            if self._skip:
                step = min(self._skip, len(data) - pos)
                self._skip -= step
                pos += step
                continue
            start = pos - len(self._header)
            take = min(FRAME_HEADER_SIZE - len(self._header), len(data) - pos)
            self._header += data[pos : pos + take]
            pos += take
            if len(self._header) < FRAME_HEADER_SIZE:
                break
            length = int.from_bytes(self._header[:3], "big")
            frame_type = self._header[3]
            self._header = b""
            if frame_type == GOAWAY_FRAME:
                cut = max(start, 0)
                return data[:cut], data[cut:]
            self._skip = length
        return data, b""


class HTTP2Connection:
    """Server side of one HTTP/2 connection.

    Each request is answered by its own task once its stream ends, so
    responses on different streams interleave freely.
    """

    def __init__(
        self, stream: Stream, handler: Handler, *, idle_timeout: float | None = None
    ) -> None:
        self._stream = stream
        self._handler = handler
        self._idle_timeout = idle_timeout
        self._conn = H2Connection(
            config=H2Configuration(client_side=False, header_encoding="utf-8")
        )
        self._exchanges: Dict[int, _Exchange] = {}
        self._tasks: Dict[int, asyncio.Task[None]] = {}
        self._window_open: Dict[int, asyncio.Event] = {}
        self._frames = _FrameScanner()

    async def _flush(self) -> None:
        data = self._conn.data_to_send()
        if data:
            await self._stream.send(data)

    async def run(self) -> None:
        self._conn.initiate_connection()
        await self._flush()
        try:
            while True:
                try:
                    data = await asyncio.wait_for(self._stream.receive(), self._idle_timeout)
                except asyncio.TimeoutError:
                    LOGGER.debug("idle timeout after %ss, closing", self._idle_timeout)
                    self._conn.close_connection()
                    await self._flush()
                    return
                if not data:
                    await self._finish()
                    return
                data, goaway = self._frames.split_at_goaway(data)
                if not await self._receive(data):
                    return
                if goaway:
                    await self._finish()
                    await self._receive(goaway)
                    return
        finally:
            for task in self._tasks.values():
                task.cancel()
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    async def _receive(self, data: bytes) -> bool:
        """Feed *data* to h2 and act on the events; ``False`` once closed."""
        try:
            events = self._conn.receive_data(data)
        except H2ProtocolError as exc:
            # h2 has queued a GOAWAY describing the violation.
            await self._flush()
            raise ProtocolError(f"HTTP/2 protocol violation: {exc}") from exc
        open_ = self._dispatch(events)
        await self._flush()
        return open_

    async def _finish(self) -> None:
        """Complete responses to requests already fully received.

        Nothing more is read, so a response stalled on flow control gets at
        most the idle timeout before it is cancelled.
        """
        pending = list(self._tasks.values())
        if pending:
            await asyncio.wait(pending, timeout=self._idle_timeout)
        await self._flush()

    def _dispatch(self, events: list) -> bool:
        """Handle *events*; return ``False`` once the peer has gone away."""

        for event in events:
            if isinstance(event, RequestReceived):
                self._exchanges[event.stream_id] = _Exchange(list(event.headers))
            elif isinstance(event, DataReceived):
                exchange = self._exchanges.get(event.stream_id)
                if exchange is not None:
                    exchange.body += event.data
                self._conn.acknowledge_received_data(
                    event.flow_controlled_length, event.stream_id
                )
            elif isinstance(event, StreamEnded):
                exchange = self._exchanges.pop(event.stream_id, None)
                if exchange is not None:
                    self._start(event.stream_id, exchange)
            elif isinstance(event, StreamReset):
                self._exchanges.pop(event.stream_id, None)
                task = self._tasks.pop(event.stream_id, None)
                if task is not None:
                    task.cancel()
            elif isinstance(event, WindowUpdated):
                if event.stream_id == 0:
                    for opened in self._window_open.values():
                        opened.set()
                elif event.stream_id in self._window_open:
                    self._window_open[event.stream_id].set()
            elif isinstance(event, ConnectionTerminated):
                LOGGER.debug("peer sent GOAWAY (%s)", event.error_code)
                return False
        return True

    def _start(self, stream_id: int, exchange: _Exchange) -> None:
        task = asyncio.create_task(self._respond(stream_id, exchange.to_request()))
        self._tasks[stream_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(stream_id, None))

    async def _respond(self, stream_id: int, request: Request) -> None:
        try:
            response = await call_handler(self._handler, request)
        except Exception:
            LOGGER.exception("handler failed for %r", request)
            response = Response(status_code=500)
        try:
            await self._send_response(stream_id, response, request.method != "HEAD")
        except (StreamClosedError, ConnectionError):
            LOGGER.debug("stream %s closed before its response was sent", stream_id)
            return
        finally:
            self._window_open.pop(stream_id, None)
        metrics.responses_total.labels(protocol="h2", status=str(response.status_code)).inc()

    async def _send_response(
        self, stream_id: int, response: Response, include_body: bool
    ) -> None:
        status, body, headers = response.serialize()
        if not include_body:
            body = b""
        fields = [(":status", str(status)), ("content-length", str(len(body)))]
        fields.extend((name, value) for name, value in headers.items())
        self._conn.send_headers(stream_id, fields, end_stream=not body)
        await self._flush()

        view = memoryview(body)
        while view:
            window = min(
                self._conn.local_flow_control_window(stream_id),
                self._conn.max_outbound_frame_size,
            )
            if window <= 0:
                opened = self._window_open.setdefault(stream_id, asyncio.Event())
                opened.clear()
                await opened.wait()
                continue
            chunk, view = view[:window], view[window:]
            self._conn.send_data(stream_id, chunk.tobytes(), end_stream=not view)
            await self._flush()


async def serve_http2(
    stream: Stream, handler: Handler, *, idle_timeout: float | None = None
) -> None:
    """Serve HTTP/2 on *stream* until the peer closes or sends GOAWAY."""
    await HTTP2Connection(stream, handler, idle_timeout=idle_timeout).run()


__all__ = ["HTTP2Connection", "serve_http2", "PREFACE"]
