"""TCP accept loop performing a TLS handshake per connection."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Set, Tuple

from . import metrics
from .exceptions import HandshakeError
from .tls import HandshakeResult, ServerContexts, TLSServerConfig, TLSStream

LOGGER = logging.getLogger("tlsgate.listener")

ConnectionCallback = Callable[[TLSStream, HandshakeResult], Awaitable[None]]


class TLSListener:
    """Accept TCP connections and hand each handshaken stream to *on_connection*.

    Every connection runs in its own task. Failures in one connection are
    logged at that task's boundary and never reach the accept loop.
    """

    def __init__(
        self,
        config: TLSServerConfig,
        on_connection: ConnectionCallback,
        *,
        host: str = "::1",
        port: int = 8001,
        handshake_timeout: float | None = None,
        backlog: int = 1024,
    ) -> None:
        self.config = config
        self.host = host
        self.port = port
        self.handshake_timeout = handshake_timeout
        self.backlog = backlog
        self._on_connection = on_connection
        self._contexts = ServerContexts(config)
        self._server: Optional[asyncio.Server] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def address(self) -> Tuple[str, int]:
        """Return the bound ``(host, port)``; the port is real once started."""
        if self._server is not None and self._server.sockets:
            host, port = self._server.sockets[0].getsockname()[:2]
            return host, port
        return self.host, self.port

    @property
    def url(self) -> str:
        host, port = self.address
        if ":" in host:
            host = f"[{host}]"
        return f"https://{host}:{port}"

    async def start(self) -> None:
        """Bind the listening socket; raises ``OSError`` when that fails."""
        self._server = await asyncio.start_server(
            self._handle_client, self.host, self.port, backlog=self.backlog
        )
        LOGGER.info("Listening on %s", self.url)

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        assert self._server is not None
        await self._server.serve_forever()

    async def close(self) -> None:
        """Stop accepting and cancel every connection task."""
        if self._server is None:
            return
        self._server.close()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._server.wait_closed()
        self._server = None

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._tasks.add(task)
        metrics.connections_total.inc()
        metrics.active_connections.inc()
        stream = TLSStream(self._contexts.for_connection(), reader, writer)
        try:
            started = time.perf_counter()
            try:
                result = await stream.handshake(self.handshake_timeout)
            except HandshakeError as exc:
                metrics.handshake_failures_total.inc()
                LOGGER.warning("failed to perform tls handshake: %s", exc)
                return
            metrics.handshake_seconds.observe(time.perf_counter() - started)
            LOGGER.debug(
                "handshake with %s: %s %s alpn=%s",
                stream.peer,
                result.protocol_version,
                result.cipher,
                result.alpn_protocol,
            )
            await self._on_connection(stream, result)
        except asyncio.CancelledError:
            LOGGER.debug("connection from %s cancelled", stream.peer)
        except Exception as exc:
            LOGGER.warning(
                "failed to serve connection from %s: %s: %s",
                stream.peer,
                type(exc).__name__,
                exc,
            )
        finally:
            await stream.close()
            metrics.active_connections.dec()
            if task is not None:
                self._tasks.discard(task)


__all__ = ["TLSListener", "ConnectionCallback"]
