"""TLS server configuration and per-connection handshake driving.

OpenSSL runs in memory-BIO mode: the raw asyncio streams carry ciphertext
and :class:`TLSStream` shuttles records between them and the
``SSL.Connection`` so that every network wait is an ``await``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from OpenSSL import SSL, crypto

from .certificates import CertificateBundle
from .exceptions import ConfigurationError, HandshakeError
from .tickets import TicketPolicy, ZeroTicketPolicy, resumes_sessions

LOGGER = logging.getLogger("tlsgate.tls")

ALPN_PROTOCOLS: Tuple[bytes, ...] = (b"h2", b"http/1.1", b"http/1.0")

# SSL_CTX_set_timeout takes a C long, which is 32 bits on some platforms.
MAX_SESSION_TIMEOUT = 2**31 - 1

READ_SIZE = 65536
RECORD_SIZE = 16384


@dataclass(frozen=True, slots=True)
class TLSServerConfig:
    """Immutable server-wide TLS settings shared by every connection."""

    bundle: CertificateBundle
    alpn_protocols: Tuple[bytes, ...] = ALPN_PROTOCOLS
    ticket_policy: TicketPolicy = field(default_factory=ZeroTicketPolicy)

    def __post_init__(self) -> None:
        if not self.bundle.chain:
            raise ConfigurationError("certificate chain is empty")
        if not self.alpn_protocols:
            raise ConfigurationError("at least one ALPN protocol is required")
        for proto in self.alpn_protocols:
            if not 0 < len(proto) < 256:
                raise ConfigurationError(f"invalid ALPN protocol identifier: {proto!r}")

    def select_alpn(self, offered: Sequence[bytes]) -> Optional[bytes]:
        """Return the highest-priority configured protocol the client offered."""
        for proto in self.alpn_protocols:
            if proto in offered:
                return proto
        return None


def _apply_ticket_policy(context: SSL.Context, policy: TicketPolicy) -> None:
    if not policy.enabled():
        context.set_options(SSL.OP_NO_TICKET)
        context.set_session_cache_mode(SSL.SESS_CACHE_OFF)
        return
    context.set_timeout(min(policy.lifetime(), MAX_SESSION_TIMEOUT))
    if not resumes_sessions(policy):
        # Tickets are still issued; only the issuing context can open them.
        context.set_session_cache_mode(SSL.SESS_CACHE_OFF)


def build_context(config: TLSServerConfig) -> SSL.Context:
    """Build the OpenSSL server context for *config*.

    Raises
    ------
    ConfigurationError
        If the certificate chain or private key cannot be loaded, or the key
        does not belong to the leaf certificate.
    """

    context = SSL.Context(SSL.TLS_SERVER_METHOD)
    context.set_min_proto_version(SSL.TLS1_2_VERSION)
    context.set_options(SSL.OP_NO_COMPRESSION | SSL.OP_CIPHER_SERVER_PREFERENCE)
    context.set_verify(SSL.VERIFY_NONE)
    leaf, *intermediates = config.bundle.chain
    try:
        context.use_certificate(crypto.load_certificate(crypto.FILETYPE_ASN1, leaf))
        for der in intermediates:
            context.add_extra_chain_cert(crypto.load_certificate(crypto.FILETYPE_ASN1, der))
        context.use_privatekey(
            crypto.load_privatekey(crypto.FILETYPE_ASN1, config.bundle.private_key)
        )
        context.check_privatekey()
    except (SSL.Error, crypto.Error) as exc:
        raise ConfigurationError(f"unusable certificate or key: {_reason(exc)}") from exc

    def select(conn: SSL.Connection, offered: list[bytes]) -> bytes:
        chosen = config.select_alpn(offered)
        if chosen is None:
            # Raising here makes OpenSSL send a fatal no_application_protocol alert.
            raise SSL.Error(
                "no application protocol in common: client offered "
                + ", ".join(repr(p) for p in offered)
            )
        return chosen

    context.set_alpn_select_callback(select)
    _apply_ticket_policy(context, config.ticket_policy)
    return context


class ServerContexts:
    """Hand each new connection the OpenSSL context it handshakes with.

    OpenSSL draws fresh ticket keys for every context it creates. A policy
    that issues tickets it cannot redeem therefore gets a new context per
    connection: clients receive real tickets, but a ticket only decrypts
    under the context of the connection that issued it, so presenting it
    later always ends in a full handshake. Every other policy shares one
    context for the life of the process.
    """

    def __init__(self, config: TLSServerConfig) -> None:
        self.config = config
        self._shared = build_context(config)
        policy = config.ticket_policy
        self.per_connection = policy.enabled() and not resumes_sessions(policy)

    def for_connection(self) -> SSL.Context:
        if self.per_connection:
            return build_context(self.config)
        return self._shared


def _reason(exc: Exception) -> str:
    errors = exc.args[0] if exc.args else None
    if isinstance(errors, list) and errors:
        return "; ".join(str(entry[-1]) for entry in errors)
    return str(exc) or type(exc).__name__


class ConnectionState(enum.Enum):
    ACCEPTED = "accepted"
    HANDSHAKING = "handshaking"
    ESTABLISHED = "established"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class HandshakeResult:
    """Parameters negotiated by a completed handshake."""

    protocol_version: str
    cipher: Optional[str]
    alpn_protocol: Optional[str]


class TLSStream:
    """Server side of one TLS connection over raw asyncio streams."""

    def __init__(
        self,
        context: SSL.Context,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self._conn = SSL.Connection(context, None)
        self._conn.set_accept_state()
        self._reader = reader
        self._writer = writer
        self._pending = b""
        self.state = ConnectionState.ACCEPTED
        self.result: Optional[HandshakeResult] = None
        peer = writer.get_extra_info("peername")
        self.peer = f"{peer[0]}:{peer[1]}" if peer else "unknown"

    async def handshake(self, timeout: float | None = None) -> HandshakeResult:
        """Complete the server handshake, failing after *timeout* seconds."""

        self.state = ConnectionState.HANDSHAKING
        try:
            await asyncio.wait_for(self._negotiate(), timeout)
        except asyncio.TimeoutError:
            self._fail()
            raise HandshakeError(f"handshake timed out after {timeout}s", self.peer) from None
        except SSL.Error as exc:
            self._fail()
            raise HandshakeError(_reason(exc), self.peer) from exc
        except ConnectionError as exc:
            self._fail()
            raise HandshakeError(f"connection lost: {exc}", self.peer) from exc

        alpn = self._conn.get_alpn_proto_negotiated()
        self.result = HandshakeResult(
            protocol_version=self._conn.get_protocol_version_name(),
            cipher=self._conn.get_cipher_name(),
            alpn_protocol=alpn.decode("ascii") if alpn else None,
        )
        self.state = ConnectionState.ESTABLISHED
        return self.result

    async def _negotiate(self) -> None:
        while True:
            try:
                self._conn.do_handshake()
            except SSL.WantReadError:
                await self._flush()
                data = await self._reader.read(READ_SIZE)
                if not data:
                    raise ConnectionAbortedError("peer closed during handshake")
                self._conn.bio_write(data)
            else:
                await self._flush()
                return

    def _fail(self) -> None:
        self.state = ConnectionState.FAILED
        # Push out any alert OpenSSL queued for the client.
        with suppress(SSL.Error):
            self._write_out()

    def _write_out(self) -> None:
        while True:
            try:
                chunk = self._conn.bio_read(READ_SIZE)
            except SSL.WantReadError:
                return
            if not chunk:
                return
            self._writer.write(chunk)

    async def _flush(self) -> None:
        self._write_out()
        await self._writer.drain()

    async def receive(self, max_bytes: int = READ_SIZE) -> bytes:
        """Return decrypted application bytes, or ``b""`` once the peer is done."""

        if self._pending:
            data, self._pending = self._pending[:max_bytes], self._pending[max_bytes:]
            return data
        while True:
            try:
                return self._conn.recv(max_bytes)
            except SSL.WantReadError:
                await self._flush()
                data = await self._reader.read(READ_SIZE)
                if not data:
                    return b""
                self._conn.bio_write(data)
            except SSL.ZeroReturnError:
                return b""

    def unread(self, data: bytes) -> None:
        """Push *data* back so the next :meth:`receive` returns it first."""
        self._pending = data + self._pending

    async def send(self, data: bytes) -> None:
        """Encrypt and transmit *data*."""

        for offset in range(0, len(data), RECORD_SIZE):
            chunk = data[offset : offset + RECORD_SIZE]
            while chunk:
                sent = self._conn.send(chunk)
                chunk = chunk[sent:]
        await self._flush()

    async def close(self) -> None:
        """Send close_notify when established and release the socket."""

        if self.state is ConnectionState.ESTABLISHED:
            with suppress(SSL.Error):
                self._conn.shutdown()
                self._write_out()
        if self.state is not ConnectionState.FAILED:
            self.state = ConnectionState.CLOSED
        if not self._writer.is_closing():
            self._writer.close()
        with suppress(OSError):
            await self._writer.wait_closed()


__all__ = [
    "ALPN_PROTOCOLS",
    "TLSServerConfig",
    "build_context",
    "ServerContexts",
    "ConnectionState",
    "HandshakeResult",
    "TLSStream",
]
