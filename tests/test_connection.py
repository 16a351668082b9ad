"""Protocol selection between HTTP/1.x and HTTP/2."""

import asyncio

import pytest

from core.app import handle
from tests.fakes import MemoryStream
from tlsgate.connection import HTTP1, HTTP2, ConnectionServer, sniff_protocol
from tlsgate.http2 import PREFACE
from tlsgate.tls import HandshakeResult


def _result(alpn=None) -> HandshakeResult:
    return HandshakeResult("TLSv1.3", "TLS_AES_128_GCM_SHA256", alpn)


def test_sniff_detects_preface_split_across_reads() -> None:
    async def scenario():
        stream = MemoryStream()
        stream.feed(PREFACE[:5])
        stream.feed(PREFACE[5:] + b"rest")
        protocol = await sniff_protocol(stream)
        return protocol, await stream.receive()

    protocol, replayed = asyncio.run(scenario())
    assert protocol == HTTP2
    assert replayed == PREFACE + b"rest"


def test_sniff_falls_back_to_http1_without_consuming() -> None:
    async def scenario():
        stream = MemoryStream()
        stream.feed(b"GET / HTTP/1.1\r\n\r\n")
        protocol = await sniff_protocol(stream)
        return protocol, await stream.receive()

    assert asyncio.run(scenario()) == (HTTP1, b"GET / HTTP/1.1\r\n\r\n")


@pytest.mark.parametrize(
    "alpn, expected", [("h2", HTTP2), ("http/1.1", "http/1.1"), ("http/1.0", "http/1.0")]
)
def test_alpn_decides_without_reading(alpn: str, expected: str) -> None:
    async def scenario():
        return await ConnectionServer(handle).select_protocol(MemoryStream(), alpn)

    assert asyncio.run(scenario()) == expected


def test_serve_without_alpn_uses_sniffed_protocol() -> None:
    async def scenario():
        stream = MemoryStream()
        stream.feed(b"GET / HTTP/1.1\r\n\r\n")
        stream.feed(b"")
        await ConnectionServer(handle).serve(stream, _result())
        return await stream.read_all()

    assert asyncio.run(scenario()).endswith(b"success!\n")


def test_serve_gives_up_on_silent_peer() -> None:
    async def scenario():
        stream = MemoryStream()
        await ConnectionServer(handle, idle_timeout=0.05).serve(stream, _result())
        return await stream.read_all()

    assert asyncio.run(scenario()) == b""
