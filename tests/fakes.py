"""In-memory stand-ins for decrypted streams and ticket policies."""

from __future__ import annotations

import asyncio
from typing import Optional


class MemoryStream:
    """Queue-backed stream: tests ``feed`` client bytes and ``read`` replies."""

    def __init__(self) -> None:
        self._incoming: asyncio.Queue[bytes] = asyncio.Queue()
        self._outgoing: asyncio.Queue[bytes] = asyncio.Queue()
        self._pending = b""

    def feed(self, data: bytes) -> None:
        """Queue *data* for the server; ``b""`` signals end of stream."""
        self._incoming.put_nowait(data)

    async def read(self, timeout: float = 5.0) -> bytes:
        """Return the next chunk the server sent."""
        return await asyncio.wait_for(self._outgoing.get(), timeout)

    async def read_all(self) -> bytes:
        """Return everything sent so far without waiting."""
        chunks = []
        while not self._outgoing.empty():
            chunks.append(self._outgoing.get_nowait())
        return b"".join(chunks)

    async def receive(self, max_bytes: int = 65536) -> bytes:
        if self._pending:
            data, self._pending = self._pending[:max_bytes], self._pending[max_bytes:]
            return data
        return await self._incoming.get()

    def unread(self, data: bytes) -> None:
        self._pending = data + self._pending

    async def send(self, data: bytes) -> None:
        self._outgoing.put_nowait(data)


class RoundTripPolicy:
    """Reversible ticket policy, so issued tickets can be redeemed."""

    def enabled(self) -> bool:
        return True

    def lifetime(self) -> int:
        return 300

    def encrypt(self, plain: bytes) -> Optional[bytes]:
        return plain[::-1]

    def decrypt(self, cipher: bytes) -> Optional[bytes]:
        return cipher[::-1]
