"""Byte-stream transports for the device link."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

from websockets.asyncio.client import ClientConnection, connect

# Base64 images travel inside single frames.
MAX_FRAME_BYTES = 32 * 1024 * 1024


class Transport(Protocol):
    """One open bidirectional connection carrying whole JSON frames."""

    async def send(self, frame: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


TransportFactory = Callable[[str, int], Awaitable[Transport]]


class WebSocketTransport:
    """Transport over a ``websockets`` client connection."""

    def __init__(self, connection: ClientConnection) -> None:
        self._connection = connection

    async def send(self, frame: str) -> None:
        await self._connection.send(frame)

    async def close(self) -> None:
        await self._connection.close()

    async def __aiter__(self) -> AsyncIterator[str | bytes]:
        # Iteration ends quietly on a normal close and raises ConnectionClosed otherwise.
        async for message in self._connection:
            yield message


async def open_websocket(address: str, port: int) -> Transport:
    """Open ``ws://address:port``; timeouts are enforced by the caller."""
    host = f"[{address}]" if ":" in address else address
    connection = await connect(f"ws://{host}:{port}", open_timeout=None, max_size=MAX_FRAME_BYTES)
    return WebSocketTransport(connection)
