"""
Push-channel transport: the per-connection operations a viewer session needs.

WebSocketTransport adapts a `websockets` server connection; tests substitute
an in-memory fake with the same shape.
"""
from typing import Awaitable, Protocol

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed


class TransportClosed(Exception):
    """The connection is gone (peer closed, network error, or local abort)."""


class Transport(Protocol):
    @property
    def peer(self) -> str: ...

    async def send(self, payload: bytes) -> None: ...

    async def receive(self) -> str | bytes: ...

    async def ping(self) -> Awaitable[object]: ...

    async def close(self) -> None: ...

    def abort(self) -> None: ...


class WebSocketTransport:
    def __init__(self, ws: ServerConnection):
        self._ws = ws

    @property
    def peer(self) -> str:
        addr = self._ws.remote_address
        if isinstance(addr, tuple) and len(addr) >= 2:
            return f"{addr[0]}:{addr[1]}"
        return str(addr)

    async def send(self, payload: bytes) -> None:
        """Write payload as a single text frame."""
        try:
            await self._ws.send(payload, text=True)
        except ConnectionClosed as exc:
            raise TransportClosed(str(exc)) from exc

    async def receive(self) -> str | bytes:
        try:
            return await self._ws.recv()
        except ConnectionClosed as exc:
            raise TransportClosed(str(exc)) from exc

    async def ping(self) -> Awaitable[object]:
        """Send a ping; the returned awaitable resolves when the pong arrives."""
        try:
            return await self._ws.ping()
        except ConnectionClosed as exc:
            raise TransportClosed(str(exc)) from exc

    async def close(self) -> None:
        """Send a close frame and wait (bounded by close_timeout) for the handshake."""
        await self._ws.close()

    def abort(self) -> None:
        """Drop the TCP connection without a closing handshake."""
        transport = self._ws.transport
        if transport is not None:
            transport.abort()
