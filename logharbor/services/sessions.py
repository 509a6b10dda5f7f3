"""
Viewer sessions for the live log stream.

Lifecycle: CONNECTING -> ACTIVE -> DRAINING -> CLOSED.

- ACTIVE: a writer task drains the outbound buffer to the transport and pings
  on a fixed cadence; a reader task only watches for liveness/disconnect.
- DRAINING: entered from a reader fault, a writer fault, broadcaster eviction
  or processor shutdown. Teardown is idempotent; the first caller cleans up and
  later callers no-op.
"""
import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Dict, Optional, Tuple

from logharbor.services.transport import Transport, TransportClosed

logger = logging.getLogger("logharbor.session")


class SessionState(str, Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    DRAINING = "draining"
    CLOSED = "closed"


class SessionRegistry:
    """
    The shared set of live viewer sessions.

    register / deregister / snapshot / clear are the only ways in. None of them
    await, so each one runs to completion on the event loop without interleaving
    with another.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, "ViewerSession"] = {}

    def register(self, session: "ViewerSession") -> int:
        self._sessions[session.id] = session
        return len(self._sessions)

    def deregister(self, session: "ViewerSession") -> bool:
        """Remove session; False if it was already gone."""
        if self._sessions.get(session.id) is not session:
            return False
        del self._sessions[session.id]
        return True

    def snapshot(self) -> Tuple["ViewerSession", ...]:
        return tuple(self._sessions.values())

    def clear(self) -> None:
        self._sessions.clear()

    def __contains__(self, session: object) -> bool:
        return isinstance(session, ViewerSession) and self._sessions.get(session.id) is session

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def count(self) -> int:
        return len(self._sessions)


class ViewerSession:
    """One connected viewer: bounded outbound buffer plus writer/reader tasks."""

    def __init__(
        self,
        transport: Transport,
        registry: SessionRegistry,
        buffer_size: int = 256,
        ping_interval: float = 54.0,
        read_timeout: float = 60.0,
        close_timeout: float = 1.0,
    ):
        self.id = uuid.uuid4().hex[:12]
        self.state = SessionState.CONNECTING
        self.last_liveness_at = time.monotonic()
        self._transport = transport
        self._registry = registry
        self._buffer: asyncio.Queue[Optional[bytes]] = asyncio.Queue(maxsize=buffer_size)
        self._buffer_closed = False
        self._aborted = False
        self._ping_interval = ping_interval
        self._read_timeout = read_timeout
        self._close_timeout = close_timeout

    @property
    def peer(self) -> str:
        return self._transport.peer

    def touch(self) -> None:
        self.last_liveness_at = time.monotonic()

    def offer(self, payload: bytes) -> bool:
        """Non-blocking enqueue. False when the buffer is full or already closed."""
        if self._buffer_closed:
            return False
        try:
            self._buffer.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    # ─────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────

    async def run(self, welcome: Optional[bytes] = None) -> None:
        """Drive the session from accepted handshake to CLOSED."""
        if self.state is not SessionState.CONNECTING:
            return
        total = self._registry.register(self)
        self.state = SessionState.ACTIVE
        self.touch()
        logger.info(
            "Viewer %s connected from %s. Total clients: %d", self.id, self.peer, total
        )
        if welcome is not None:
            self._buffer.put_nowait(welcome)

        writer = asyncio.create_task(self._write_loop(), name=f"viewer-{self.id}-writer")
        reader = asyncio.create_task(self._read_loop(), name=f"viewer-{self.id}-reader")
        try:
            await asyncio.wait({writer, reader}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self.terminate()
            if not writer.done():
                # lets the writer see the sentinel and send the close frame
                await asyncio.wait({writer}, timeout=self._close_timeout)
            writer.cancel()
            reader.cancel()
            await asyncio.gather(writer, reader, return_exceptions=True)
            if not self._aborted:
                await self._transport.close()
            self.state = SessionState.CLOSED
            logger.info(
                "Viewer %s disconnected. Total clients: %d", self.id, self._registry.count
            )

    def terminate(self) -> bool:
        """
        Move to DRAINING: deregister and close the outbound buffer.

        Safe to call any number of times from any path; returns True only for
        the call that performed the transition.
        """
        self._registry.deregister(self)
        if self.state in (SessionState.DRAINING, SessionState.CLOSED):
            return False
        self.state = SessionState.DRAINING
        self._close_buffer()
        return True

    def evict(self) -> bool:
        """Terminate and drop the connection immediately (slow consumer, shutdown)."""
        first = self.terminate()
        if not self._aborted:
            self._aborted = True
            self._transport.abort()
        return first

    def _close_buffer(self) -> None:
        if self._buffer_closed:
            return
        self._buffer_closed = True
        try:
            self._buffer.put_nowait(None)
        except asyncio.QueueFull:
            # undelivered payloads go down with the session
            while not self._buffer.empty():
                self._buffer.get_nowait()
            self._buffer.put_nowait(None)

    # ─────────────────────────────────────────────────────────
    # Tasks
    # ─────────────────────────────────────────────────────────

    async def _write_loop(self) -> None:
        next_ping = time.monotonic() + self._ping_interval
        try:
            while True:
                try:
                    payload = await asyncio.wait_for(
                        self._buffer.get(),
                        timeout=max(next_ping - time.monotonic(), 0),
                    )
                except asyncio.TimeoutError:
                    await self._send_ping()
                    next_ping = time.monotonic() + self._ping_interval
                    continue
                if payload is None:
                    if not self._aborted:
                        await self._transport.close()
                    return
                await self._transport.send(payload)
        except TransportClosed as exc:
            logger.debug("Viewer %s write failed: %s", self.id, exc)
        except Exception as exc:
            logger.warning("Viewer %s writer error: %s", self.id, exc)

    async def _send_ping(self) -> None:
        pong = await self._transport.ping()
        asyncio.ensure_future(pong).add_done_callback(self._on_pong)

    def _on_pong(self, fut: "asyncio.Future[object]") -> None:
        if fut.cancelled():
            return
        if fut.exception() is None:
            self.touch()

    async def _read_loop(self) -> None:
        try:
            while True:
                remaining = self.last_liveness_at + self._read_timeout - time.monotonic()
                if remaining <= 0:
                    logger.info("Viewer %s missed read deadline", self.id)
                    return
                try:
                    await asyncio.wait_for(self._transport.receive(), timeout=remaining)
                except asyncio.TimeoutError:
                    # a pong may have moved the deadline; re-check
                    continue
                self.touch()
        except TransportClosed as exc:
            logger.debug("Viewer %s read ended: %s", self.id, exc)
        except Exception as exc:
            logger.warning("Viewer %s reader error: %s", self.id, exc)
