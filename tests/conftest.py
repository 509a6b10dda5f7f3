import asyncio
from collections import deque
from typing import Optional

import pytest

from logharbor.core.config import Settings
from logharbor.core.errors import StartupError
from logharbor.db.schemas import LogEvent
from logharbor.services.kafka_client import QueueMessage
from logharbor.services.sessions import SessionRegistry, SessionState, ViewerSession
from logharbor.services.transport import TransportClosed


# ──────────────────────────────────────────────
# Fakes for the three external collaborators
# ──────────────────────────────────────────────

class FakeTransport:
    """In-memory push-channel connection."""

    def __init__(self, peer: str = "127.0.0.1:50000", auto_pong: bool = True, stall_sends: bool = False):
        self.peer = peer
        self.auto_pong = auto_pong
        self.sent: list[bytes] = []
        self.pings = 0
        self.closed = False
        self.aborted = False
        self.send_started = asyncio.Event()
        self.send_gate = asyncio.Event()
        if not stall_sends:
            self.send_gate.set()
        self._inbound: asyncio.Queue = asyncio.Queue()

    async def send(self, payload: bytes) -> None:
        self.send_started.set()
        if self.closed:
            raise TransportClosed("closed")
        await self.send_gate.wait()
        if self.closed:
            raise TransportClosed("closed")
        self.sent.append(payload)

    async def receive(self):
        item = await self._inbound.get()
        if item is None:
            raise TransportClosed("peer went away")
        return item

    async def ping(self):
        if self.closed:
            raise TransportClosed("closed")
        self.pings += 1
        fut = asyncio.get_running_loop().create_future()
        if self.auto_pong:
            fut.set_result(0.0)
        return fut

    async def close(self) -> None:
        self.closed = True
        self._inbound.put_nowait(None)

    def abort(self) -> None:
        self.aborted = True
        self.closed = True
        self._inbound.put_nowait(None)
        self.send_gate.set()

    def push(self, message) -> None:
        self._inbound.put_nowait(message)

    def disconnect(self) -> None:
        self._inbound.put_nowait(None)


class FakeConsumer:
    """Queue client replaying queued records; Exception items are raised from poll()."""

    def __init__(self) -> None:
        self._items: deque = deque()
        self.started = False
        self.stopped = False
        self._offset = 0

    def feed(self, value: bytes, key: bytes = b"log-agent") -> QueueMessage:
        msg = QueueMessage(key=key, value=value, topic="logs", partition=0, offset=self._offset)
        self._offset += 1
        self._items.append(msg)
        return msg

    def fail(self, exc: Exception) -> None:
        self._items.append(exc)

    async def start(self) -> None:
        self.started = True

    async def poll(self, timeout: float) -> Optional[QueueMessage]:
        if self._items:
            item = self._items.popleft()
            if isinstance(item, Exception):
                raise item
            return item
        await asyncio.sleep(timeout)
        return None

    async def stop(self) -> None:
        self.stopped = True


class FakeSearch:
    """Index client recording documents; fail_next makes the next N writes fail."""

    def __init__(self, reachable: bool = True):
        self.reachable = reachable
        self.documents: list[tuple[str, dict]] = []
        self.fail_next = 0
        self.closed = False

    async def check(self) -> None:
        if not self.reachable:
            raise StartupError("Elasticsearch unreachable at http://test:9200")

    async def ping(self) -> bool:
        return self.reachable

    async def index(self, collection: str, document: dict) -> bool:
        if self.fail_next > 0:
            self.fail_next -= 1
            return False
        self.documents.append((collection, document))
        return True

    async def close(self) -> None:
        self.closed = True


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────

async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


async def open_session(
    registry: SessionRegistry,
    transport: FakeTransport,
    welcome: Optional[bytes] = b"welcome",
    **kwargs,
) -> tuple[ViewerSession, asyncio.Task]:
    session = ViewerSession(transport, registry, **kwargs)
    task = asyncio.create_task(session.run(welcome=welcome))
    await wait_until(lambda: session.state is SessionState.ACTIVE)
    return session, task


def make_config(**overrides) -> Settings:
    values = {
        "KAFKA_POLL_TIMEOUT_SEC": 0.01,
        "SHUTDOWN_TIMEOUT_SEC": 1.0,
        "INDEX_WORKERS": 2,
        "WS_HOST": "127.0.0.1",
        "WS_PORT": 0,
        "REDIS_URL": "",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def sample_event():
    return LogEvent(
        level="ERROR",
        message="Payment gateway timeout",
        timestamp="2024-05-01T12:00:00Z",
        service="log-agent",
        user_id="user123",
        request_id="req-001",
        duration_ms=2300,
    )
