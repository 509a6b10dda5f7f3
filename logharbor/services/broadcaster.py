"""
Live fan-out of raw log payloads to every connected viewer.

- Single consumer of the broadcast queue filled by the ingest loop.
- Each payload is offered to every session's buffer without blocking.
- A full session buffer means a slow or dead viewer: it is evicted on the spot
  so healthy viewers never wait on it.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from logharbor.services.sessions import SessionRegistry

logger = logging.getLogger("logharbor.broadcaster")


class Broadcaster:
    """fan_out(payload) sends to all registered viewer sessions."""

    def __init__(
        self,
        registry: SessionRegistry,
        queue: "asyncio.Queue[Optional[bytes]]",
        stats: Optional[Dict[str, Any]] = None,
    ):
        self._registry = registry
        self._queue = queue
        self.stats = stats if stats is not None else {}
        self.stats.setdefault("evicted", 0)

    def fan_out(self, payload: bytes) -> int:
        """Offer payload to every session; evict those whose buffer is full. Returns deliveries."""
        delivered = 0
        for session in self._registry.snapshot():
            if session.offer(payload):
                delivered += 1
                continue
            if session.evict():
                self.stats["evicted"] += 1
                logger.warning(
                    "Viewer %s send buffer full, removing client. Total clients: %d",
                    session.id,
                    self._registry.count,
                )
        return delivered

    async def run(self, stop: asyncio.Event) -> None:
        """Consume the queue until it is closed (None sentinel) or stop is set."""
        while not stop.is_set():
            try:
                payload = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            if payload is None:
                break
            self.fan_out(payload)
        logger.info("Broadcaster stopped")
