"""
Best-effort indexing of log payloads into the search index.

- submit() never blocks: payloads go to a bounded backlog drained by a fixed
  pool of worker tasks; a full backlog drops the payload.
- Malformed payloads and index failures are logged and counted, never retried.
- Workers run concurrently; write completion order is not guaranteed.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from pydantic import ValidationError

from logharbor.db.schemas import IndexedDocument, LogEvent

logger = logging.getLogger("logharbor.indexer")


class IndexClient(Protocol):
    async def index(self, collection: str, document: dict[str, Any]) -> bool: ...


class Indexer:
    def __init__(
        self,
        client: IndexClient,
        index_name: str,
        workers: int = 8,
        queue_maxsize: int = 1000,
        stats: Optional[Dict[str, Any]] = None,
    ):
        self._client = client
        self._index_name = index_name
        self._workers = workers
        self._queue: asyncio.Queue[Optional[bytes]] = asyncio.Queue(maxsize=queue_maxsize)
        self._tasks: set[asyncio.Task[Any]] = set()
        self.stats = stats if stats is not None else {}
        for key in ("indexed", "index_errors", "index_dropped", "malformed"):
            self.stats.setdefault(key, 0)

    def start(self) -> None:
        for i in range(self._workers):
            task = asyncio.create_task(self._worker(), name=f"indexer-{i}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def submit(self, payload: bytes) -> bool:
        """Queue payload for indexing. False (and counted) if the backlog is full."""
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            self.stats["index_dropped"] += 1
            logger.warning("Index backlog full, dropping message")
            return False
        return True

    async def stop(self, timeout: float = 5.0) -> None:
        """Let workers drain the backlog (bounded by timeout), then cancel them."""
        tasks = list(self._tasks)
        for _ in tasks:
            try:
                self._queue.put_nowait(None)
            except asyncio.QueueFull:
                break
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for t in pending:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def index_payload(self, payload: bytes) -> bool:
        """Parse, wrap and write one payload. Returns True if it was indexed."""
        try:
            event = LogEvent.model_validate_json(payload)
        except ValidationError as exc:
            self.stats["malformed"] += 1
            logger.warning("Error parsing log entry: %s", exc.errors(include_url=False))
            return False

        doc = IndexedDocument(log_entry=event)
        try:
            ok = await self._client.index(self._index_name, doc.to_document())
        except Exception as exc:
            ok = False
            logger.warning("Error indexing to %s: %s", self._index_name, exc)
        if not ok:
            self.stats["index_errors"] += 1
            return False
        self.stats["indexed"] += 1
        logger.debug("Indexed log: %s", event.message)
        return True

    async def _worker(self) -> None:
        while True:
            payload = await self._queue.get()
            if payload is None:
                return
            await self.index_payload(payload)
