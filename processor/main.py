"""
LogHarbor processor.

- Consumes log events from Kafka one at a time.
- Hands each payload to the indexer pool (Elasticsearch, best-effort) and to
  the broadcast queue (live WebSocket fan-out, lossy when full).
- Serves viewers on a WebSocket listener; owns the session registry and the
  broadcast queue, and tears everything down in order on shutdown.
"""
import asyncio
import logging
import signal
from http import HTTPStatus
from typing import Any, Optional, Protocol

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.http11 import Request, Response

from logharbor.core.config import Settings, settings
from logharbor.core.errors import StartupError
from logharbor.db.schemas import welcome_event
from logharbor.db.search import SearchIndex
from logharbor.services.broadcaster import Broadcaster
from logharbor.services.indexer import Indexer
from logharbor.services.kafka_client import KafkaLogConsumer, QueueMessage
from logharbor.services.redis_client import close_redis, stats_sink_enabled, write_stats
from logharbor.services.sessions import SessionRegistry, ViewerSession
from logharbor.services.transport import WebSocketTransport

logger = logging.getLogger("logharbor.processor")


class QueueConsumer(Protocol):
    async def start(self) -> None: ...

    async def poll(self, timeout: float) -> Optional[QueueMessage]: ...

    async def stop(self) -> None: ...


class LogProcessor:
    def __init__(
        self,
        consumer: QueueConsumer,
        search: SearchIndex,
        config: Settings = settings,
        serve_viewers: bool = True,
    ):
        self._config = config
        self._consumer = consumer
        self._search = search
        self._serve_viewers = serve_viewers
        self._running = False
        self._stop = asyncio.Event()
        self.registry = SessionRegistry()
        self._broadcast_queue: asyncio.Queue[Optional[bytes]] = asyncio.Queue(
            maxsize=config.BROADCAST_QUEUE_SIZE
        )
        self._broadcast_closed = False
        self.stats: dict[str, Any] = {
            "status": "stopped",
            "received": 0,
            "indexed": 0,
            "index_errors": 0,
            "index_dropped": 0,
            "malformed": 0,
            "dropped": 0,
            "evicted": 0,
            "errors": 0,
            "queue_depth_hwm": 0,
        }
        self.indexer = Indexer(
            search,
            config.ELASTICSEARCH_INDEX,
            workers=config.INDEX_WORKERS,
            queue_maxsize=config.INDEX_QUEUE_SIZE,
            stats=self.stats,
        )
        self.broadcaster = Broadcaster(self.registry, self._broadcast_queue, stats=self.stats)
        self._consume_task: Optional[asyncio.Task[Any]] = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._server: Optional[Server] = None

    @property
    def session_count(self) -> int:
        return self.registry.count

    @property
    def running(self) -> bool:
        return self._running

    @property
    def broadcast_closed(self) -> bool:
        return self._broadcast_closed

    @property
    def port(self) -> Optional[int]:
        """Port the viewer listener is bound to (useful when configured as 0)."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    def snapshot_stats(self) -> dict[str, Any]:
        out = dict(self.stats)
        out["clients"] = self.session_count
        return out

    async def ready(self) -> list[str]:
        """Names of dependencies that are currently not OK."""
        errors = []
        if not self._running:
            errors.append("processor")
        if not await self._search.ping():
            errors.append("elasticsearch")
        return errors

    def _spawn(self, coro: Any, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ─────────────────────────────────────────────────────────
    # Startup / shutdown
    # ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Connect backends, start tasks and the viewer listener. StartupError is fatal."""
        cfg = self._config
        logger.info("Starting LogHarbor Processor")
        logger.info("Kafka: %s (topic: %s)", cfg.KAFKA_BOOTSTRAP_SERVERS, cfg.KAFKA_TOPIC)
        logger.info("Elasticsearch: %s (index: %s)", cfg.ELASTICSEARCH_URL, cfg.ELASTICSEARCH_INDEX)
        try:
            await self._search.check()
            await self._consumer.start()
        except StartupError:
            self.stats["status"] = "startup failed"
            await self._search.close()
            raise

        # Bind before spawning anything so a failed bind has nothing to unwind.
        if self._serve_viewers:
            try:
                self._server = await serve(
                    self._handle_viewer,
                    cfg.WS_HOST,
                    cfg.WS_PORT,
                    process_request=self._check_path,
                    max_size=cfg.WS_MAX_MESSAGE_BYTES,
                    ping_interval=None,
                    ping_timeout=None,
                )
            except OSError as exc:
                self.stats["status"] = "startup failed"
                await self._consumer.stop()
                await self._search.close()
                raise StartupError(
                    f"WebSocket listener could not bind {cfg.WS_HOST}:{cfg.WS_PORT}: {exc}"
                ) from exc
            logger.info("WebSocket listening on :%s%s", self.port, cfg.WS_PATH)

        self._running = True
        self.indexer.start()
        self._consume_task = self._spawn(self._consume_loop(), "log-consume")
        self._spawn(self.broadcaster.run(self._stop), "log-broadcast")
        if stats_sink_enabled(cfg):
            self._spawn(self._stats_loop(), "log-stats")
        self.stats["status"] = "running"

    async def stop(self) -> None:
        """
        Orderly shutdown.

        The stop signal goes first and the ingest loop is awaited before the
        broadcast queue is closed; sessions are closed before the registry is
        cleared so every writer sees its buffer closed.
        """
        if not self._running:
            return
        self._running = False
        self.stats["status"] = "stopping"
        logger.info("Shutting down LogHarbor Processor...")
        timeout = self._config.SHUTDOWN_TIMEOUT_SEC

        self._stop.set()
        if self._consume_task is not None:
            await self._wait_or_cancel({self._consume_task}, timeout)
        await self._consumer.stop()

        if self._server is not None:
            self._server.close(close_connections=False)
        for session in self.registry.snapshot():
            session.evict()
        self.registry.clear()
        self._close_broadcast_queue()

        if self._server is not None:
            try:
                await asyncio.wait_for(self._server.wait_closed(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Viewer listener did not close within %.1fs", timeout)
        await self._wait_or_cancel(set(self._tasks), timeout)
        await self.indexer.stop(timeout=timeout)
        await self._search.close()
        if stats_sink_enabled(self._config):
            await close_redis()
        self.stats["status"] = "stopped"
        logger.info("LogHarbor Processor shutdown complete")

    @staticmethod
    async def _wait_or_cancel(tasks: set[asyncio.Task[Any]], timeout: float) -> None:
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for t in pending:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _close_broadcast_queue(self) -> None:
        if self._broadcast_closed:
            return
        self._broadcast_closed = True
        try:
            self._broadcast_queue.put_nowait(None)
        except asyncio.QueueFull:
            while not self._broadcast_queue.empty():
                self._broadcast_queue.get_nowait()
            self._broadcast_queue.put_nowait(None)

    # ─────────────────────────────────────────────────────────
    # Ingest
    # ─────────────────────────────────────────────────────────

    async def _consume_loop(self) -> None:
        poll_timeout = self._config.KAFKA_POLL_TIMEOUT_SEC
        while not self._stop.is_set():
            try:
                msg = await self._consumer.poll(poll_timeout)
            except Exception as exc:
                self.stats["errors"] += 1
                logger.warning("Kafka consumer error: %s", exc)
                await asyncio.sleep(poll_timeout)
                continue
            if msg is None:
                continue
            self._handle(msg)
        logger.info("Kafka consumer loop stopped")

    def _handle(self, msg: QueueMessage) -> None:
        """Offer one message to the indexer and the broadcast queue."""
        self.stats["received"] += 1
        logger.debug(
            "Consumed message from %s[%d]@%d", msg.topic, msg.partition, msg.offset
        )
        self.indexer.submit(msg.value)
        if self._broadcast_closed:
            self.stats["dropped"] += 1
            return
        try:
            self._broadcast_queue.put_nowait(msg.value)
            self.stats["queue_depth_hwm"] = max(
                self.stats["queue_depth_hwm"], self._broadcast_queue.qsize()
            )
        except asyncio.QueueFull:
            self.stats["dropped"] += 1
            logger.warning("Broadcast queue full, dropping message")

    async def _stats_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._config.STATS_INTERVAL_SEC)
            try:
                await write_stats(self.snapshot_stats(), self._config)
            except Exception as exc:
                logger.debug("stats write error: %s", exc)

    # ─────────────────────────────────────────────────────────
    # Viewers
    # ─────────────────────────────────────────────────────────

    def _check_path(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        if request.path.split("?", 1)[0] != self._config.WS_PATH:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")
        return None

    async def _handle_viewer(self, ws: ServerConnection) -> None:
        if self._stop.is_set():
            await ws.close(1001, "server shutting down")
            return
        session = ViewerSession(
            WebSocketTransport(ws),
            self.registry,
            buffer_size=self._config.SESSION_BUFFER_SIZE,
            ping_interval=self._config.PING_INTERVAL_SEC,
            read_timeout=self._config.READ_TIMEOUT_SEC,
        )
        await session.run(welcome=welcome_event().to_bytes())


def build_processor(config: Settings = settings) -> LogProcessor:
    consumer = KafkaLogConsumer(
        config.KAFKA_BOOTSTRAP_SERVERS, config.KAFKA_TOPIC, config.KAFKA_GROUP_ID
    )
    search = SearchIndex(config.ELASTICSEARCH_URL)
    return LogProcessor(consumer, search, config)


async def run_processor() -> None:
    """Run without the health API; stops on SIGINT/SIGTERM."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    processor = build_processor()
    try:
        await processor.start()
    except StartupError as exc:
        logger.error("Failed to start log processor: %s", exc)
        raise SystemExit(1) from exc

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)
    try:
        await shutdown.wait()
        logger.info("Received shutdown signal, stopping processor...")
    finally:
        await processor.stop()


def main() -> None:
    asyncio.run(run_processor())


if __name__ == "__main__":
    main()
