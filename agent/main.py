"""
LogHarbor agent: synthetic log producer.

- Generates one realistic LogEvent every AGENT_INTERVAL_SEC for SERVICE_NAME.
- Publishes it to Kafka keyed by service name, so one service's events stay
  ordered through the pipeline.
"""
import asyncio
import logging
import random
import signal
from typing import Optional

from logharbor.core.config import settings
from logharbor.core.errors import StartupError
from logharbor.db.schemas import LogEvent, LogLevel, rfc3339_now
from logharbor.services.kafka_client import KafkaLogPublisher

logger = logging.getLogger("logharbor.agent")


MESSAGES: dict[LogLevel, list[str]] = {
    LogLevel.INFO: [
        "User logged in successfully",
        "Payment processed successfully",
        "User profile updated",
        "Email notification sent",
        "Database connection established",
        "Cache hit for user data",
        "File uploaded successfully",
        "API request completed",
        "User session created",
        "Data backup completed",
    ],
    LogLevel.WARN: [
        "High memory usage detected",
        "Database connection pool at 80% capacity",
        "Slow query detected (>2s)",
        "Rate limit approaching threshold",
        "Deprecated API endpoint called",
        "Large file upload detected",
        "Unusual login pattern detected",
        "Cache miss rate increased",
        "External service response time degraded",
        "Disk space usage at 85%",
    ],
    LogLevel.ERROR: [
        "Failed to connect to database",
        "Payment gateway timeout",
        "Invalid authentication token",
        "File upload failed - disk full",
        "External API call failed",
        "Database transaction rollback",
        "User session expired",
        "Email delivery failed",
        "Cache connection lost",
        "SSL certificate expired",
    ],
    LogLevel.DEBUG: [
        "Processing user request",
        "Validating input parameters",
        "Executing database query",
        "Sending HTTP request",
        "Parsing response data",
        "Checking user permissions",
        "Generating authentication token",
        "Compressing response data",
        "Logging audit trail",
        "Updating cache entry",
    ],
}

USER_IDS = ["user123", "user456", "user789", "user101", "user202", "admin001", "guest999"]
REQUEST_IDS = ["req-001", "req-002", "req-003", "req-004", "req-005", "req-006", "req-007"]
IPS = ["192.168.1.100", "10.0.0.50", "172.16.0.25", "203.0.113.10", "198.51.100.5"]


def generate_event(service: str, rng: Optional[random.Random] = None) -> LogEvent:
    rng = rng or random.Random()
    level = rng.choice(list(LogLevel))
    fields: dict = {
        "level": level,
        "message": rng.choice(MESSAGES[level]),
        "timestamp": rfc3339_now(),
        "service": service,
    }
    if level in (LogLevel.INFO, LogLevel.ERROR):
        fields["user_id"] = rng.choice(USER_IDS)
        fields["request_id"] = rng.choice(REQUEST_IDS)
        if level is LogLevel.ERROR:
            fields["duration_ms"] = rng.randint(100, 5099)
    elif level is LogLevel.DEBUG:
        fields["duration_ms"] = rng.randint(10, 209)
    if rng.random() < 0.7:
        fields["ip"] = rng.choice(IPS)
    return LogEvent(**fields)


class LogAgent:
    def __init__(self, publisher: KafkaLogPublisher, service: str, interval: float):
        self._publisher = publisher
        self._service = service
        self._interval = interval
        self.produced = 0
        self.errors = 0

    async def produce_one(self) -> bool:
        event = generate_event(self._service)
        try:
            await self._publisher.publish(self._service.encode("utf-8"), event.to_bytes())
        except Exception as exc:
            self.errors += 1
            logger.warning("Error producing log: %s", exc)
            return False
        self.produced += 1
        logger.info("Produced log: %s", event.model_dump_json(exclude_none=True))
        return True

    async def run(self, stop: asyncio.Event) -> None:
        logger.info("Starting LogHarbor Agent for service: %s", self._service)
        logger.info("Producing logs to topic: %s", self._publisher.topic)
        while not stop.is_set():
            await self.produce_one()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass


async def run_agent() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    publisher = KafkaLogPublisher(
        settings.KAFKA_BOOTSTRAP_SERVERS,
        settings.KAFKA_TOPIC,
        client_id=f"log-agent-{settings.SERVICE_NAME}",
    )
    try:
        await publisher.start()
    except StartupError as exc:
        logger.error("Failed to create log generator: %s", exc)
        raise SystemExit(1) from exc

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    agent = LogAgent(publisher, settings.SERVICE_NAME, settings.AGENT_INTERVAL_SEC)
    try:
        await agent.run(stop)
        logger.info("Received shutdown signal, stopping log agent...")
    finally:
        await publisher.stop()


def main() -> None:
    asyncio.run(run_agent())


if __name__ == "__main__":
    main()
