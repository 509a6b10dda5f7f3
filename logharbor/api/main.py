"""
FastAPI application for the LogHarbor processor.

- Health: /health, /health/live, /health/ready, /stats
- The processor (Kafka ingest, indexing, WebSocket fan-out on its own port)
  runs inside the app lifespan.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from logharbor.api.health import router as health_router
from logharbor.core.config import settings
from logharbor.core.errors import StartupError
from processor.main import LogProcessor, build_processor

logger = logging.getLogger("logharbor.api")


def _setup_logging() -> None:
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(processor: Optional[LogProcessor] = None) -> FastAPI:
    """Build the health app. Without a processor one is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _setup_logging()
        proc = processor or build_processor()
        app.state.processor = proc
        try:
            await proc.start()
        except StartupError as exc:
            logger.error("Failed to start log processor: %s", exc)
            raise
        yield
        await proc.stop()

    app = FastAPI(
        title="LogHarbor Processor",
        description="Kafka to Elasticsearch indexing with live WebSocket fan-out",
        version="1.0.0",
        lifespan=lifespan,
    )
    if processor is not None:
        app.state.processor = processor
    app.include_router(health_router)
    return app


app = create_app()


def main() -> None:
    uvicorn.run(app, host=settings.HEALTH_HOST, port=settings.HEALTH_PORT, log_config=None)


if __name__ == "__main__":
    main()
