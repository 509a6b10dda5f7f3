"""Health endpoints: status with viewer count, liveness, readiness, stats."""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from logharbor.db.schemas import HealthOut, StatsOut, rfc3339_now

router = APIRouter(tags=["health"])
logger = logging.getLogger("logharbor.health")


def get_processor(request: Request):
    processor = getattr(request.app.state, "processor", None)
    if processor is None:
        raise RuntimeError("Processor not initialized")
    return processor


@router.get("/health", response_model=HealthOut)
async def health(processor=Depends(get_processor)):
    """Service status plus the number of connected viewers."""
    return HealthOut(timestamp=rfc3339_now(), clients=processor.session_count)


@router.get("/health/live")
async def liveness():
    """Liveness: process is running. No dependencies checked."""
    return {"status": "ok"}


@router.get("/health/ready")
async def readiness(processor=Depends(get_processor)):
    """Readiness: processor running and Elasticsearch reachable."""
    errors = await processor.ready()
    if errors:
        logger.warning("Readiness check failed: %s", ", ".join(errors))
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "errors": errors},
        )
    return {"status": "ok"}


@router.get("/stats", response_model=StatsOut)
async def stats(processor=Depends(get_processor)):
    """Processor counters (in-memory)."""
    return StatsOut(**processor.snapshot_stats())
