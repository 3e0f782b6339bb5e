"""Health check endpoints."""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, Request

from chain_worker.queue import QueueEngine, get_default_engine

router = APIRouter()
logger = logging.getLogger(__name__)

SERVICE_VERSION = "0.1.0"


@router.get("/")
async def health_check():
    """Basic health check - always returns ok if service is running."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "chain-worker",
        "version": SERVICE_VERSION,
    }


@router.get("/ready")
async def readiness_check(request: Request, engine: QueueEngine = Depends(get_default_engine)):
    """
    Readiness check.
    Ready means the background worker loop is running and driving the engine.
    """
    worker = getattr(request.app.state, "worker", None)
    worker_running = bool(worker and worker.is_running)

    checks = {
        "worker": {"status": "ok" if worker_running else "stopped"},
        "engine": {
            "status": "ok",
            "processing": engine.is_processing,
            "max_attempts": engine.config.max_attempts,
            "processing_timeout_ms": engine.config.processing_timeout_ms,
        },
    }
    if not worker_running:
        logger.warning("Readiness check: queue worker is not running")

    return {
        "status": "ok" if worker_running else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
