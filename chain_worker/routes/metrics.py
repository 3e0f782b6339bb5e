"""Metrics endpoint for monitoring and observability."""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends

from chain_worker.config import get_settings
from chain_worker.queue import QueueEngine, get_default_engine

router = APIRouter(prefix="/metrics", tags=["metrics"])
logger = logging.getLogger(__name__)


@router.get("")
async def get_metrics(engine: QueueEngine = Depends(get_default_engine)):
    """
    Get current metrics for monitoring.

    Returns:
        Metrics including job counts per status, DLQ alert flag and
        event handler failures.
    """
    settings = get_settings()
    stats = engine.get_stats()
    next_due = engine.next_due_at()

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "jobs": stats.model_dump(),
        "dlq": {
            "count": stats.dead,
            "alert": stats.dead > settings.dlq_alert_threshold,
        },
        "next_due_at": next_due.isoformat() if next_due else None,
        "processing": engine.is_processing,
        "event_handler_errors": engine.events.error_count,
    }
