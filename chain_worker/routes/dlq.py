"""Dead letter queue endpoints for operators."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from chain_worker.queue import JobSnapshot, QueueEngine, get_default_engine

router = APIRouter(prefix="/dlq", tags=["dlq"])
logger = logging.getLogger(__name__)


@router.get("", response_model=list[JobSnapshot])
async def list_dead_jobs(limit: int = 100, engine: QueueEngine = Depends(get_default_engine)):
    """Jobs that exhausted their attempts, oldest first."""
    return engine.get_dead_letter_queue()[:max(limit, 0)]


@router.get("/{job_id}", response_model=JobSnapshot)
async def get_dead_job(job_id: str, engine: QueueEngine = Depends(get_default_engine)):
    job = engine.get_job(job_id, include_dead=True)
    if job is None or job.status != "DEAD":
        raise HTTPException(status_code=404, detail=f"No dead job {job_id}")
    return job


@router.post("/{job_id}/retry")
async def retry_dead_job(job_id: str, engine: QueueEngine = Depends(get_default_engine)):
    """Reinstate a dead job with a fresh attempt budget."""
    if not await engine.retry_dead_letter(job_id):
        raise HTTPException(status_code=404, detail=f"No retryable dead job {job_id}")
    logger.info(f"Operator requeued DLQ job {job_id}")
    return {"job_id": job_id, "status": "PENDING"}


@router.delete("/{job_id}")
async def purge_dead_job(job_id: str, engine: QueueEngine = Depends(get_default_engine)):
    """Permanently drop a dead job."""
    if not await engine.purge_dead_letter(job_id):
        raise HTTPException(status_code=404, detail=f"No dead job {job_id}")
    logger.info(f"Operator purged DLQ job {job_id}")
    return {"job_id": job_id, "purged": True}
