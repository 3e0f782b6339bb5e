"""Data models for the submission queue."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JobStatus(str, Enum):
    """Job status states."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    DEAD = "DEAD"  # Attempts exhausted, waiting in the dead letter queue


class JobType:
    """Known ledger operations. The engine accepts any non-empty type."""
    REGISTER_EVENT = "REGISTER_EVENT"
    MINT_NFT = "MINT_NFT"
    WHITELIST_PRODUCER = "WHITELIST_PRODUCER"
    UPDATE_BATCH = "UPDATE_BATCH"


class ErrorCode:
    """Classification of a failed attempt, stored in ``Job.last_error_code``."""
    PROCESSOR_ERROR = "PROCESSOR_ERROR"  # processor returned success=False
    EXCEPTION = "EXCEPTION"  # processor raised or returned garbage
    TIMEOUT = "TIMEOUT"  # processor exceeded processing_timeout_ms


class Job(BaseModel):
    """A unit of work waiting to be submitted to the ledger."""
    id: str
    type: str
    payload: dict
    idempotency_key: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int
    next_attempt_at: datetime
    created_at: datetime
    last_attempt_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    last_error: Optional[str] = None
    last_error_code: Optional[str] = None
    error_history: list[str] = []

    def snapshot(self) -> "JobSnapshot":
        """Detached, read-only copy handed to processors, handlers and callers."""
        return JobSnapshot.model_validate(self.model_dump())


class JobSnapshot(Job):
    """Frozen copy of a job at a point in time."""
    model_config = ConfigDict(frozen=True)


class ProcessResult(BaseModel):
    """Outcome of one processor invocation.

    Processors may return this model or a plain dict of the same shape,
    e.g. ``{"success": True, "transactionHash": "0x..."}``.
    """
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    error: Optional[str] = None


class QueueConfig(BaseModel):
    """Construction-time engine configuration."""
    max_attempts: int = Field(default=5, ge=1)
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=300_000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    processing_timeout_ms: int = Field(default=60_000, gt=0)
    completed_retention_ms: int = Field(default=3_600_000, ge=0)

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "QueueConfig":
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self


class QueueStats(BaseModel):
    """Counts by status, computed from a single scan of the store."""
    pending: int = 0
    processing: int = 0
    completed: int = 0
    dead: int = 0
    total: int = 0


class ProcessingSummary(BaseModel):
    """What a single ``process_jobs`` pass did."""
    processed: int = 0
    completed: int = 0
    retried: int = 0
    dead: int = 0
    skipped: int = 0  # claimed by a concurrent pass or no longer eligible
