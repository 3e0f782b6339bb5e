"""Queue engine for ledger submissions.

Features:
- Idempotency keys collapse repeated submissions onto one job
- Retry with exponential backoff, bounded by max_attempts
- Dead Letter Queue (DLQ) with manual reinstatement
- Per-attempt processing timeout
- Single-flight processing: a job is never claimed by two passes
- Lifecycle events (enqueued, completed, retry, dead)

The engine owns no thread of control. A host drives it by calling
``process_jobs`` from a timer, a worker loop or a request handler.
"""

import asyncio
import inspect
import logging
import os
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Union

from chain_worker.config import get_settings
from chain_worker.lib.json_logger import job_logger

from .backoff import RetryPolicy
from .clock import Clock, SystemClock
from .errors import JobValidationError
from .events import (
    EVENT_COMPLETED,
    EVENT_DEAD,
    EVENT_ENQUEUED,
    EVENT_RETRY,
    EventHandler,
    EventSink,
)
from .idempotency import IdempotencyIndex, derive_idempotency_key
from .models import (
    ErrorCode,
    Job,
    JobSnapshot,
    JobStatus,
    ProcessingSummary,
    ProcessResult,
    QueueConfig,
    QueueStats,
)
from .store import JobStore

logger = logging.getLogger(__name__)

ProcessorResult = Union[ProcessResult, dict[str, Any]]
Processor = Callable[[JobSnapshot], Union[ProcessorResult, Awaitable[ProcessorResult]]]


def _discard_outcome(task: "asyncio.Future[Any]") -> None:
    # Abandoned attempts may still finish or fail after their deadline
    if not task.cancelled():
        task.exception()


class QueueEngine:
    """In-process submission queue with retries, DLQ and idempotency."""

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        *,
        clock: Optional[Clock] = None,
        store: Optional[JobStore] = None,
        index: Optional[IdempotencyIndex] = None,
        events: Optional[EventSink] = None,
    ):
        self.config = config or QueueConfig()
        self.retry_policy = RetryPolicy.from_config(self.config)
        self.clock = clock or SystemClock()
        self.events = events or EventSink()
        self._store = store or JobStore()
        self._index = index or IdempotencyIndex()
        # Guards check-then-create in enqueue, job claims and every state update
        self._lock = asyncio.Lock()
        self._active_passes = 0

    @property
    def is_processing(self) -> bool:
        """True while at least one ``process_jobs`` pass is running."""
        return self._active_passes > 0

    def on(self, event: str, handler: EventHandler) -> None:
        """Subscribe to a lifecycle event (see ``EventSink``)."""
        self.events.on(event, handler)

    # ==================== Enqueue ====================

    async def enqueue(
        self,
        job_type: str,
        payload: dict,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """
        Add a job to the queue.

        Args:
            job_type: Kind of ledger operation (e.g. 'REGISTER_EVENT')
            payload: Data passed verbatim to the processor
            idempotency_key: Custom idempotency key (derived from type + payload if None)

        Returns:
            Id of the new job, or of the live job already holding the key

        Raises:
            JobValidationError: If job_type or payload is missing or malformed
        """
        if not isinstance(job_type, str) or not job_type.strip():
            raise JobValidationError("type", "job type is required")
        if payload is None:
            raise JobValidationError("payload", "payload is required")
        if not isinstance(payload, dict):
            raise JobValidationError("payload", f"payload must be a dict, got {type(payload).__name__}")
        if idempotency_key is not None and not isinstance(idempotency_key, str):
            raise JobValidationError("idempotency_key", "idempotency key must be a string")

        key = (idempotency_key or "").strip() or derive_idempotency_key(job_type, payload)

        async with self._lock:
            existing_id = self._index.reserve(key)
            if existing_id is not None:
                existing = self._store.get(existing_id)
                if existing is not None and existing.status != JobStatus.DEAD:
                    logger.info(
                        f"Job with idempotency key {key} already exists: {existing_id}",
                        extra={"job_id": existing_id, "idempotency_key": key},
                    )
                    return existing_id
                # Binding outlived its job (pruned or purged by the host)
                self._index.release(key, existing_id)

            now = self.clock.now()
            job = Job(
                id=self._generate_job_id(now),
                type=job_type,
                payload=payload,
                idempotency_key=key,
                max_attempts=self.config.max_attempts,
                next_attempt_at=now,
                created_at=now,
            )
            self._store.put(job)
            self._index.bind(key, job.id)

        job_logger(job).info(f"Enqueued job {job.id} (idem_key: {key})", extra={"status": job.status.value})
        self.events.emit(EVENT_ENQUEUED, job)
        return job.id

    def _generate_job_id(self, now: datetime) -> str:
        while True:
            job_id = f"job_{now.strftime('%Y%m%d%H%M%S')}_{os.urandom(4).hex()}"
            if job_id not in self._store:
                return job_id

    # ==================== Processing ====================

    async def process_jobs(self, processor: Processor) -> ProcessingSummary:
        """
        Run one processing pass.

        Selects every PENDING job whose next_attempt_at has passed (snapshot
        at call time) and attempts each one once, in due order. Failures are
        recorded on the job and never raised. A job that becomes due again
        during the pass waits for the next call.
        """
        summary = ProcessingSummary()
        self._active_passes += 1
        try:
            cutoff = self.clock.now()
            due = [
                job for job in self._store.list_by_status(JobStatus.PENDING)
                if job.next_attempt_at <= cutoff
            ]
            due.sort(key=lambda job: job.next_attempt_at)

            for candidate in due:
                job = await self._claim(candidate.id, cutoff)
                if job is None:
                    summary.skipped += 1
                    continue

                summary.processed += 1
                success, transaction_hash, error, error_code = await self._attempt(job, processor)
                status = await self._record_outcome(job, success, transaction_hash, error, error_code)

                if status == JobStatus.COMPLETED:
                    summary.completed += 1
                elif status == JobStatus.DEAD:
                    summary.dead += 1
                else:
                    summary.retried += 1
        finally:
            self._active_passes -= 1

        if summary.processed:
            logger.info(
                f"Processing pass done: {summary.processed} processed, {summary.completed} completed, "
                f"{summary.retried} retried, {summary.dead} dead"
            )
        return summary

    async def _claim(self, job_id: str, cutoff: datetime) -> Optional[Job]:
        """Move a due job to PROCESSING. Returns None if another pass got it first."""
        async with self._lock:
            job = self._store.get(job_id)
            if job is None or job.status != JobStatus.PENDING or job.next_attempt_at > cutoff:
                return None
            job.status = JobStatus.PROCESSING
            job.attempts += 1
            job.last_attempt_at = self.clock.now()

        job_logger(job).debug(
            f"Processing job {job.id} (attempt {job.attempts}/{job.max_attempts})",
            extra={"status": job.status.value, "attempts": job.attempts},
        )
        return job

    async def _attempt(
        self, job: Job, processor: Processor
    ) -> tuple[bool, Optional[str], Optional[str], Optional[str]]:
        """
        Invoke the processor once, bounded by processing_timeout_ms.

        Returns:
            Tuple of (success, transaction_hash, error, error_code)
        """
        timeout_ms = self.config.processing_timeout_ms
        log = job_logger(job)
        started = time.monotonic()
        # Only the engine deadline counts as TIMEOUT; a TimeoutError raised by
        # the processor itself is an ordinary processor exception.
        task = asyncio.ensure_future(self._invoke(processor, job.snapshot()))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not done:
            task.cancel()
            task.add_done_callback(_discard_outcome)
            log.warning(f"Job {job.id} timed out after {timeout_ms}ms", extra={"error_code": ErrorCode.TIMEOUT})
            return False, None, f"Processing timeout after {timeout_ms}ms", ErrorCode.TIMEOUT

        try:
            result = self._coerce_result(task.result())
        except Exception as e:
            log.warning(f"Job {job.id} processor error: {e}", extra={"error_code": ErrorCode.EXCEPTION})
            log.debug("Processor traceback", exc_info=True)
            return False, None, str(e) or type(e).__name__, ErrorCode.EXCEPTION

        duration_ms = round((time.monotonic() - started) * 1000, 1)
        log.debug(f"Processor returned success={result.success}", extra={"duration_ms": duration_ms})
        if result.success:
            return True, result.transaction_hash, None, None
        return False, None, result.error or "Unknown error", ErrorCode.PROCESSOR_ERROR

    @staticmethod
    async def _invoke(processor: Processor, job: JobSnapshot) -> Any:
        # Sync processors run in a thread so the timeout can still fire
        if inspect.iscoroutinefunction(processor) or inspect.iscoroutinefunction(
            getattr(processor, "__call__", None)
        ):
            result = await processor(job)
        else:
            result = await asyncio.to_thread(processor, job)
        if inspect.isawaitable(result):
            result = await result
        return result

    @staticmethod
    def _coerce_result(raw: Any) -> ProcessResult:
        if isinstance(raw, ProcessResult):
            return raw
        if isinstance(raw, dict):
            return ProcessResult.model_validate(raw)
        raise TypeError(f"Processor returned {type(raw).__name__}, expected ProcessResult or dict")

    async def _record_outcome(
        self,
        job: Job,
        success: bool,
        transaction_hash: Optional[str],
        error: Optional[str],
        error_code: Optional[str],
    ) -> JobStatus:
        """Apply the result of an attempt and emit the matching event."""
        log = job_logger(job)
        async with self._lock:
            now = self.clock.now()
            if success:
                job.status = JobStatus.COMPLETED
                job.transaction_hash = transaction_hash
                job.completed_at = now
                event = EVENT_COMPLETED
            else:
                job.last_error = error
                job.last_error_code = error_code
                job.error_history.append(f"[{now.isoformat()}] {error}")
                if self.retry_policy.is_exhausted(job.attempts):
                    job.status = JobStatus.DEAD
                    # Free the key so the operation can be resubmitted as a new job
                    self._index.release(job.idempotency_key, job.id)
                    event = EVENT_DEAD
                else:
                    job.status = JobStatus.PENDING
                    job.next_attempt_at = self.retry_policy.next_attempt_at(job.attempts, now)
                    event = EVENT_RETRY

        if event == EVENT_COMPLETED:
            log.info(
                f"Job {job.id} completed successfully",
                extra={"status": job.status.value, "transaction_hash": transaction_hash, "attempts": job.attempts},
            )
        elif event == EVENT_DEAD:
            log.error(
                f"Job {job.id} moved to DLQ after {job.attempts} attempts: {error}",
                extra={"status": job.status.value, "attempts": job.attempts, "error_code": error_code},
            )
        else:
            delay_ms = (job.next_attempt_at - now).total_seconds() * 1000
            log.warning(
                f"Job {job.id} failed, retry {job.attempts}/{job.max_attempts} in {delay_ms:.0f}ms: {error}",
                extra={
                    "status": job.status.value,
                    "attempts": job.attempts,
                    "error_code": error_code,
                    "next_attempt_at": job.next_attempt_at.isoformat(),
                },
            )

        self.events.emit(event, job)
        return job.status

    # ==================== Queries ====================

    def get_job(self, job_id: str, include_dead: bool = False) -> Optional[JobSnapshot]:
        """
        Get a live job by id.

        DEAD jobs live in the dead letter queue and are only returned with
        ``include_dead=True``.
        """
        job = self._store.get(job_id)
        if job is None or (job.status == JobStatus.DEAD and not include_dead):
            return None
        return job.snapshot()

    def get_jobs_by_status(self, status: Union[JobStatus, str]) -> list[JobSnapshot]:
        """All jobs with ``status``, in insertion order."""
        return [job.snapshot() for job in self._store.list_by_status(JobStatus(status))]

    def get_dead_letter_queue(self) -> list[JobSnapshot]:
        return self.get_jobs_by_status(JobStatus.DEAD)

    def get_stats(self) -> QueueStats:
        """Counts per status from one scan, so the parts always add up to total."""
        stats = QueueStats()
        for job in self._store.list_all():
            if job.status == JobStatus.PENDING:
                stats.pending += 1
            elif job.status == JobStatus.PROCESSING:
                stats.processing += 1
            elif job.status == JobStatus.COMPLETED:
                stats.completed += 1
            elif job.status == JobStatus.DEAD:
                stats.dead += 1
            stats.total += 1
        return stats

    def next_due_at(self) -> Optional[datetime]:
        """Earliest next_attempt_at among PENDING jobs, or None if nothing is waiting."""
        pending = self._store.list_by_status(JobStatus.PENDING)
        if not pending:
            return None
        return min(job.next_attempt_at for job in pending)

    # ==================== Dead Letter Queue ====================

    async def retry_dead_letter(self, job_id: str) -> bool:
        """
        Move a DEAD job back to PENDING with a fresh attempt budget.

        Returns False, without changing anything, if no DEAD job has this id
        or if its idempotency key now belongs to another live job.
        """
        async with self._lock:
            job = self._store.get(job_id)
            if job is None or job.status != JobStatus.DEAD:
                return False

            owner = self._index.reserve(job.idempotency_key)
            if owner is not None and owner != job.id:
                logger.warning(
                    f"Cannot retry DLQ job {job_id}: idempotency key {job.idempotency_key} "
                    f"is held by live job {owner}",
                    extra={"job_id": job_id, "idempotency_key": job.idempotency_key},
                )
                return False

            job.status = JobStatus.PENDING
            job.attempts = 0
            job.next_attempt_at = self.clock.now()
            job.last_error = None
            job.last_error_code = None
            self._index.bind(job.idempotency_key, job.id)

        job_logger(job).info(f"Job {job_id} retried from DLQ", extra={"status": job.status.value})
        return True

    async def purge_dead_letter(self, job_id: str) -> bool:
        """Permanently remove one DEAD job. Returns False if there is none with this id."""
        async with self._lock:
            job = self._store.get(job_id)
            if job is None or job.status != JobStatus.DEAD:
                return False
            self._store.remove(job_id)

        logger.info(f"Purged DLQ job {job_id}", extra={"job_id": job_id})
        return True

    async def clear_dead_letter_queue(self) -> int:
        """Remove all DEAD jobs. Returns count of removed jobs."""
        async with self._lock:
            dead = self._store.list_by_status(JobStatus.DEAD)
            for job in dead:
                self._store.remove(job.id)

        if dead:
            logger.info(f"Cleared {len(dead)} jobs from DLQ")
        return len(dead)

    # ==================== Maintenance ====================

    async def prune_completed(self, older_than_ms: Optional[float] = None) -> int:
        """
        Remove COMPLETED jobs that finished more than ``older_than_ms`` ago.

        Jobs in any other status are never touched. The idempotency key of a
        pruned job is released.
        """
        if older_than_ms is None:
            older_than_ms = self.config.completed_retention_ms
        cutoff = self.clock.now() - timedelta(milliseconds=older_than_ms)

        pruned = 0
        async with self._lock:
            for job in self._store.list_by_status(JobStatus.COMPLETED):
                if job.completed_at is not None and job.completed_at < cutoff:
                    self._store.remove(job.id)
                    self._index.release(job.idempotency_key, job.id)
                    pruned += 1

        if pruned:
            logger.info(f"Pruned {pruned} completed jobs older than {older_than_ms:.0f}ms")
        return pruned

    async def shutdown(self, timeout_s: float = 30.0) -> bool:
        """
        Wait for running processing passes to finish.

        Returns False if passes were still running when the timeout expired.
        """
        deadline = time.monotonic() + timeout_s
        while self.is_processing:
            if time.monotonic() >= deadline:
                logger.warning("Queue shutdown timed out with processing still in flight")
                return False
            await asyncio.sleep(0.1)
        logger.info("Queue engine shut down")
        return True


def new_queue_engine(
    config: Optional[QueueConfig] = None,
    *,
    clock: Optional[Clock] = None,
    events: Optional[EventSink] = None,
) -> QueueEngine:
    """Build an engine. Without a config, the queue settings from the environment are used."""
    return QueueEngine(config or get_settings().queue_config(), clock=clock, events=events)


# Process-wide default instance, created on first use
_default_engine: Optional[QueueEngine] = None


def get_default_engine() -> QueueEngine:
    """Get the shared engine instance (for dependency injection)."""
    global _default_engine
    if _default_engine is None:
        _default_engine = new_queue_engine()
    return _default_engine


def reset_default_engine() -> None:
    """Drop the shared engine (test isolation)."""
    global _default_engine
    _default_engine = None
