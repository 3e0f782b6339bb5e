"""Queue module for ledger submissions.

Features:
- Retry with exponential backoff
- Dead Letter Queue (DLQ) for exhausted jobs
- Idempotency keys to prevent duplicate jobs
- Lifecycle events for notification and metrics collaborators
"""

from .backoff import RetryPolicy, compute_delay_ms
from .clock import Clock, ManualClock, SystemClock
from .engine import (
    Processor,
    QueueEngine,
    get_default_engine,
    new_queue_engine,
    reset_default_engine,
)
from .errors import JobValidationError, QueueError
from .events import (
    EVENT_COMPLETED,
    EVENT_DEAD,
    EVENT_ENQUEUED,
    EVENT_NAMES,
    EVENT_RETRY,
    EventSink,
)
from .idempotency import IdempotencyIndex, derive_idempotency_key
from .models import (
    ErrorCode,
    Job,
    JobSnapshot,
    JobStatus,
    JobType,
    ProcessingSummary,
    ProcessResult,
    QueueConfig,
    QueueStats,
)
from .store import JobStore

__all__ = [
    'QueueEngine',
    'Processor',
    'new_queue_engine',
    'get_default_engine',
    'reset_default_engine',
    'Job',
    'JobSnapshot',
    'JobStatus',
    'JobType',
    'ErrorCode',
    'ProcessResult',
    'ProcessingSummary',
    'QueueConfig',
    'QueueStats',
    'RetryPolicy',
    'compute_delay_ms',
    'Clock',
    'SystemClock',
    'ManualClock',
    'JobStore',
    'IdempotencyIndex',
    'derive_idempotency_key',
    'EventSink',
    'EVENT_ENQUEUED',
    'EVENT_COMPLETED',
    'EVENT_RETRY',
    'EVENT_DEAD',
    'EVENT_NAMES',
    'QueueError',
    'JobValidationError',
]
