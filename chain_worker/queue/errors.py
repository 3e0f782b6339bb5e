"""Exceptions raised to callers of the queue engine.

Only structural mistakes by the caller are exceptions. Failures of the
underlying work are recorded on the job and published as events.
"""


class QueueError(Exception):
    """Base class for queue errors."""


class JobValidationError(QueueError, ValueError):
    """Raised by ``enqueue`` when the job type or payload is missing or malformed."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")
