"""Exponential backoff for failed attempts."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from .models import QueueConfig


def compute_delay_ms(
    attempt: int,
    initial_delay_ms: float,
    max_delay_ms: float,
    multiplier: float,
) -> float:
    """
    Delay before the next attempt, in milliseconds.

    Args:
        attempt: 1-based number of the attempt that just failed
        initial_delay_ms: Delay after the first failure
        max_delay_ms: Upper bound for any delay
        multiplier: Growth factor per attempt

    Returns:
        min(initial_delay_ms * multiplier ** (attempt - 1), max_delay_ms)
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return min(initial_delay_ms * (multiplier ** (attempt - 1)), max_delay_ms)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy configuration."""
    max_attempts: int = 5
    initial_delay_ms: float = 1000.0
    max_delay_ms: float = 300_000.0  # 5 minutes
    multiplier: float = 2.0

    @classmethod
    def from_config(cls, config: QueueConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            initial_delay_ms=config.initial_delay_ms,
            max_delay_ms=config.max_delay_ms,
            multiplier=config.backoff_multiplier,
        )

    def get_delay_ms(self, attempt: int) -> float:
        """Calculate delay for a given attempt number."""
        return compute_delay_ms(attempt, self.initial_delay_ms, self.max_delay_ms, self.multiplier)

    def next_attempt_at(self, attempt: int, now: datetime) -> datetime:
        return now + timedelta(milliseconds=self.get_delay_ms(attempt))

    def is_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts
