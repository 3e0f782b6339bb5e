"""Shared fixtures: a manually driven clock and an engine bound to it."""

import pytest

from chain_worker.config import clear_settings_cache
from chain_worker.queue import ManualClock, QueueConfig, QueueEngine, reset_default_engine


@pytest.fixture(autouse=True)
def isolated_defaults():
    """Every test starts with fresh settings and no shared engine."""
    clear_settings_cache()
    reset_default_engine()
    yield
    reset_default_engine()
    clear_settings_cache()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def config():
    return QueueConfig(
        max_attempts=3,
        initial_delay_ms=100,
        max_delay_ms=1000,
        backoff_multiplier=2,
        processing_timeout_ms=5000,
    )


@pytest.fixture
def engine(config, clock):
    return QueueEngine(config, clock=clock)


def succeed(tx_hash="0x123"):
    """Async processor that always confirms with ``tx_hash``."""
    async def processor(job):
        return {"success": True, "transactionHash": tx_hash}
    return processor


async def always_fail(job):
    return {"success": False, "error": "Persistent error"}
