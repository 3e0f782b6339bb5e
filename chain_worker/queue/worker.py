"""Background driver for the queue engine.

The engine has no thread of control of its own; this loop calls
``process_jobs`` whenever work is due and prunes old completed jobs.
"""

import asyncio
import logging
import signal
import time
from typing import Optional

from chain_worker.config import get_settings

from .engine import Processor, QueueEngine, get_default_engine
from .events import EVENT_ENQUEUED

logger = logging.getLogger(__name__)

# Lower bound for the loop sleep, so a due-but-unclaimable job cannot spin the loop
MIN_WAIT_SECONDS = 0.01


class QueueWorker:
    """Drives one engine with one processor until stopped."""

    def __init__(
        self,
        engine: QueueEngine,
        processor: Processor,
        poll_interval_ms: float = 1000,
        prune_interval_ms: float = 300_000,
        retention_ms: Optional[float] = None,
    ):
        self.engine = engine
        self.processor = processor
        self.poll_interval_ms = poll_interval_ms
        self.prune_interval_ms = prune_interval_ms
        # None defers to the engine config
        self.retention_ms = retention_ms
        self._running = False
        self._wake = asyncio.Event()
        self.passes = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def wake(self, *_args) -> None:
        """Cut the current sleep short (e.g. when a job was just enqueued)."""
        self._wake.set()

    def stop(self) -> None:
        """Stop the loop after the current pass."""
        self._running = False
        self._wake.set()

    def seconds_until_next_pass(self) -> float:
        """Sleep until the next job is due, but never longer than the poll interval."""
        poll = self.poll_interval_ms / 1000
        due = self.engine.next_due_at()
        if due is None:
            return poll
        wait = (due - self.engine.clock.now()).total_seconds()
        return max(MIN_WAIT_SECONDS, min(poll, wait))

    async def run(self) -> None:
        """Process jobs continuously."""
        self._running = True
        last_prune = time.monotonic()
        logger.info("Starting queue worker")

        while self._running:
            try:
                await self.engine.process_jobs(self.processor)
                self.passes += 1

                if (time.monotonic() - last_prune) * 1000 >= self.prune_interval_ms:
                    await self.engine.prune_completed(self.retention_ms)
                    last_prune = time.monotonic()
            except asyncio.CancelledError:
                logger.info("Queue worker cancelled")
                break
            except Exception as e:
                logger.exception(f"Queue worker error: {e}")

            await self._sleep(self.seconds_until_next_pass())

        self._running = False
        logger.info("Queue worker stopped")

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()


def build_worker(
    engine: Optional[QueueEngine] = None,
    processor: Optional[Processor] = None,
) -> QueueWorker:
    """Wire a worker from settings: default engine, simulated processor unless one is given."""
    from chain_worker.processors import SimulatedLedgerProcessor

    settings = get_settings()
    engine = engine or get_default_engine()
    worker = QueueWorker(
        engine,
        processor or SimulatedLedgerProcessor.from_settings(),
        poll_interval_ms=settings.worker_poll_interval_ms,
        prune_interval_ms=settings.prune_interval_ms,
    )
    engine.on(EVENT_ENQUEUED, worker.wake)
    return worker


async def run_worker(processor: Optional[Processor] = None) -> None:
    """Run the background worker until SIGTERM/SIGINT."""
    worker = build_worker(processor=processor)
    loop = asyncio.get_running_loop()

    def shutdown():
        logger.info("Shutdown signal received")
        worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    finally:
        await worker.engine.shutdown()


if __name__ == "__main__":
    from chain_worker.lib.json_logger import setup_text_logging

    setup_text_logging(get_settings().log_level)
    asyncio.run(run_worker())
