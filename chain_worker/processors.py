"""Processors that can be plugged into the queue engine.

A processor attempts one unit of work and reports the outcome:
``{"success": bool, "transactionHash": str | None, "error": str | None}``.
Real deployments pass a processor that talks to the ledger backend.
"""

import asyncio
import hashlib
import logging
import random
from typing import Optional

from chain_worker.config import get_settings
from chain_worker.queue.models import JobSnapshot, ProcessResult

logger = logging.getLogger(__name__)


class SimulatedLedgerProcessor:
    """
    Stand-in for the ledger backend, for development and demos.

    Produces a deterministic fake transaction hash per job attempt. With a
    non-zero ``failure_rate`` some attempts fail, which exercises the retry
    and dead letter paths.
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        latency_ms: float = 0.0,
        rng: Optional[random.Random] = None,
    ):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        self.failure_rate = failure_rate
        self.latency_ms = latency_ms
        self._rng = rng or random.Random()
        self.calls = 0

    @classmethod
    def from_settings(cls) -> "SimulatedLedgerProcessor":
        settings = get_settings()
        return cls(
            failure_rate=settings.simulated_failure_rate,
            latency_ms=settings.simulated_latency_ms,
        )

    @staticmethod
    def transaction_hash_for(job: JobSnapshot) -> str:
        digest = hashlib.sha256(f"{job.id}:{job.attempts}".encode()).hexdigest()
        return f"0x{digest}"

    async def __call__(self, job: JobSnapshot) -> ProcessResult:
        self.calls += 1
        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000)

        if self._rng.random() < self.failure_rate:
            logger.info(f"[SIMULATED] {job.type} for job {job.id} rejected by simulated network")
            return ProcessResult(success=False, error="Simulated network error")

        tx_hash = self.transaction_hash_for(job)
        logger.info(f"[SIMULATED] {job.type} for job {job.id} confirmed: {tx_hash[:18]}...")
        return ProcessResult(success=True, transaction_hash=tx_hash)
