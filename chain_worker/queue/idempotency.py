"""Idempotency index: collapses repeated submissions onto one job.

The index itself is a plain mapping. Atomicity of check-then-create is
provided by the engine, which calls ``reserve`` and ``bind`` inside one
critical section.
"""

import hashlib
import json
from typing import Any, Optional

KEY_PREFIX = "idem_"


def derive_idempotency_key(job_type: str, payload: dict[str, Any]) -> str:
    """
    Compute the idempotency key for a job when the caller supplies none.

    The key is a hash of the job type and a canonical (key-sorted, compact)
    JSON rendering of the payload, so dict ordering does not matter.
    """
    payload_str = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(f"{job_type}:{payload_str}".encode()).hexdigest()[:16]
    return f"{KEY_PREFIX}{digest}"


class IdempotencyIndex:
    """Maps an idempotency key to the id of the live job holding it."""

    def __init__(self):
        self._owners: dict[str, str] = {}

    def reserve(self, key: str) -> Optional[str]:
        """Return the id of the job already holding ``key``, or None if free."""
        return self._owners.get(key)

    def bind(self, key: str, job_id: str) -> None:
        self._owners[key] = job_id

    def release(self, key: str, job_id: Optional[str] = None) -> bool:
        """
        Free a key.

        If ``job_id`` is given the key is only released while it still
        belongs to that job, so a stale release cannot free a key that was
        re-bound to a newer job.
        """
        owner = self._owners.get(key)
        if owner is None or (job_id is not None and owner != job_id):
            return False
        del self._owners[key]
        return True

    def owner_of(self, key: str) -> Optional[str]:
        return self._owners.get(key)

    def __len__(self) -> int:
        return len(self._owners)
