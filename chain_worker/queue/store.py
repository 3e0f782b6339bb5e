"""In-memory job store.

Keyed by job id, insertion ordered. The store knows nothing about status
semantics; the engine is its only writer. A durable backend can replace it
as long as it keeps the same methods.
"""

from typing import Optional

from .models import Job, JobStatus


class JobStore:
    """Keyed collection of job records."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}

    def put(self, job: Job) -> None:
        """Insert or replace a job. Replacing keeps the original position."""
        self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def remove(self, job_id: str) -> bool:
        """Remove a job. Returns False if it was not stored."""
        return self._jobs.pop(job_id, None) is not None

    def list_all(self) -> list[Job]:
        """All jobs in insertion order (a copy, safe to mutate the store while iterating)."""
        return list(self._jobs.values())

    def list_by_status(self, status: JobStatus) -> list[Job]:
        return [job for job in self.list_all() if job.status == status]

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs
