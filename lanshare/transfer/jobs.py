"""Thread-safe store of transfer jobs, keyed by job key."""

import threading

from lanshare.transfer.models import TransferJob


class JobStore:
    """Owns the job map for one engine.

    Updates replace the stored `TransferJob` with a modified copy, so a
    concurrent reader never observes a half-applied change.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, TransferJob] = {}
        self._lock = threading.Lock()

    def put(self, job: TransferJob) -> None:
        with self._lock:
            self._jobs[job.job_key] = job

    def get(self, job_key: str) -> TransferJob | None:
        with self._lock:
            return self._jobs.get(job_key)

    def update(self, job_key: str, **changes) -> TransferJob | None:
        """Replace a job with an updated copy. Returns None if it is gone."""
        with self._lock:
            job = self._jobs.get(job_key)
            if job is None:
                return None
            updated = job.model_copy(update=changes)
            self._jobs[job_key] = updated
            return updated

    def pop(self, job_key: str) -> TransferJob | None:
        with self._lock:
            return self._jobs.pop(job_key, None)

    def values(self) -> list[TransferJob]:
        with self._lock:
            return list(self._jobs.values())

    def __contains__(self, job_key: str) -> bool:
        with self._lock:
            return job_key in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
