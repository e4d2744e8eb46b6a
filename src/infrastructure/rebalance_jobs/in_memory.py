from copy import deepcopy
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Optional

from src.core.jobs.models import RebalanceJobRecord
from src.core.jobs.repository import RebalanceJobRepository


class InMemoryRebalanceJobRepository(RebalanceJobRepository):
    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: dict[str, RebalanceJobRecord] = {}
        self._job_by_correlation: dict[str, str] = {}

    def create_job(self, job: RebalanceJobRecord) -> None:
        with self._lock:
            self._jobs[job.job_id] = deepcopy(job)
            self._job_by_correlation[job.correlation_id] = job.job_id

    def update_job(self, job: RebalanceJobRecord) -> None:
        with self._lock:
            if job.job_id not in self._jobs:
                return
            self._jobs[job.job_id] = deepcopy(job)

    def get_job(self, *, job_id: str) -> Optional[RebalanceJobRecord]:
        with self._lock:
            job = self._jobs.get(job_id)
            return deepcopy(job) if job is not None else None

    def get_job_by_correlation(self, *, correlation_id: str) -> Optional[RebalanceJobRecord]:
        with self._lock:
            job_id = self._job_by_correlation.get(correlation_id)
            if job_id is None:
                return None
            job = self._jobs.get(job_id)
            return deepcopy(job) if job is not None else None

    def purge_expired_jobs(self, *, ttl_seconds: int, now: datetime) -> int:
        with self._lock:
            cutoff = now.astimezone(timezone.utc) - timedelta(seconds=ttl_seconds)
            removed = 0
            for job_id, job in list(self._jobs.items()):
                anchor = job.finished_at or job.created_at
                if anchor < cutoff:
                    self._jobs.pop(job_id, None)
                    if self._job_by_correlation.get(job.correlation_id) == job_id:
                        self._job_by_correlation.pop(job.correlation_id, None)
                    removed += 1
            return removed
