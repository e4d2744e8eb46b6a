from datetime import datetime
from typing import Optional, Protocol

from src.core.jobs.models import RebalanceJobRecord


class RebalanceJobRepository(Protocol):
    def create_job(self, job: RebalanceJobRecord) -> None: ...

    def update_job(self, job: RebalanceJobRecord) -> None: ...

    def get_job(self, *, job_id: str) -> Optional[RebalanceJobRecord]: ...

    def get_job_by_correlation(self, *, correlation_id: str) -> Optional[RebalanceJobRecord]: ...

    def purge_expired_jobs(self, *, ttl_seconds: int, now: datetime) -> int: ...
