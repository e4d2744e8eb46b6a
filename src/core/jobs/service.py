import hashlib
import json
import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from threading import BoundedSemaphore, Lock
from typing import Optional

from src.core.jobs.models import (
    RebalanceJobAcceptedResponse,
    RebalanceJobRecord,
    RebalanceJobStatusResponse,
)
from src.core.jobs.repository import RebalanceJobRepository
from src.core.models import RebalanceRequest
from src.core.profiles import resolve_profile
from src.core.rebalance.engine import run_rebalance, validate_preconditions

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_JOBS = 2
DEFAULT_JOB_TTL_SECONDS = 1800


class RebalanceJobNotFoundError(Exception):
    pass


class RebalanceJobService:
    """Runs rebalance requests on a bounded worker pool and keeps their outcome for a TTL."""

    def __init__(
        self,
        *,
        repository: RebalanceJobRepository,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_JOBS,
        ttl_seconds: int = DEFAULT_JOB_TTL_SECONDS,
        knowledge_base_enabled: bool = True,
    ) -> None:
        self._repository = repository
        self._max_concurrent = max(1, max_concurrent)
        self._ttl_seconds = max(1, ttl_seconds)
        self._knowledge_base_enabled = knowledge_base_enabled
        self._semaphore = BoundedSemaphore(self._max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_concurrent, thread_name_prefix="rebalance-job"
        )
        self._futures: dict[str, Future] = {}
        self._futures_lock = Lock()
        # Guards every read-check-write of a job status.
        self._state_lock = Lock()

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def submit(
        self,
        *,
        request: RebalanceRequest,
        correlation_id: Optional[str],
        dispatch: bool = True,
        created_at: Optional[datetime] = None,
    ) -> RebalanceJobAcceptedResponse:
        self._cleanup_expired_jobs()
        request_json = request.model_dump(mode="json")
        job = RebalanceJobRecord(
            job_id=f"rbj_{uuid.uuid4().hex[:12]}",
            status="PENDING",
            correlation_id=correlation_id or f"corr_{uuid.uuid4().hex[:12]}",
            request_hash=_request_hash(request_json),
            created_at=created_at or _utc_now(),
            request_json=request_json,
        )
        self._repository.create_job(job)
        logger.info("Rebalance job accepted. JobID=%s CID=%s", job.job_id, job.correlation_id)
        if dispatch:
            future = self._executor.submit(self.execute, job_id=job.job_id)
            with self._futures_lock:
                self._futures[job.job_id] = future
            future.add_done_callback(lambda _: self._forget_future(job.job_id))
        return RebalanceJobAcceptedResponse(
            job_id=job.job_id,
            status=job.status,
            correlation_id=job.correlation_id,
            created_at=job.created_at.isoformat(),
            status_url=f"/rebalance/jobs/{job.job_id}",
        )

    def execute(self, *, job_id: str) -> None:
        if not self._claim_pending(job_id, start=False):
            return

        with self._semaphore:
            if not self._claim_pending(job_id, start=True):
                return
            job = self._require_job(job_id)

            try:
                request = RebalanceRequest.model_validate(job.request_json)
                profile = resolve_profile(request.profile)
                validate_preconditions(request, profile)
                result = run_rebalance(
                    request,
                    profile,
                    correlation_id=job.correlation_id,
                    knowledge_base_enabled=self._knowledge_base_enabled,
                )
            except Exception:
                error_ref = f"RB-{uuid.uuid4().hex[:8].upper()}"
                logger.exception(
                    "Rebalance job failed. JobID=%s",
                    job_id,
                    extra={"extra_fields": {"job_id": job_id, "error_ref": error_ref}},
                )
                with self._state_lock:
                    self._complete(
                        job_id,
                        status="FAILED",
                        error={"code": "REBALANCE_FAILED", "message": f"Error ref {error_ref}"},
                    )
                return

            with self._state_lock:
                job = self._require_job(job_id)
                if job.cancel_requested:
                    self._mark_cancelled(job)
                    return
                self._complete(job_id, status="DONE", result=result.model_dump(mode="json"))

    def cancel(self, *, job_id: str) -> RebalanceJobStatusResponse:
        with self._state_lock:
            job = self._require_job(job_id)
            if job.status in ("DONE", "FAILED"):
                return self._to_status(job)
            job.cancel_requested = True
            self._repository.update_job(job)
            with self._futures_lock:
                future = self._futures.get(job_id)
            if job.status == "PENDING" and (future is None or future.cancel()):
                self._mark_cancelled(job)
            status = self._to_status(self._require_job(job_id))
        logger.info("Rebalance job cancellation requested. JobID=%s", job_id)
        return status

    def get(self, *, job_id: str) -> RebalanceJobStatusResponse:
        return self._to_status(self._require_job(job_id))

    def get_by_correlation(self, *, correlation_id: str) -> RebalanceJobStatusResponse:
        self._cleanup_expired_jobs()
        job = self._repository.get_job_by_correlation(correlation_id=correlation_id)
        if job is None:
            raise RebalanceJobNotFoundError("REBALANCE_JOB_NOT_FOUND")
        return self._to_status(job)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _require_job(self, job_id: str) -> RebalanceJobRecord:
        self._cleanup_expired_jobs()
        job = self._repository.get_job(job_id=job_id)
        if job is None:
            raise RebalanceJobNotFoundError("REBALANCE_JOB_NOT_FOUND")
        return job

    def _claim_pending(self, job_id: str, *, start: bool) -> bool:
        """Check a job is still runnable and optionally move it to RUNNING."""
        with self._state_lock:
            job = self._require_job(job_id)
            if job.status != "PENDING":
                return False
            if job.cancel_requested:
                self._mark_cancelled(job)
                return False
            if start:
                job.status = "RUNNING"
                job.started_at = _utc_now()
                self._repository.update_job(job)
            return True

    def _complete(
        self,
        job_id: str,
        *,
        status: str,
        result: Optional[dict] = None,
        error: Optional[dict] = None,
    ) -> None:
        job = self._require_job(job_id)
        job.status = status
        job.result_json = result
        job.error_json = error
        job.finished_at = _utc_now()
        job.request_json = None
        self._repository.update_job(job)

    def _mark_cancelled(self, job: RebalanceJobRecord) -> None:
        self._complete(
            job.job_id,
            status="FAILED",
            error={"code": "JOB_CANCELLED", "message": "Job was cancelled before completion."},
        )

    def _forget_future(self, job_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(job_id, None)

    def _to_status(self, job: RebalanceJobRecord) -> RebalanceJobStatusResponse:
        return RebalanceJobStatusResponse(
            job_id=job.job_id,
            status=job.status,
            correlation_id=job.correlation_id,
            created_at=job.created_at.isoformat(),
            started_at=job.started_at.isoformat() if job.started_at else None,
            finished_at=job.finished_at.isoformat() if job.finished_at else None,
            result=job.result_json,
            error=job.error_json,
        )

    def _cleanup_expired_jobs(self) -> None:
        self._repository.purge_expired_jobs(ttl_seconds=self._ttl_seconds, now=_utc_now())


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _request_hash(request_json: dict) -> str:
    canonical = json.dumps(request_json, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"
