from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, Path, status

from src.api.observability import correlation_id_var
from src.api.routers.rebalance_http_errors import raise_rebalance_http_exception
from src.api.routers.runtime_utils import assert_feature_enabled, env_int, knowledge_base_enabled
from src.core.errors import RebalancePreconditionError
from src.core.jobs import (
    RebalanceJobAcceptedResponse,
    RebalanceJobNotFoundError,
    RebalanceJobService,
    RebalanceJobStatusResponse,
)
from src.core.jobs.service import DEFAULT_JOB_TTL_SECONDS, DEFAULT_MAX_CONCURRENT_JOBS
from src.core.models import RebalanceRequest
from src.core.profiles import resolve_profile
from src.core.rebalance import validate_preconditions
from src.infrastructure.rebalance_jobs import InMemoryRebalanceJobRepository

router = APIRouter(tags=["Rebalance Jobs"])

_SERVICE: Optional[RebalanceJobService] = None


def get_rebalance_job_service() -> RebalanceJobService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = RebalanceJobService(
            repository=InMemoryRebalanceJobRepository(),
            max_concurrent=env_int("REBALANCE_JOBS_MAX_CONCURRENT", DEFAULT_MAX_CONCURRENT_JOBS),
            ttl_seconds=env_int("REBALANCE_JOB_TTL_SECONDS", DEFAULT_JOB_TTL_SECONDS),
            knowledge_base_enabled=knowledge_base_enabled(),
        )
    return _SERVICE


def shutdown_rebalance_job_service() -> None:
    global _SERVICE
    if _SERVICE is not None:
        _SERVICE.shutdown()
        _SERVICE = None


def reset_rebalance_job_service_for_tests() -> None:
    shutdown_rebalance_job_service()


def _assert_jobs_enabled() -> None:
    assert_feature_enabled(
        name="REBALANCE_JOBS_ENABLED",
        default=True,
        detail="REBALANCE_JOBS_DISABLED",
    )


@router.post(
    "/rebalance/jobs",
    response_model=RebalanceJobAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit Rebalance Job",
    description=(
        "Validates preconditions synchronously, then runs the rebalance on the bounded job pool. "
        "Use the returned job id or correlation id to retrieve status and result."
    ),
)
def submit_rebalance_job(
    payload: RebalanceRequest,
    correlation_id: Annotated[
        Optional[str],
        Header(
            alias="X-Correlation-Id",
            description="Optional correlation id for job tracking. Generated when omitted.",
            examples=["corr-rebalance-async-001"],
        ),
    ] = None,
    service: Annotated[RebalanceJobService, Depends(get_rebalance_job_service)] = None,
) -> RebalanceJobAcceptedResponse:
    _assert_jobs_enabled()
    try:
        validate_preconditions(payload, resolve_profile(payload.profile))
    except RebalancePreconditionError as exc:
        raise_rebalance_http_exception(exc)
    return service.submit(
        request=payload,
        correlation_id=correlation_id or correlation_id_var.get() or None,
    )


@router.get(
    "/rebalance/jobs/by-correlation/{correlation_id}",
    response_model=RebalanceJobStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Rebalance Job by Correlation Id",
    description="Returns the latest job submitted with the correlation id.",
)
def get_rebalance_job_by_correlation(
    correlation_id: Annotated[
        str,
        Path(description="Correlation id of the job.", examples=["corr-rebalance-async-001"]),
    ],
    service: Annotated[RebalanceJobService, Depends(get_rebalance_job_service)] = None,
) -> RebalanceJobStatusResponse:
    _assert_jobs_enabled()
    try:
        return service.get_by_correlation(correlation_id=correlation_id)
    except RebalanceJobNotFoundError as exc:
        raise_rebalance_http_exception(exc)


@router.get(
    "/rebalance/jobs/{job_id}",
    response_model=RebalanceJobStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Rebalance Job",
    description="Returns job status with the result when DONE or the error reference when FAILED.",
)
def get_rebalance_job(
    job_id: Annotated[str, Path(description="Rebalance job identifier.", examples=["rbj_001"])],
    service: Annotated[RebalanceJobService, Depends(get_rebalance_job_service)] = None,
) -> RebalanceJobStatusResponse:
    _assert_jobs_enabled()
    try:
        return service.get(job_id=job_id)
    except RebalanceJobNotFoundError as exc:
        raise_rebalance_http_exception(exc)


@router.post(
    "/rebalance/jobs/{job_id}/cancel",
    response_model=RebalanceJobStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel Rebalance Job",
    description=(
        "Requests cancellation. Pending jobs fail with `JOB_CANCELLED` immediately; running jobs "
        "fail with `JOB_CANCELLED` once the engine returns. Finished jobs are returned unchanged."
    ),
)
def cancel_rebalance_job(
    job_id: Annotated[str, Path(description="Rebalance job identifier.", examples=["rbj_001"])],
    service: Annotated[RebalanceJobService, Depends(get_rebalance_job_service)] = None,
) -> RebalanceJobStatusResponse:
    _assert_jobs_enabled()
    try:
        return service.cancel(job_id=job_id)
    except RebalanceJobNotFoundError as exc:
        raise_rebalance_http_exception(exc)
