from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

RebalanceJobStatus = Literal["PENDING", "RUNNING", "DONE", "FAILED"]


class RebalanceJobAcceptedResponse(BaseModel):
    job_id: str = Field(description="Asynchronous rebalance job identifier.", examples=["rbj_001"])
    status: RebalanceJobStatus = Field(description="Initial job status.", examples=["PENDING"])
    correlation_id: str = Field(
        description="Correlation id assigned to the job.",
        examples=["corr-rebalance-async-001"],
    )
    created_at: str = Field(
        description="Job acceptance timestamp (UTC ISO8601).",
        examples=["2026-02-20T12:00:00+00:00"],
    )
    status_url: str = Field(
        description="Relative API path for job status retrieval.",
        examples=["/rebalance/jobs/rbj_001"],
    )


class RebalanceJobError(BaseModel):
    code: str = Field(description="Stable job error code.", examples=["REBALANCE_FAILED"])
    message: str = Field(
        description="Caller-facing error message. Failure details stay in server logs.",
        examples=["Error ref RB-1A2B3C4D"],
    )


class RebalanceJobStatusResponse(BaseModel):
    job_id: str = Field(description="Asynchronous rebalance job identifier.", examples=["rbj_001"])
    status: RebalanceJobStatus = Field(description="Current job status.", examples=["DONE"])
    correlation_id: str = Field(
        description="Correlation id associated with this job.",
        examples=["corr-rebalance-async-001"],
    )
    created_at: str = Field(
        description="Job acceptance timestamp (UTC ISO8601).",
        examples=["2026-02-20T12:00:00+00:00"],
    )
    started_at: Optional[str] = Field(
        default=None,
        description="Job start timestamp (UTC ISO8601).",
        examples=["2026-02-20T12:00:01+00:00"],
    )
    finished_at: Optional[str] = Field(
        default=None,
        description="Job completion timestamp (UTC ISO8601).",
        examples=["2026-02-20T12:00:02+00:00"],
    )
    result: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Rebalance result payload when the job is DONE.",
    )
    error: Optional[RebalanceJobError] = Field(
        default=None,
        description="Error payload when the job is FAILED.",
    )


class RebalanceJobRecord(BaseModel):
    job_id: str
    status: RebalanceJobStatus
    correlation_id: str
    request_hash: str
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    cancel_requested: bool = False
    request_json: Optional[Dict[str, Any]] = None
    result_json: Optional[Dict[str, Any]] = None
    error_json: Optional[Dict[str, str]] = None
