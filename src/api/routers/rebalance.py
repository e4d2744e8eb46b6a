from decimal import Decimal
from typing import Annotated, Optional

from fastapi import APIRouter, Header, status
from pydantic import BaseModel, Field

from src.api.observability import correlation_id_var
from src.api.routers.rebalance_http_errors import raise_rebalance_http_exception
from src.api.routers.runtime_utils import env_flag, env_int, knowledge_base_enabled
from src.core.errors import RebalancePreconditionError
from src.core.instruments.scoring import score_instrument
from src.core.jobs.service import DEFAULT_JOB_TTL_SECONDS, DEFAULT_MAX_CONCURRENT_JOBS
from src.core.models import (
    InstrumentScoreRequest,
    InstrumentScoreResponse,
    LayerTargetProfile,
    RebalanceRequest,
    RebalanceResult,
    RiskThresholds,
)
from src.core.profiles import ResolvedProfile, resolve_profile, resolve_risk_thresholds
from src.core.rebalance import run_rebalance, validate_preconditions

router = APIRouter(tags=["Layer Rebalancing"])


class RebalanceServiceConfigResponse(BaseModel):
    knowledge_base_enabled: bool = Field(
        description="Default instrument-proposal gating when a request leaves it unset.",
        examples=[True],
    )
    jobs_enabled: bool = Field(description="Whether the async job API is enabled.", examples=[True])
    jobs_max_concurrent: int = Field(description="Concurrent job workers.", examples=[2])
    job_ttl_seconds: int = Field(description="Retention of finished jobs.", examples=[1800])
    default_profile: LayerTargetProfile = Field(
        description="Layer-target profile applied when a request omits profile values."
    )


def _profile_view(profile: ResolvedProfile) -> LayerTargetProfile:
    return LayerTargetProfile(
        profile_key=profile.profile_key,
        layer_targets=profile.target_weights.as_dict(),
        layer_names={layer: profile.layer_name(layer) for layer, _ in profile.target_weights.items()},
        acceptable_variance_pct=profile.variance_pct,
        minimum_saving_plan_size=profile.minimum_saving_plan_size,
        minimum_rebalancing_amount=profile.minimum_rebalancing_amount,
        minimum_instrument_amount=profile.minimum_instrument_amount,
        projection_horizon_months=profile.horizon_months,
        projection_blend_min=profile.blend_min,
        projection_blend_max=profile.blend_max,
        risk_thresholds=RiskThresholds(
            low_max=profile.risk_thresholds.low_max,
            high_min=profile.risk_thresholds.high_min,
        ),
        max_instruments_per_layer=dict(profile.max_instruments_per_layer),
    )


@router.post(
    "/rebalance/simulate",
    response_model=RebalanceResult,
    status_code=status.HTTP_200_OK,
    summary="Simulate a Layer Rebalance",
    description=(
        "Proposes monthly saving-plan amounts per layer and per instrument.\n\n"
        "Processing order:\n"
        "1) Gap projection toward the layer targets over the profile horizon\n"
        "2) Minimum saving plan gate\n"
        "3) Minimum rebalancing gate (skipped changes are redistributed)\n"
        "4) Instrument split per layer, gap suggestions, layer reconciliation\n\n"
        "Precondition failures return 422 with `<CODE>: <message>` detail."
    ),
)
def simulate_rebalance(
    payload: RebalanceRequest,
    correlation_id: Annotated[
        Optional[str],
        Header(
            alias="X-Correlation-Id",
            description="Optional correlation id echoed in the result. Generated when omitted.",
            examples=["corr-rebalance-001"],
        ),
    ] = None,
) -> RebalanceResult:
    profile = resolve_profile(payload.profile)
    try:
        validate_preconditions(payload, profile)
    except RebalancePreconditionError as exc:
        raise_rebalance_http_exception(exc)
    return run_rebalance(
        payload,
        profile,
        correlation_id=correlation_id or correlation_id_var.get() or None,
        knowledge_base_enabled=knowledge_base_enabled(),
    )


@router.post(
    "/rebalance/instruments/score",
    response_model=InstrumentScoreResponse,
    status_code=status.HTTP_200_OK,
    summary="Score Instruments",
    description=(
        "Scores instrument facts on the 0..100 risk and cost scale. "
        "Instruments at or above `score_cutoff` are not eligible for new money."
    ),
)
def score_instruments(payload: InstrumentScoreRequest) -> InstrumentScoreResponse:
    thresholds = resolve_risk_thresholds(payload.risk_thresholds)
    cutoff = Decimal(thresholds.high_min)
    return InstrumentScoreResponse(
        score_cutoff=cutoff,
        scores=[score_instrument(facts, score_cutoff=cutoff) for facts in payload.instruments],
    )


@router.get(
    "/rebalance/config",
    response_model=RebalanceServiceConfigResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Rebalance Configuration",
    description="Returns the effective service configuration and the default layer-target profile.",
)
def get_rebalance_config() -> RebalanceServiceConfigResponse:
    return RebalanceServiceConfigResponse(
        knowledge_base_enabled=knowledge_base_enabled(),
        jobs_enabled=env_flag("REBALANCE_JOBS_ENABLED", True),
        jobs_max_concurrent=env_int("REBALANCE_JOBS_MAX_CONCURRENT", DEFAULT_MAX_CONCURRENT_JOBS),
        job_ttl_seconds=env_int("REBALANCE_JOB_TTL_SECONDS", DEFAULT_JOB_TTL_SECONDS),
        default_profile=_profile_view(resolve_profile()),
    )
