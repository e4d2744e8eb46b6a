"""
FILE: src/core/models.py
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

LAYER_IDS = (1, 2, 3, 4, 5)


def normalize_layer(value: Optional[int]) -> int:
    """Unknown or missing layers fall into layer 5."""
    if value is None or value not in LAYER_IDS:
        return 5
    return value


class ReasonCode(str, Enum):
    KB_GAP_SUGGESTION = "KB_GAP_SUGGESTION"
    RISK_NOT_ACCEPTABLE = "RISK_NOT_ACCEPTABLE"
    MIN_AMOUNT_DROPPED = "MIN_AMOUNT_DROPPED"
    LAYER_BUDGET_ZERO = "LAYER_BUDGET_ZERO"
    NO_CHANGE_WITHIN_TOLERANCE = "NO_CHANGE_WITHIN_TOLERANCE"
    MIN_REBALANCE_AMOUNT = "MIN_REBALANCE_AMOUNT"
    KB_WEIGHTED = "KB_WEIGHTED"
    SCORE_WEIGHTED = "SCORE_WEIGHTED"
    EQUAL_WEIGHT = "EQUAL_WEIGHT"


def _validate_layer_keys(values: Dict[int, object], *, field_name: str) -> None:
    for layer in values:
        if layer not in LAYER_IDS:
            raise ValueError(f"{field_name} keys must be layer ids 1..5")


class RiskThresholds(BaseModel):
    low_max: Decimal = Field(
        default=Decimal("30"),
        description="Highest score still classified as low risk.",
        examples=["30"],
    )
    high_min: Decimal = Field(
        default=Decimal("51"),
        description="Lowest score classified as high risk; instruments at or above are ineligible.",
        examples=["51"],
    )


class LayerTargetProfile(BaseModel):
    profile_key: str = Field(
        default="BALANCED",
        description="Identifier of the selected layer-target profile.",
        examples=["BALANCED"],
    )
    layer_targets: Dict[int, Decimal] = Field(
        default_factory=dict,
        description="Target weight per layer. Normalized to sum 1 when needed.",
        examples=[{"1": "0.70", "2": "0.20", "3": "0.08", "4": "0.02", "5": "0"}],
    )
    layer_names: Dict[int, str] = Field(
        default_factory=dict,
        description="Optional display name per layer.",
        examples=[{"1": "Global Core", "2": "Core Plus"}],
    )
    acceptable_variance_pct: Optional[Decimal] = Field(
        default=None,
        description="Allowed deviation per layer in percentage points. Defaults to 3.0.",
        examples=["3.0"],
    )
    minimum_saving_plan_size: Optional[int] = Field(
        default=None,
        description="Smallest monthly amount a layer may carry. Defaults to 15 EUR.",
        examples=[15],
    )
    minimum_rebalancing_amount: Optional[int] = Field(
        default=None,
        description="Smallest per-layer change worth proposing. Defaults to 10 EUR.",
        examples=[10],
    )
    minimum_instrument_amount: Optional[int] = Field(
        default=None,
        description="Smallest one-time amount per instrument. Defaults to 25 EUR.",
        examples=[25],
    )
    projection_horizon_months: Optional[int] = Field(
        default=None,
        description="Projection horizon in months, clamped to 1..120. Defaults to 12.",
        examples=[12],
    )
    projection_blend_min: Optional[Decimal] = Field(default=None, examples=["0.15"])
    projection_blend_max: Optional[Decimal] = Field(default=None, examples=["0.45"])
    risk_thresholds: Optional[RiskThresholds] = None
    risk_thresholds_by_layer: Dict[int, RiskThresholds] = Field(default_factory=dict)
    max_instruments_per_layer: Dict[int, int] = Field(
        default_factory=dict,
        description="Upper bound of active saving plans per layer. Defaults to 17.",
    )

    @field_validator("layer_targets")
    @classmethod
    def validate_layer_targets(cls, value: Dict[int, Decimal]) -> Dict[int, Decimal]:
        _validate_layer_keys(value, field_name="layer_targets")
        for weight in value.values():
            if weight < Decimal("0"):
                raise ValueError("layer_targets values must be non-negative")
        return value

    @field_validator("layer_names", "risk_thresholds_by_layer", "max_instruments_per_layer")
    @classmethod
    def validate_layer_maps(cls, value: Dict[int, object], info) -> Dict[int, object]:
        _validate_layer_keys(value, field_name=info.field_name)
        return value


class HoldingsSnapshot(BaseModel):
    amounts_by_layer: Dict[int, Decimal] = Field(
        default_factory=dict,
        description="Current market value per layer in EUR.",
        examples=[{"1": "12000", "2": "3000", "3": "900"}],
    )
    as_of: Optional[date] = Field(default=None, examples=["2026-01-31"])

    @field_validator("amounts_by_layer")
    @classmethod
    def validate_amounts(cls, value: Dict[int, Decimal]) -> Dict[int, Decimal]:
        for amount in value.values():
            if amount < Decimal("0"):
                raise ValueError("holding amounts must be non-negative")
        return value


class ContributionItem(BaseModel):
    isin: str = Field(description="Instrument ISIN.", examples=["IE00B4L5Y983"])
    depot_id: str = Field(default="default", description="Depot holding the saving plan.")
    name: Optional[str] = Field(default=None, examples=["iShares Core MSCI World"])
    monthly_amount: Decimal = Field(ge=Decimal("0"), examples=["150"])
    layer: Optional[int] = Field(
        default=None,
        validate_default=True,
        description="Layer classification. Missing or unknown values map to layer 5.",
        examples=[1],
    )

    @field_validator("isin")
    @classmethod
    def normalize_isin(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not normalized:
            raise ValueError("isin must be non-empty")
        return normalized

    @field_validator("layer")
    @classmethod
    def default_layer(cls, value: Optional[int]) -> int:
        return normalize_layer(value)


class TopHolding(BaseModel):
    name: str
    weight: Decimal = Field(description="Portfolio weight as fraction (0.05 = 5%).")


class RegionExposure(BaseModel):
    region: str
    weight: Decimal = Field(description="Exposure as fraction (0.60 = 60%).")


class ValuationFacts(BaseModel):
    pe_ratio: Optional[Decimal] = None
    peg_ratio: Optional[Decimal] = None
    ev_to_ebitda: Optional[Decimal] = None
    price_to_book: Optional[Decimal] = None
    earnings_yield: Optional[Decimal] = None
    holdings_earnings_yield: Optional[Decimal] = None
    longterm_earnings_yield: Optional[Decimal] = None
    dividend_yield: Optional[Decimal] = None
    ebitda_eur: Optional[Decimal] = None
    net_income_eur: Optional[Decimal] = None
    revenue_eur: Optional[Decimal] = None


class InstrumentFacts(BaseModel):
    isin: str = Field(examples=["IE00B4L5Y983"])
    name: Optional[str] = None
    layer: Optional[int] = Field(default=None, description="Layer for candidate instruments.")
    instrument_type: Optional[str] = Field(default=None, examples=["ETF"])
    single_stock: bool = False
    status: str = Field(
        default="COMPLETE",
        description="Knowledge-base extraction status. COMPLETE, APPROVED and APPLIED count as covered.",
    )
    ongoing_charges_pct: Optional[Decimal] = Field(
        default=None, description="Ongoing charges in percent (0.20 = 0.20%).", examples=["0.20"]
    )
    risk_indicator: Optional[int] = Field(default=None, ge=1, le=7, examples=[4])
    benchmark: Optional[str] = Field(default=None, examples=["MSCI World"])
    top_holdings: List[TopHolding] = Field(default_factory=list)
    regions: List[RegionExposure] = Field(default_factory=list)
    valuation: Optional[ValuationFacts] = None
    missing_field_count: int = Field(default=0, ge=0)
    warning_count: int = Field(default=0, ge=0)

    @field_validator("isin")
    @classmethod
    def normalize_isin(cls, value: str) -> str:
        return value.strip().upper()


class ScoreComponent(BaseModel):
    criterion: str = Field(examples=["TER"])
    points: Decimal = Field(examples=["20"])


class InstrumentScore(BaseModel):
    isin: str
    score: int = Field(ge=0, le=100)
    bad_financials: bool = False
    components: List[ScoreComponent] = Field(default_factory=list)


class LayerProposal(BaseModel):
    layer: int
    layer_name: str
    current_amount: Decimal
    current_weight: Decimal
    target_weight: Decimal
    proposed_amount: Decimal
    delta: Decimal
    projected_target_total: Optional[Decimal] = None
    projected_target_weight: Optional[Decimal] = None


class InstrumentProposal(BaseModel):
    isin: str
    name: Optional[str] = None
    depot_id: Optional[str] = None
    layer: int
    current_amount: Decimal
    proposed_amount: Decimal
    delta: Decimal
    reason_codes: List[ReasonCode] = Field(default_factory=list)


class InstrumentWarning(BaseModel):
    code: str = Field(examples=["LAYER_NO_INSTRUMENTS"])
    message: str
    layer: Optional[int] = None


class InstrumentProposalGating(BaseModel):
    knowledge_base_enabled: bool
    knowledge_base_complete: bool
    missing_isins: List[str] = Field(default_factory=list)


class LayerWeightingSummary(BaseModel):
    layer: int
    instrument_count: int
    weighted: bool
    score_weighted: bool
    cost_used: bool
    benchmark_used: bool
    regions_used: bool
    holdings_used: bool
    valuation_used: bool
    weights: Dict[str, Decimal] = Field(default_factory=dict)


class NewInstrumentSuggestion(BaseModel):
    isin: str
    name: Optional[str] = None
    layer: int
    amount: Decimal
    action: Literal["saving_plan"] = "saving_plan"
    rationale: str


class OneTimeInstrumentBucket(BaseModel):
    isin: str
    name: Optional[str] = None
    layer: int
    amount: Decimal


class OneTimeAllocation(BaseModel):
    amount: Decimal
    layer_amounts: Dict[int, Decimal] = Field(default_factory=dict)
    instrument_buckets: List[OneTimeInstrumentBucket] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)


class SavingPlanSuggestion(BaseModel):
    type: Literal["create", "increase", "decrease", "discard"]
    isin: str
    name: Optional[str] = None
    depot_id: Optional[str] = None
    layer: int
    old_amount: Decimal
    new_amount: Decimal
    delta: Decimal
    rationale: str


class DiagnosticsData(BaseModel):
    within_tolerance: bool = False
    suppressed_delta_count: int = 0
    suppressed_amount_total: Decimal = Decimal("0")
    redistribution_notes: List[str] = Field(default_factory=list)
    residual_unresolved: Decimal = Field(
        default=Decimal("0"),
        description="Residual left by the rebalancing gate after its iteration cap.",
    )
    minimum_saving_plan_floor_applied: bool = False
    warnings: List[str] = Field(default_factory=list)


class RebalanceRequest(BaseModel):
    holdings: HoldingsSnapshot = Field(default_factory=HoldingsSnapshot)
    contributions: List[ContributionItem] = Field(default_factory=list)
    profile: LayerTargetProfile = Field(default_factory=LayerTargetProfile)
    instrument_facts: List[InstrumentFacts] = Field(
        default_factory=list,
        description="Knowledge-base facts per ISIN for contributed instruments.",
    )
    candidate_instruments: List[InstrumentFacts] = Field(
        default_factory=list,
        description="Knowledge-base instruments eligible as new saving plans in gap layers.",
    )
    knowledge_base_enabled: Optional[bool] = Field(
        default=None,
        description="Overrides the service default for instrument-proposal gating.",
    )
    saving_plan_delta: Optional[Decimal] = Field(
        default=None,
        description="Change to the total monthly amount. Must be zero or positive.",
        examples=["50"],
    )
    one_time_amount: Optional[Decimal] = Field(
        default=None,
        description="Optional one-time investment split across layers 1..4.",
        examples=["1000"],
    )

    @model_validator(mode="after")
    def validate_unique_contributions(self) -> "RebalanceRequest":
        keys = [(item.isin, item.depot_id) for item in self.contributions]
        if len(keys) != len(set(keys)):
            raise ValueError("contributions must be unique per (isin, depot_id)")
        return self

    model_config = {
        "json_schema_extra": {
            "example": {
                "holdings": {"amounts_by_layer": {"1": "7500", "2": "1500", "3": "800"}},
                "contributions": [
                    {"isin": "IE00B4L5Y983", "monthly_amount": "750", "layer": 1},
                    {"isin": "IE00BKM4GZ66", "monthly_amount": "150", "layer": 2},
                    {"isin": "DE0005190003", "monthly_amount": "80", "layer": 3},
                    {"isin": "US0378331005", "monthly_amount": "20", "layer": 4},
                ],
                "profile": {
                    "profile_key": "BALANCED",
                    "layer_targets": {"1": "0.70", "2": "0.20", "3": "0.08", "4": "0.02"},
                },
            }
        }
    }


class RebalanceResult(BaseModel):
    rebalance_run_id: str = Field(examples=["rr_3f1a9c0d2b7e"])
    correlation_id: str = Field(examples=["corr_1a2b3c4d5e6f"])
    created_at: datetime
    profile_key: str
    monthly_total: Decimal
    layers: List[LayerProposal]
    instrument_proposals: List[InstrumentProposal] = Field(default_factory=list)
    instrument_warnings: List[InstrumentWarning] = Field(default_factory=list)
    instrument_gating: Optional[InstrumentProposalGating] = None
    weighting_summaries: List[LayerWeightingSummary] = Field(default_factory=list)
    new_instrument_suggestions: List[NewInstrumentSuggestion] = Field(default_factory=list)
    saving_plan_suggestions: List[SavingPlanSuggestion] = Field(default_factory=list)
    one_time_allocation: Optional[OneTimeAllocation] = None
    instrument_scores: List[InstrumentScore] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)
    recommendation: str
    diagnostics: DiagnosticsData


class InstrumentScoreRequest(BaseModel):
    instruments: List[InstrumentFacts] = Field(default_factory=list)
    risk_thresholds: Optional[RiskThresholds] = None


class InstrumentScoreResponse(BaseModel):
    score_cutoff: Decimal
    scores: List[InstrumentScore]
