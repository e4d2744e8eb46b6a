"""
Resolution of request-scoped layer-target profiles into fully concrete engine settings.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from src.core.layers.amounts import LayerAmounts, normalize_weights
from src.core.models import LAYER_IDS, LayerTargetProfile, RiskThresholds

DEFAULT_LAYER_TARGETS = {
    1: Decimal("0.70"),
    2: Decimal("0.20"),
    3: Decimal("0.08"),
    4: Decimal("0.02"),
    5: Decimal("0"),
}
DEFAULT_VARIANCE_PCT = Decimal("3.0")
DEFAULT_MINIMUM_SAVING_PLAN_SIZE = 15
DEFAULT_MINIMUM_REBALANCING_AMOUNT = 10
DEFAULT_MINIMUM_INSTRUMENT_AMOUNT = 25
DEFAULT_HORIZON_MONTHS = 12
MIN_HORIZON_MONTHS = 1
MAX_HORIZON_MONTHS = 120
DEFAULT_BLEND_MIN = Decimal("0.15")
DEFAULT_BLEND_MAX = Decimal("0.45")
DEFAULT_LOW_MAX = Decimal("30")
DEFAULT_HIGH_MIN = Decimal("51")
DEFAULT_MAX_INSTRUMENTS_PER_LAYER = 17


@dataclass(frozen=True)
class ResolvedRiskThresholds:
    low_max: Decimal
    high_min: Decimal


@dataclass(frozen=True)
class ResolvedProfile:
    profile_key: str
    target_weights: LayerAmounts
    layer_names: dict[int, str]
    variance_pct: Decimal
    minimum_saving_plan_size: int
    minimum_rebalancing_amount: int
    minimum_instrument_amount: int
    horizon_months: int
    blend_min: Decimal
    blend_max: Decimal
    risk_thresholds: ResolvedRiskThresholds
    risk_thresholds_by_layer: dict[int, ResolvedRiskThresholds] = field(default_factory=dict)
    max_instruments_per_layer: dict[int, int] = field(default_factory=dict)

    def layer_name(self, layer: int) -> str:
        return self.layer_names.get(layer) or f"Layer {layer}"

    def thresholds_for_layer(self, layer: int) -> ResolvedRiskThresholds:
        return self.risk_thresholds_by_layer.get(layer, self.risk_thresholds)

    def score_cutoff(self, layer: int) -> Decimal:
        return self.thresholds_for_layer(layer).high_min


def _clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))


def _positive_int_or_zero(value: Optional[int], default: int) -> int:
    if value is None:
        return default
    return value if value >= 1 else 0


def resolve_risk_thresholds(
    thresholds: Optional[RiskThresholds],
    fallback: Optional[ResolvedRiskThresholds] = None,
) -> ResolvedRiskThresholds:
    if thresholds is None:
        if fallback is not None:
            return fallback
        thresholds = RiskThresholds()
    low_max = _clamp(thresholds.low_max, Decimal("0"), Decimal("100"))
    high_min = _clamp(thresholds.high_min, Decimal("0"), Decimal("100"))
    if high_min <= low_max:
        high_min = min(Decimal("100"), low_max + Decimal("0.1"))
    return ResolvedRiskThresholds(low_max=low_max, high_min=high_min)


def resolve_horizon(months: Optional[int]) -> int:
    if months is None:
        return DEFAULT_HORIZON_MONTHS
    return max(MIN_HORIZON_MONTHS, min(MAX_HORIZON_MONTHS, months))


def resolve_profile(profile: Optional[LayerTargetProfile] = None) -> ResolvedProfile:
    """Apply every default once so the engine only handles concrete values."""
    profile = profile or LayerTargetProfile()

    raw_targets = dict(profile.layer_targets) if profile.layer_targets else DEFAULT_LAYER_TARGETS
    target_weights = normalize_weights(LayerAmounts.of(raw_targets))

    variance = profile.acceptable_variance_pct
    if variance is None or variance <= Decimal("0"):
        variance = DEFAULT_VARIANCE_PCT

    blend_min = profile.projection_blend_min
    blend_max = profile.projection_blend_max
    blend_min = DEFAULT_BLEND_MIN if blend_min is None else _clamp(blend_min, Decimal("0"), Decimal("1"))
    blend_max = DEFAULT_BLEND_MAX if blend_max is None else _clamp(blend_max, Decimal("0"), Decimal("1"))
    if blend_min > blend_max:
        blend_min, blend_max = blend_max, blend_min

    thresholds = resolve_risk_thresholds(profile.risk_thresholds)
    thresholds_by_layer = {
        layer: resolve_risk_thresholds(value, thresholds)
        for layer, value in profile.risk_thresholds_by_layer.items()
    }

    max_instruments = {
        layer: max(0, profile.max_instruments_per_layer.get(layer, DEFAULT_MAX_INSTRUMENTS_PER_LAYER))
        for layer in LAYER_IDS
    }

    return ResolvedProfile(
        profile_key=profile.profile_key,
        target_weights=target_weights,
        layer_names={
            layer: name.strip() for layer, name in profile.layer_names.items() if name and name.strip()
        },
        variance_pct=variance,
        minimum_saving_plan_size=_positive_int_or_zero(
            profile.minimum_saving_plan_size, DEFAULT_MINIMUM_SAVING_PLAN_SIZE
        ),
        minimum_rebalancing_amount=_positive_int_or_zero(
            profile.minimum_rebalancing_amount, DEFAULT_MINIMUM_REBALANCING_AMOUNT
        ),
        minimum_instrument_amount=_positive_int_or_zero(
            profile.minimum_instrument_amount, DEFAULT_MINIMUM_INSTRUMENT_AMOUNT
        ),
        horizon_months=resolve_horizon(profile.projection_horizon_months),
        blend_min=blend_min,
        blend_max=blend_max,
        risk_thresholds=thresholds,
        risk_thresholds_by_layer=thresholds_by_layer,
        max_instruments_per_layer=max_instruments,
    )
