"""
Gap projection: derive monthly layer amounts that steer holdings toward their targets over a horizon.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from src.core.layers.amounts import LayerAmounts, distribution
from src.core.layers.rounding import ceiling_trim
from src.core.profiles import MAX_HORIZON_MONTHS, MIN_HORIZON_MONTHS, ResolvedProfile

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_ONE = Decimal("1")
_WEIGHT_SCALE = Decimal("0.00000001")


@dataclass(frozen=True)
class ProjectionResult:
    projected_total: Decimal
    blend_factor: Decimal
    final_weights: LayerAmounts
    desired: LayerAmounts
    rounded: LayerAmounts
    projected_target_totals: LayerAmounts
    used_fallback: bool


def compute_blend_factor(horizon_months: int, blend_min: Decimal, blend_max: Decimal) -> Decimal:
    horizon = max(MIN_HORIZON_MONTHS, min(MAX_HORIZON_MONTHS, horizon_months))
    span = Decimal(MAX_HORIZON_MONTHS - MIN_HORIZON_MONTHS)
    ratio = Decimal(horizon - MIN_HORIZON_MONTHS) / span
    return blend_min + (blend_max - blend_min) * ratio


def _renormalize(weights: LayerAmounts) -> LayerAmounts:
    total = weights.total()
    if total <= _ZERO:
        return weights
    return LayerAmounts(
        slots=tuple((value / total).quantize(_WEIGHT_SCALE, rounding=ROUND_HALF_UP) for value in weights.slots)
    )


def _round_to_total(desired: LayerAmounts, monthly_total: Decimal) -> LayerAmounts:
    return LayerAmounts.of(ceiling_trim(desired.as_dict(), monthly_total))


def project_layer_targets(
    *,
    holdings: LayerAmounts,
    monthly_total: Decimal,
    target_weights: LayerAmounts,
    profile: ResolvedProfile,
) -> ProjectionResult:
    holdings_total = holdings.total()
    horizon = profile.horizon_months
    projected_total = holdings_total + max(monthly_total, _ZERO) * Decimal(horizon)
    projected_target_totals = target_weights.scaled(projected_total)
    blend = compute_blend_factor(horizon, profile.blend_min, profile.blend_max)

    if monthly_total <= _ZERO or holdings_total <= _ZERO:
        desired = target_weights.scaled(max(monthly_total, _ZERO))
        return ProjectionResult(
            projected_total=projected_total,
            blend_factor=blend,
            final_weights=target_weights,
            desired=desired,
            rounded=_round_to_total(desired, max(monthly_total, _ZERO)),
            projected_target_totals=projected_target_totals,
            used_fallback=True,
        )

    current_weights = distribution(holdings, holdings_total)
    variance_fraction = profile.variance_pct / Decimal("100")

    gaps: dict[int, Decimal] = {}
    for layer, target_weight in target_weights.items():
        gap = projected_target_totals.get(layer) - holdings.get(layer)
        over_allocated = current_weights.get(layer) > target_weight + variance_fraction
        gaps[layer] = gap if gap > _ZERO and not over_allocated else _ZERO
    gap_amounts = LayerAmounts.of(gaps)
    gap_total = gap_amounts.total()

    if gap_total > _ZERO:
        gap_weights = gap_amounts.scaled(_ONE / gap_total)
    else:
        gap_weights = current_weights

    blended = gap_weights.scaled(_ONE - blend).plus(current_weights.scaled(blend))
    final_weights = _renormalize(blended)
    desired = final_weights.scaled(monthly_total)
    logger.debug(
        "Projected layer targets. projected_total=%s blend=%s gap_total=%s",
        projected_total,
        blend,
        gap_total,
    )
    return ProjectionResult(
        projected_total=projected_total,
        blend_factor=blend,
        final_weights=final_weights,
        desired=desired,
        rounded=_round_to_total(desired, monthly_total),
        projected_target_totals=projected_target_totals,
        used_fallback=False,
    )
