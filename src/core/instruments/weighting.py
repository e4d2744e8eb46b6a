"""
Within-layer instrument weighting and budget split.

Each knowledge-base signal (cost, benchmark, regions, top holdings, valuation) is used only when
every instrument of the group provides it. Without any usable signal the layer falls back to
equal weights.
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional

from src.core.instruments.valuation import compute_valuation_score
from src.core.layers.rounding import floor_distribute
from src.core.models import (
    ContributionItem,
    InstrumentFacts,
    InstrumentScore,
    InstrumentWarning,
    LayerWeightingSummary,
    ReasonCode,
)

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_ONE = Decimal("1")
_WEIGHT_SCALE = Decimal("0.00000001")
MIN_SCORE_WEIGHT_FACTOR = Decimal("0.2")
MAX_DATA_QUALITY_DISCOUNT = Decimal("0.25")

PlanKey = tuple[str, str]


@dataclass(frozen=True)
class WeightingResult:
    weights: dict[str, Decimal]
    weighted: bool = False
    score_weighted: bool = False
    cost_used: bool = False
    benchmark_used: bool = False
    regions_used: bool = False
    holdings_used: bool = False
    valuation_used: bool = False


@dataclass(frozen=True)
class LayerAllocation:
    proposed: dict[PlanKey, Decimal]
    reason_codes: dict[PlanKey, list[ReasonCode]]
    warnings: list[InstrumentWarning] = field(default_factory=list)
    summary: Optional[LayerWeightingSummary] = None


def plan_key(item: ContributionItem) -> PlanKey:
    return (item.isin, item.depot_id)


def _normalize(raw: Mapping[str, Decimal]) -> dict[str, Decimal]:
    total = sum(raw.values(), _ZERO)
    if total <= _ZERO:
        return equal_weights(list(raw))
    return {
        isin: (value / total).quantize(_WEIGHT_SCALE, rounding=ROUND_HALF_UP)
        for isin, value in raw.items()
    }


def equal_weights(isins: list[str]) -> dict[str, Decimal]:
    if not isins:
        return {}
    share = (_ONE / Decimal(len(isins))).quantize(_WEIGHT_SCALE, rounding=ROUND_HALF_UP)
    return {isin: share for isin in isins}


def score_weight_factor(score: int, score_cutoff: Decimal) -> Decimal:
    if score_cutoff <= _ZERO:
        return _ONE
    normalized = (score_cutoff - Decimal(score) + _ONE) / score_cutoff
    return max(MIN_SCORE_WEIGHT_FACTOR, min(_ONE, normalized))


def data_quality_factor(facts: Optional[InstrumentFacts]) -> Decimal:
    if facts is None:
        return _ONE
    penalty = Decimal(facts.missing_field_count) * Decimal("0.01") + Decimal(
        facts.warning_count
    ) * Decimal("0.05")
    return _ONE - min(MAX_DATA_QUALITY_DISCOUNT, penalty)


def _exposure_map(entries: list[tuple[str, Decimal]]) -> dict[str, Decimal]:
    exposures: dict[str, Decimal] = {}
    for name, weight in entries:
        key = name.strip().lower()
        if key and weight > _ZERO:
            exposures[key] = exposures.get(key, _ZERO) + weight
    return exposures


def weighted_overlap(isin: str, exposures: Mapping[str, dict[str, Decimal]]) -> Decimal:
    """Average share of exposure an instrument has in common with each other group member."""
    own = exposures[isin]
    others = [other for other in exposures if other != isin]
    if not others:
        return _ZERO
    own_total = sum(own.values(), _ZERO)
    overlap_sum = _ZERO
    for other in others:
        theirs = exposures[other]
        denominator = max(own_total, sum(theirs.values(), _ZERO))
        if denominator <= _ZERO:
            continue
        common = sum((min(weight, theirs[name]) for name, weight in own.items() if name in theirs), _ZERO)
        overlap_sum += common / denominator
    return overlap_sum / Decimal(len(others))


def compute_weights(
    isins: list[str],
    facts_by_isin: Mapping[str, InstrumentFacts],
    scores: Mapping[str, InstrumentScore],
    score_cutoff: Decimal,
) -> WeightingResult:
    if not isins:
        return WeightingResult(weights={})
    if len(isins) == 1:
        return WeightingResult(weights={isins[0]: _ONE})

    score_factors = {
        isin: score_weight_factor(scores[isin].score, score_cutoff)
        for isin in isins
        if isin in scores
    }
    score_weighted = len(score_factors) == len(isins) and len(set(score_factors.values())) > 1

    group = [facts_by_isin.get(isin) for isin in isins]
    cost_used = all(facts is not None and facts.ongoing_charges_pct is not None for facts in group)
    benchmark_used = all(
        facts is not None and facts.benchmark is not None and facts.benchmark.strip() for facts in group
    )
    regions_used = all(facts is not None and facts.regions for facts in group)
    holdings_used = all(facts is not None and facts.top_holdings for facts in group)
    valuation_scores = {isin: compute_valuation_score(facts_by_isin.get(isin)) for isin in isins}
    valuation_used = all(score is not None for score in valuation_scores.values())
    redundancy_used = benchmark_used or regions_used or holdings_used

    if not (cost_used or redundancy_used or valuation_used):
        if score_weighted:
            return WeightingResult(weights=_normalize(score_factors), score_weighted=True)
        return WeightingResult(weights=equal_weights(isins))

    benchmark_counts: dict[str, int] = {}
    if benchmark_used:
        for facts in group:
            name = facts.benchmark.strip().lower()
            benchmark_counts[name] = benchmark_counts.get(name, 0) + 1
    region_exposures = (
        {
            isin: _exposure_map([(region.region, region.weight) for region in facts_by_isin[isin].regions])
            for isin in isins
        }
        if regions_used
        else {}
    )
    holding_exposures = (
        {
            isin: _exposure_map(
                [(holding.name, holding.weight) for holding in facts_by_isin[isin].top_holdings]
            )
            for isin in isins
        }
        if holdings_used
        else {}
    )

    group_size = Decimal(len(isins))
    raw: dict[str, Decimal] = {}
    for isin in isins:
        facts = facts_by_isin.get(isin)
        weight = _ONE
        if cost_used:
            weight = weight / (_ONE + max(facts.ongoing_charges_pct, _ZERO))
        if redundancy_used:
            signals: list[Decimal] = []
            if benchmark_used:
                count = benchmark_counts[facts.benchmark.strip().lower()]
                signals.append(Decimal(count - 1) / (group_size - _ONE))
            if regions_used:
                signals.append(weighted_overlap(isin, region_exposures))
            if holdings_used:
                signals.append(weighted_overlap(isin, holding_exposures))
            redundancy = sum(signals, _ZERO) / Decimal(len(signals))
            weight = weight * max(_ZERO, _ONE - redundancy)
        if valuation_used:
            weight = weight * (Decimal("0.7") + Decimal("0.3") * valuation_scores[isin])
        weight = weight * data_quality_factor(facts)
        if score_weighted:
            weight = weight * score_factors[isin]
        raw[isin] = weight

    if sum(raw.values(), _ZERO) <= _ZERO:
        if score_weighted:
            return WeightingResult(weights=_normalize(score_factors), score_weighted=True)
        return WeightingResult(weights=equal_weights(isins))

    return WeightingResult(
        weights=_normalize(raw),
        weighted=True,
        score_weighted=score_weighted,
        cost_used=cost_used,
        benchmark_used=benchmark_used,
        regions_used=regions_used,
        holdings_used=holdings_used,
        valuation_used=valuation_used,
    )


def _add_reason(reasons: dict[PlanKey, list[ReasonCode]], key: PlanKey, code: ReasonCode) -> None:
    codes = reasons.setdefault(key, [])
    if code not in codes:
        codes.append(code)


def _split_budget(
    keys: list[PlanKey],
    key_weights: Mapping[PlanKey, Decimal],
    budget: Decimal,
    scores: Mapping[str, InstrumentScore],
) -> dict[PlanKey, Decimal]:
    total_weight = sum((key_weights[key] for key in keys), _ZERO)
    if total_weight <= _ZERO:
        raw = {key: budget / Decimal(len(keys)) for key in keys}
    else:
        raw = {key: budget * key_weights[key] / total_weight for key in keys}
    return floor_distribute(
        raw,
        budget,
        tie_key=lambda key: scores[key[0]].score if key[0] in scores else 0,
    )


def allocate_layer(
    *,
    layer: int,
    budget: Decimal,
    items: list[ContributionItem],
    facts_by_isin: Mapping[str, InstrumentFacts],
    scores: Mapping[str, InstrumentScore],
    score_cutoff: Decimal,
    minimum_saving_plan_size: int,
    minimum_rebalancing_amount: int,
) -> LayerAllocation:
    """Split a whole-euro layer budget across the layer's saving plans."""
    reasons: dict[PlanKey, list[ReasonCode]] = {}
    proposed: dict[PlanKey, Decimal] = {plan_key(item): _ZERO for item in items}
    current = {plan_key(item): item.monthly_amount for item in items}

    if budget <= _ZERO:
        for key in proposed:
            _add_reason(reasons, key, ReasonCode.LAYER_BUDGET_ZERO)
        return LayerAllocation(proposed=proposed, reason_codes=reasons)

    eligible_keys = []
    for key in proposed:
        score = scores.get(key[0])
        if score is not None and Decimal(score.score) >= score_cutoff:
            _add_reason(reasons, key, ReasonCode.RISK_NOT_ACCEPTABLE)
        else:
            eligible_keys.append(key)

    if not eligible_keys:
        for key in proposed:
            _add_reason(reasons, key, ReasonCode.LAYER_BUDGET_ZERO)
        warning = InstrumentWarning(
            code="LAYER_NO_ELIGIBLE_INSTRUMENTS",
            message=f"Layer {layer} has no instruments below the risk cutoff.",
            layer=layer,
        )
        return LayerAllocation(proposed=proposed, reason_codes=reasons, warnings=[warning])

    eligible_isins = sorted({key[0] for key in eligible_keys})
    weighting = compute_weights(eligible_isins, facts_by_isin, scores, score_cutoff)
    depots_per_isin = {isin: sum(1 for key in eligible_keys if key[0] == isin) for isin in eligible_isins}
    key_weights = {
        key: weighting.weights.get(key[0], _ZERO) / Decimal(depots_per_isin[key[0]])
        for key in eligible_keys
    }

    weight_code = ReasonCode.KB_WEIGHTED if weighting.weighted else ReasonCode.EQUAL_WEIGHT
    for key in eligible_keys:
        _add_reason(reasons, key, weight_code)
        if weighting.score_weighted:
            _add_reason(reasons, key, ReasonCode.SCORE_WEIGHTED)

    active = sorted(eligible_keys)
    minimum = Decimal(minimum_saving_plan_size)
    amounts = _split_budget(active, key_weights, budget, scores)
    while minimum > _ZERO and len(active) > 1:
        below = [key for key in active if _ZERO < amounts[key] < minimum]
        if not below:
            break
        dropped = min(active, key=lambda key: (key_weights[key], current[key], key))
        active.remove(dropped)
        _add_reason(reasons, dropped, ReasonCode.MIN_AMOUNT_DROPPED)
        logger.debug("Dropped instrument below minimum saving plan size. layer=%s isin=%s", layer, dropped[0])
        amounts = _split_budget(active, key_weights, budget, scores)

    for key in active:
        proposed[key] = amounts[key]
    for key in eligible_keys:
        if key not in active:
            proposed[key] = _ZERO

    if minimum_rebalancing_amount >= 1:
        floor = Decimal(minimum_rebalancing_amount)
        for key in eligible_keys:
            delta = proposed[key] - current[key]
            if delta != _ZERO and abs(delta) < floor:
                _add_reason(reasons, key, ReasonCode.MIN_REBALANCE_AMOUNT)

    summary = LayerWeightingSummary(
        layer=layer,
        instrument_count=len(items),
        weighted=weighting.weighted,
        score_weighted=weighting.score_weighted,
        cost_used=weighting.cost_used,
        benchmark_used=weighting.benchmark_used,
        regions_used=weighting.regions_used,
        holdings_used=weighting.holdings_used,
        valuation_used=weighting.valuation_used,
        weights=dict(weighting.weights),
    )
    return LayerAllocation(proposed=proposed, reason_codes=reasons, summary=summary)
