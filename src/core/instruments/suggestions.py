"""
New-instrument suggestions for gap layers.

A gap layer receives money in the proposal but holds no current contribution. Suggestions are made
only when the knowledge base covers every candidate of that layer; otherwise nothing is guessed.
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Mapping

from src.core.instruments.valuation import compute_valuation_score
from src.core.instruments.weighting import weighted_overlap
from src.core.models import InstrumentFacts, InstrumentScore, NewInstrumentSuggestion

MAX_SUGGESTIONS_PER_LAYER = 3
COMPLETE_STATUSES = frozenset({"COMPLETE", "APPROVED", "APPLIED"})
SINGLE_STOCK_PENALTY = Decimal("0.4")
BASELINE_RATIONALE = "Adds exposure to build a baseline allocation in this layer."

_ZERO = Decimal("0")
_ONE = Decimal("1")


@dataclass(frozen=True)
class GapSuggestionResult:
    layer: int
    suggestions: list[NewInstrumentSuggestion]
    coverage_complete: bool
    candidate_count: int

    @property
    def reserved_amount(self) -> Decimal:
        return sum((suggestion.amount for suggestion in self.suggestions), _ZERO)


def is_covered(facts: InstrumentFacts) -> bool:
    return facts.status.strip().upper() in COMPLETE_STATUSES


def coverage_complete(candidates: list[InstrumentFacts]) -> bool:
    return bool(candidates) and all(is_covered(candidate) for candidate in candidates)


def compute_redundancy(candidate: InstrumentFacts, existing: list[InstrumentFacts]) -> Decimal:
    if not existing:
        return _ZERO
    signals: list[Decimal] = []
    if candidate.benchmark and all(item.benchmark for item in existing):
        name = candidate.benchmark.strip().lower()
        matches = sum(1 for item in existing if item.benchmark.strip().lower() == name)
        signals.append(Decimal(matches) / Decimal(len(existing)))
    if candidate.regions and all(item.regions for item in existing):
        exposures = {
            item.isin: {region.region.strip().lower(): region.weight for region in item.regions}
            for item in [candidate, *existing]
        }
        signals.append(weighted_overlap(candidate.isin, exposures))
    if candidate.top_holdings and all(item.top_holdings for item in existing):
        exposures = {
            item.isin: {holding.name.strip().lower(): holding.weight for holding in item.top_holdings}
            for item in [candidate, *existing]
        }
        signals.append(weighted_overlap(candidate.isin, exposures))
    if not signals:
        return _ZERO
    return sum(signals, _ZERO) / Decimal(len(signals))


def candidate_preference(candidate: InstrumentFacts, existing: list[InstrumentFacts], layer: int) -> Decimal:
    if candidate.ongoing_charges_pct is None:
        cost_score = Decimal("0.5")
    else:
        cost_score = _ONE / (_ONE + max(candidate.ongoing_charges_pct, _ZERO))
    uniqueness = _ONE - compute_redundancy(candidate, existing)
    valuation = compute_valuation_score(candidate) or _ZERO
    penalty = SINGLE_STOCK_PENALTY if candidate.single_stock and layer <= 3 else _ZERO
    return (
        cost_score * Decimal("0.35")
        + uniqueness * Decimal("0.35")
        + valuation * Decimal("0.15")
        - penalty
    )


def _rationale(candidate: InstrumentFacts, existing: list[InstrumentFacts]) -> str:
    reasons = []
    if candidate.ongoing_charges_pct is not None and candidate.ongoing_charges_pct <= Decimal("0.3"):
        reasons.append("low ongoing costs")
    if existing and compute_redundancy(candidate, existing) < Decimal("0.3"):
        reasons.append("low overlap with existing instruments")
    valuation = compute_valuation_score(candidate)
    if valuation is not None and valuation >= Decimal("0.6"):
        reasons.append("attractive valuation")
    if not reasons:
        return BASELINE_RATIONALE
    return f"{BASELINE_RATIONALE} Selected because of {' and '.join(reasons)}."


def allocate_suggestion_amounts(isins: list[str], budget: Decimal, minimum_amount: int) -> dict[str, Decimal]:
    """Give each suggestion the minimum plus an even share; leftover euros go in ISIN order."""
    if not isins or budget <= _ZERO or minimum_amount < 0:
        return {}
    count = Decimal(len(isins))
    minimum = Decimal(minimum_amount)
    total = budget.quantize(_ONE, rounding=ROUND_HALF_UP)
    if total < minimum * count:
        return {}
    extra = ((total - minimum * count) / count).quantize(_ONE, rounding=ROUND_FLOOR)
    allocations = {isin: minimum + extra for isin in isins}
    steps = int(total - (minimum + extra) * count)
    ordered = sorted(isins)
    for index in range(steps):
        allocations[ordered[index % len(ordered)]] += _ONE
    return allocations


def suggest_for_gap(
    *,
    layer: int,
    budget: Decimal,
    candidates: list[InstrumentFacts],
    existing: list[InstrumentFacts],
    existing_count: int,
    scores: Mapping[str, InstrumentScore],
    score_cutoff: Decimal,
    max_instruments: int,
    minimum_amount: int,
) -> GapSuggestionResult:
    if not coverage_complete(candidates):
        return GapSuggestionResult(
            layer=layer, suggestions=[], coverage_complete=False, candidate_count=len(candidates)
        )

    eligible = [
        candidate
        for candidate in candidates
        if candidate.isin in scores and Decimal(scores[candidate.isin].score) < score_cutoff
    ]
    available_slots = max(0, max_instruments - existing_count)
    # Without a minimum every suggestion still needs at least one euro.
    by_budget = int(budget // Decimal(max(minimum_amount, 1)))
    limit = min(MAX_SUGGESTIONS_PER_LAYER, available_slots, by_budget)
    if limit <= 0 or not eligible:
        return GapSuggestionResult(
            layer=layer, suggestions=[], coverage_complete=True, candidate_count=len(candidates)
        )

    ranked = sorted(
        eligible,
        key=lambda candidate: (-candidate_preference(candidate, existing, layer), candidate.isin),
    )
    selected = ranked[:limit]
    amounts = allocate_suggestion_amounts([item.isin for item in selected], budget, minimum_amount)
    suggestions = [
        NewInstrumentSuggestion(
            isin=candidate.isin,
            name=candidate.name,
            layer=layer,
            amount=amounts[candidate.isin],
            rationale=_rationale(candidate, existing),
        )
        for candidate in selected
        if amounts.get(candidate.isin, _ZERO) > _ZERO
    ]
    return GapSuggestionResult(
        layer=layer,
        suggestions=suggestions,
        coverage_complete=True,
        candidate_count=len(candidates),
    )


def candidates_for_layer(
    layer: int, candidates: list[InstrumentFacts], excluded_isins: set[str]
) -> list[InstrumentFacts]:
    return sorted(
        (
            candidate
            for candidate in candidates
            if candidate.layer == layer and candidate.isin not in excluded_isins
        ),
        key=lambda candidate: candidate.isin,
    )
