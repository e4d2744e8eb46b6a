"""
Rebalance orchestration.

Layer proposal first (projection, saving-plan gate, rebalancing gate), then the per-layer
instrument split with gap suggestions, then layer totals reconciled with the instrument split.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from src.core.common.diagnostics import format_eur, make_diagnostics_data
from src.core.errors import (
    NegativeDeltaError,
    NoHoldingsError,
    OneTimeAmountBelowMinimumError,
    SavingPlanDeltaBelowMinimumError,
)
from src.core.instruments.scoring import score_instrument
from src.core.instruments.suggestions import candidates_for_layer, suggest_for_gap
from src.core.instruments.weighting import allocate_layer, plan_key
from src.core.layers import LayerAmounts, distribution, within_tolerance
from src.core.layers.gates import (
    apply_minimum_rebalancing_gate,
    apply_minimum_saving_plan_gate,
    reconcile_minimum_saving_plan_impact,
)
from src.core.layers.projection import ProjectionResult, project_layer_targets
from src.core.models import (
    LAYER_IDS,
    ContributionItem,
    InstrumentFacts,
    InstrumentProposal,
    InstrumentProposalGating,
    InstrumentScore,
    InstrumentWarning,
    LayerProposal,
    LayerWeightingSummary,
    NewInstrumentSuggestion,
    RebalanceRequest,
    RebalanceResult,
    ReasonCode,
    normalize_layer,
)
from src.core.one_time import allocate_one_time
from src.core.profiles import ResolvedProfile
from src.core.savings_plans import build_saving_plan_suggestions

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_AMOUNT_SCALE = Decimal("0.01")
_WEIGHT_SCALE = Decimal("0.000001")

NO_CHANGE_RECOMMENDATION = "No change needed; distribution is within tolerance."


def validate_preconditions(request: RebalanceRequest, profile: ResolvedProfile) -> None:
    """Reject requests the engine cannot work on before any allocation starts."""
    holdings_total = sum(request.holdings.amounts_by_layer.values(), _ZERO)
    contribution_total = sum((item.monthly_amount for item in request.contributions), _ZERO)
    if holdings_total <= _ZERO and contribution_total <= _ZERO:
        raise NoHoldingsError("No holdings or saving plans found for the requested scope.")

    delta = request.saving_plan_delta
    if delta is not None:
        if delta < _ZERO:
            raise NegativeDeltaError("Saving plan amount delta must be zero or positive.")
        if _ZERO < delta < Decimal(profile.minimum_saving_plan_size):
            raise SavingPlanDeltaBelowMinimumError(
                "Saving plan amount delta must be at least the minimum saving plan size."
            )

    one_time = request.one_time_amount
    if one_time is not None:
        if one_time < _ZERO:
            raise NegativeDeltaError("One-time amount must be zero or positive.")
        if _ZERO < one_time < Decimal(profile.minimum_instrument_amount):
            raise OneTimeAmountBelowMinimumError(
                "One-time amount must be at least the minimum amount per instrument."
            )


def _current_amounts(contributions: list[ContributionItem]) -> LayerAmounts:
    amounts = LayerAmounts.zero()
    for item in contributions:
        amounts = amounts.adding(item.layer, item.monthly_amount)
    return amounts


def _score_cutoffs(
    contributions: list[ContributionItem],
    candidates: list[InstrumentFacts],
    profile: ResolvedProfile,
) -> dict[str, Decimal]:
    cutoffs: dict[str, Decimal] = {}
    for item in sorted(contributions, key=lambda entry: (entry.layer, entry.isin)):
        cutoffs.setdefault(item.isin, profile.score_cutoff(item.layer))
    for candidate in candidates:
        cutoffs.setdefault(candidate.isin, profile.score_cutoff(normalize_layer(candidate.layer)))
    return cutoffs


def _build_gating(
    contributions: list[ContributionItem],
    facts_by_isin: dict[str, InstrumentFacts],
    enabled: bool,
) -> InstrumentProposalGating:
    missing = sorted({item.isin for item in contributions if item.isin not in facts_by_isin})
    return InstrumentProposalGating(
        knowledge_base_enabled=enabled,
        knowledge_base_complete=enabled and not missing,
        missing_isins=missing,
    )


class _InstrumentStage:
    """Per-layer instrument split, gap suggestions and the warnings they produce."""

    def __init__(
        self,
        *,
        request: RebalanceRequest,
        profile: ResolvedProfile,
        current: LayerAmounts,
        facts_by_isin: dict[str, InstrumentFacts],
        scores: dict[str, InstrumentScore],
    ) -> None:
        self.request = request
        self.profile = profile
        self.current = current
        self.facts_by_isin = facts_by_isin
        self.scores = scores
        self.proposals: list[InstrumentProposal] = []
        self.suggestions: list[NewInstrumentSuggestion] = []
        self.warnings: list[InstrumentWarning] = []
        self.summaries: list[LayerWeightingSummary] = []

    def keep_current(self) -> None:
        for item in self._ordered_contributions():
            self.proposals.append(
                InstrumentProposal(
                    isin=item.isin,
                    name=item.name,
                    depot_id=item.depot_id,
                    layer=item.layer,
                    current_amount=item.monthly_amount,
                    proposed_amount=item.monthly_amount,
                    delta=_ZERO,
                    reason_codes=[ReasonCode.NO_CHANGE_WITHIN_TOLERANCE],
                )
            )

    def allocate(self, budgets: LayerAmounts) -> None:
        contributed_isins = {item.isin for item in self.request.contributions}
        for layer in LAYER_IDS:
            items = [item for item in self._ordered_contributions() if item.layer == layer]
            budget = budgets.get(layer)
            if self.current.get(layer) == _ZERO and budget > _ZERO:
                budget -= self._suggest(layer, budget, items, contributed_isins)

            if not items:
                if budget > _ZERO and not any(s.layer == layer for s in self.suggestions):
                    self.warnings.append(
                        InstrumentWarning(
                            code="LAYER_NO_INSTRUMENTS",
                            message=(
                                f"Layer {layer} has a budget of {format_eur(budget)} EUR "
                                "but no active saving plan instruments."
                            ),
                            layer=layer,
                        )
                    )
                continue

            allocation = allocate_layer(
                layer=layer,
                budget=budget,
                items=items,
                facts_by_isin=self.facts_by_isin,
                scores=self.scores,
                score_cutoff=self.profile.score_cutoff(layer),
                minimum_saving_plan_size=self.profile.minimum_saving_plan_size,
                minimum_rebalancing_amount=self.profile.minimum_rebalancing_amount,
            )
            self.warnings.extend(allocation.warnings)
            if allocation.summary is not None:
                self.summaries.append(allocation.summary)
            for item in items:
                key = plan_key(item)
                proposed = allocation.proposed.get(key, _ZERO)
                self.proposals.append(
                    InstrumentProposal(
                        isin=item.isin,
                        name=item.name,
                        depot_id=item.depot_id,
                        layer=layer,
                        current_amount=item.monthly_amount,
                        proposed_amount=proposed,
                        delta=proposed - item.monthly_amount,
                        reason_codes=allocation.reason_codes.get(key, []),
                    )
                )

    def _suggest(
        self,
        layer: int,
        budget: Decimal,
        items: list[ContributionItem],
        contributed_isins: set[str],
    ) -> Decimal:
        result = suggest_for_gap(
            layer=layer,
            budget=budget,
            candidates=candidates_for_layer(
                layer, self.request.candidate_instruments, contributed_isins
            ),
            existing=[
                self.facts_by_isin[item.isin] for item in items if item.isin in self.facts_by_isin
            ],
            existing_count=len(items),
            scores=self.scores,
            score_cutoff=self.profile.score_cutoff(layer),
            max_instruments=self.profile.max_instruments_per_layer.get(layer, 0),
            minimum_amount=max(
                self.profile.minimum_saving_plan_size, self.profile.minimum_rebalancing_amount
            ),
        )
        if not result.coverage_complete:
            logger.debug(
                "Gap layer without complete candidate coverage. layer=%s candidates=%s",
                layer,
                result.candidate_count,
            )
            return _ZERO
        for suggestion in result.suggestions:
            self.suggestions.append(suggestion)
            self.proposals.append(
                InstrumentProposal(
                    isin=suggestion.isin,
                    name=suggestion.name,
                    layer=layer,
                    current_amount=_ZERO,
                    proposed_amount=suggestion.amount,
                    delta=suggestion.amount,
                    reason_codes=[ReasonCode.KB_GAP_SUGGESTION],
                )
            )
        return result.reserved_amount

    def _ordered_contributions(self) -> list[ContributionItem]:
        return sorted(
            self.request.contributions,
            key=lambda item: (item.layer, item.isin, item.depot_id),
        )


def _reconcile_layers(proposed: LayerAmounts, proposals: list[InstrumentProposal]) -> LayerAmounts:
    reconciled = proposed
    for layer in LAYER_IDS:
        instrument_total = sum(
            (item.proposed_amount for item in proposals if item.layer == layer), _ZERO
        )
        if instrument_total > _ZERO:
            reconciled = reconciled.with_amount(layer, instrument_total)
    return reconciled


def _layer_proposals(
    *,
    profile: ResolvedProfile,
    holdings: LayerAmounts,
    current: LayerAmounts,
    proposed: LayerAmounts,
    projection: ProjectionResult,
) -> list[LayerProposal]:
    current_weights = distribution(current, current.total())
    horizon = Decimal(profile.horizon_months)
    layers = []
    for layer in LAYER_IDS:
        projected_total = projection.projected_total
        if projected_total > _ZERO:
            projected_weight = (
                (holdings.get(layer) + proposed.get(layer) * horizon) / projected_total
            ).quantize(_WEIGHT_SCALE, rounding=ROUND_HALF_UP)
        else:
            projected_weight = _ZERO
        layers.append(
            LayerProposal(
                layer=layer,
                layer_name=profile.layer_name(layer),
                current_amount=current.get(layer),
                current_weight=current_weights.get(layer),
                target_weight=profile.target_weights.get(layer),
                proposed_amount=proposed.get(layer),
                delta=proposed.get(layer) - current.get(layer),
                projected_target_total=projection.projected_target_totals.get(layer).quantize(
                    _AMOUNT_SCALE, rounding=ROUND_HALF_UP
                ),
                projected_target_weight=projected_weight,
            )
        )
    return layers


def _recommendation(no_op: bool, saving_plan_adjusted: bool, skipped: bool, minimum: int) -> str:
    if no_op:
        return NO_CHANGE_RECOMMENDATION
    text = "Rebalance contributions toward the selected profile"
    if saving_plan_adjusted:
        text += " while respecting the minimum saving plan size"
    if skipped:
        text += f" while skipping adjustments below {minimum} EUR"
    return text + "."


def run_rebalance(
    request: RebalanceRequest,
    profile: ResolvedProfile,
    *,
    correlation_id: Optional[str] = None,
    knowledge_base_enabled: bool = True,
) -> RebalanceResult:
    """Propose monthly layer amounts and the instrument split for one request."""
    run_id = f"rr_{uuid.uuid4().hex[:12]}"
    correlation_id = correlation_id or f"corr_{uuid.uuid4().hex[:12]}"
    diagnostics = make_diagnostics_data()
    notes: list[str] = []

    holdings = LayerAmounts.of(request.holdings.amounts_by_layer)
    current = _current_amounts(request.contributions)
    delta = request.saving_plan_delta or _ZERO
    monthly_total = current.total() + delta
    targets = profile.target_weights

    within = current.total() > _ZERO and within_tolerance(
        distribution(current, current.total()), targets, profile.variance_pct
    )
    diagnostics.within_tolerance = within

    projection = project_layer_targets(
        holdings=holdings,
        monthly_total=monthly_total,
        target_weights=targets,
        profile=profile,
    )
    saving_plan_gate = apply_minimum_saving_plan_gate(
        projection.rounded, profile.minimum_saving_plan_size
    )
    no_op = within and delta == _ZERO and not saving_plan_gate.rebalanced
    baseline = current if no_op else saving_plan_gate.adjusted_amounts

    rebalancing_gate = apply_minimum_rebalancing_gate(
        baseline,
        current,
        profile.minimum_rebalancing_amount,
        expected_total=baseline.total(),
    )
    impact = reconcile_minimum_saving_plan_impact(
        projection.rounded, saving_plan_gate, rebalancing_gate.adjusted_amounts
    )
    proposed = rebalancing_gate.adjusted_amounts

    if no_op:
        notes.append(
            "Existing savings plan distribution is within tolerance "
            f"(<= {format_eur(profile.variance_pct)}%) and does not need adjustment."
        )
    else:
        if impact.rebalanced:
            notes.extend(saving_plan_gate.notes)
        notes.extend(rebalancing_gate.notes)
    if impact.increased_layer_one:
        notes.append(
            "Total savings plan amount is below the minimum saving plan size; "
            f"increase Layer 1 to {profile.minimum_saving_plan_size} EUR."
        )
    if rebalancing_gate.skipped_layers:
        notes.append(
            f"Adjustments below {profile.minimum_rebalancing_amount} EUR are not proposed "
            "due to the minimum rebalancing amount."
        )

    knowledge_base = {facts.isin: facts for facts in request.instrument_facts}
    facts_by_isin = dict(knowledge_base)
    for candidate in request.candidate_instruments:
        facts_by_isin.setdefault(candidate.isin, candidate)
    cutoffs = _score_cutoffs(request.contributions, request.candidate_instruments, profile)
    scores = {
        isin: score_instrument(facts_by_isin[isin], score_cutoff=cutoff, isin=isin)
        for isin, cutoff in cutoffs.items()
        if isin in facts_by_isin
    }

    enabled = (
        request.knowledge_base_enabled
        if request.knowledge_base_enabled is not None
        else knowledge_base_enabled
    )
    gating = _build_gating(request.contributions, knowledge_base, enabled)
    stage = _InstrumentStage(
        request=request,
        profile=profile,
        current=current,
        facts_by_isin=facts_by_isin,
        scores=scores,
    )
    if gating.knowledge_base_complete:
        if no_op:
            stage.keep_current()
        else:
            stage.allocate(proposed)
        proposed = _reconcile_layers(proposed, stage.proposals)
    elif not enabled:
        diagnostics.warnings.append("KNOWLEDGE_BASE_DISABLED")
    else:
        diagnostics.warnings.append("KNOWLEDGE_BASE_INCOMPLETE")

    diagnostics.suppressed_delta_count = rebalancing_gate.suppressed_count
    diagnostics.suppressed_amount_total = rebalancing_gate.suppressed_amount
    diagnostics.redistribution_notes = list(rebalancing_gate.notes)
    diagnostics.residual_unresolved = rebalancing_gate.residual
    diagnostics.minimum_saving_plan_floor_applied = impact.increased_layer_one
    diagnostics.warnings.extend(warning.code for warning in stage.warnings)

    one_time_allocation = None
    if request.one_time_amount is not None and request.one_time_amount > _ZERO:
        one_time_allocation = allocate_one_time(
            amount=request.one_time_amount,
            holdings=holdings,
            contributions=request.contributions,
            profile=profile,
        )

    result = RebalanceResult(
        rebalance_run_id=run_id,
        correlation_id=correlation_id,
        created_at=datetime.now(timezone.utc),
        profile_key=profile.profile_key,
        monthly_total=monthly_total,
        layers=_layer_proposals(
            profile=profile,
            holdings=holdings,
            current=current,
            proposed=proposed,
            projection=projection,
        ),
        instrument_proposals=stage.proposals,
        instrument_warnings=stage.warnings,
        instrument_gating=gating,
        weighting_summaries=stage.summaries,
        new_instrument_suggestions=stage.suggestions,
        saving_plan_suggestions=build_saving_plan_suggestions(stage.proposals),
        one_time_allocation=one_time_allocation,
        instrument_scores=[scores[isin] for isin in sorted(scores)],
        notes=notes,
        recommendation=_recommendation(
            no_op,
            impact.rebalanced,
            bool(rebalancing_gate.skipped_layers),
            profile.minimum_rebalancing_amount,
        ),
        diagnostics=diagnostics,
    )
    logger.info(
        "Rebalance completed. RunID=%s CID=%s monthly_total=%s within_tolerance=%s residual=%s",
        run_id,
        correlation_id,
        monthly_total,
        within,
        rebalancing_gate.residual,
    )
    return result
