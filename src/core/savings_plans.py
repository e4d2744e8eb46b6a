"""
Turn instrument proposals into create / increase / decrease / discard saving-plan actions.
"""

from decimal import Decimal

from src.core.models import InstrumentProposal, ReasonCode, SavingPlanSuggestion

_ZERO = Decimal("0")
_TYPE_ORDER = {"create": 0, "increase": 1, "decrease": 2, "discard": 3}

ALIGN_RATIONALE = "{action} to align with target layer allocation."
DISCARD_MINIMUM_RATIONALE = "Discard to avoid sub-minimum saving plan size."


def _classify(proposal: InstrumentProposal) -> tuple[str, str]:
    if proposal.current_amount <= _ZERO:
        return "create", ALIGN_RATIONALE.format(action="Create")
    if proposal.proposed_amount <= _ZERO:
        if ReasonCode.MIN_AMOUNT_DROPPED in proposal.reason_codes:
            return "discard", DISCARD_MINIMUM_RATIONALE
        return "discard", ALIGN_RATIONALE.format(action="Decrease")
    if proposal.delta > _ZERO:
        return "increase", ALIGN_RATIONALE.format(action="Increase")
    return "decrease", ALIGN_RATIONALE.format(action="Decrease")


def build_saving_plan_suggestions(
    instrument_proposals: list[InstrumentProposal],
) -> list[SavingPlanSuggestion]:
    """Proposals already carry the depot of the contribution they came from."""
    suggestions = []
    for proposal in instrument_proposals:
        if proposal.delta == _ZERO:
            continue
        suggestion_type, rationale = _classify(proposal)
        suggestions.append(
            SavingPlanSuggestion(
                type=suggestion_type,
                isin=proposal.isin,
                name=proposal.name,
                depot_id=proposal.depot_id,
                layer=proposal.layer,
                old_amount=proposal.current_amount,
                new_amount=proposal.proposed_amount,
                delta=proposal.delta,
                rationale=rationale,
            )
        )
    return sorted(
        suggestions,
        key=lambda item: (_TYPE_ORDER[item.type], item.isin, item.depot_id or ""),
    )
