"""
One-time investment split across the priority layers 1..4.
"""

import logging
from decimal import Decimal

from src.core.common.diagnostics import format_eur
from src.core.layers.amounts import LayerAmounts, distribution
from src.core.layers.rounding import floor_distribute
from src.core.models import ContributionItem, OneTimeAllocation, OneTimeInstrumentBucket
from src.core.profiles import ResolvedProfile

logger = logging.getLogger(__name__)

PRIORITY_LAYERS = (1, 2, 3, 4)

_ZERO = Decimal("0")


def _priority_weights(holdings: LayerAmounts, targets: LayerAmounts) -> dict[int, Decimal]:
    holdings_total = holdings.total()
    if holdings_total > _ZERO:
        current = distribution(holdings, holdings_total)
        gaps = {layer: targets.get(layer) - current.get(layer) for layer in PRIORITY_LAYERS}
        positive = {layer: gap for layer, gap in gaps.items() if gap > _ZERO}
        gap_total = sum(positive.values(), _ZERO)
        if gap_total > _ZERO:
            return {layer: positive.get(layer, _ZERO) / gap_total for layer in PRIORITY_LAYERS}

    target_total = sum((targets.get(layer) for layer in PRIORITY_LAYERS), _ZERO)
    if target_total <= _ZERO:
        return {layer: Decimal("1") if layer == 1 else _ZERO for layer in PRIORITY_LAYERS}
    return {layer: targets.get(layer) / target_total for layer in PRIORITY_LAYERS}


def _apply_minimum_rebalancing(amounts: dict[int, Decimal], minimum: int) -> dict[int, Decimal]:
    if minimum < 1:
        return amounts
    floor = Decimal(minimum)
    adjusted = dict(amounts)
    suppressed = _ZERO
    for layer in PRIORITY_LAYERS:
        if _ZERO < adjusted[layer] < floor:
            suppressed += adjusted[layer]
            adjusted[layer] = _ZERO
    if suppressed > _ZERO:
        receiver = next((layer for layer in PRIORITY_LAYERS if adjusted[layer] > _ZERO), 1)
        adjusted[receiver] += suppressed
    return adjusted


def _apply_minimum_instrument(amounts: dict[int, Decimal], minimum: int) -> dict[int, Decimal]:
    if minimum < 1:
        return amounts
    floor = Decimal(minimum)
    adjusted = dict(amounts)
    for layer in (4, 3, 2):
        if _ZERO < adjusted[layer] < floor:
            adjusted[layer - 1] += adjusted[layer]
            adjusted[layer] = _ZERO
    return adjusted


def _instrument_buckets(
    layer: int, amount: Decimal, contributions: list[ContributionItem], minimum: int
) -> list[OneTimeInstrumentBucket]:
    plan_amounts: dict[str, Decimal] = {}
    names: dict[str, str] = {}
    for item in contributions:
        if item.layer != layer or item.monthly_amount <= _ZERO:
            continue
        plan_amounts[item.isin] = plan_amounts.get(item.isin, _ZERO) + item.monthly_amount
        if item.name:
            names.setdefault(item.isin, item.name)
    if not plan_amounts:
        return []

    plan_total = sum(plan_amounts.values(), _ZERO)
    buckets = floor_distribute(
        {isin: amount * value / plan_total for isin, value in plan_amounts.items()}, amount
    )
    if minimum >= 1 and len(buckets) > 1:
        floor = Decimal(minimum)
        # Largest bucket; ties go to the first ISIN.
        receiver = min(buckets, key=lambda isin: (-buckets[isin], isin))
        for isin in sorted(buckets):
            if isin != receiver and _ZERO < buckets[isin] < floor:
                buckets[receiver] += buckets[isin]
                buckets[isin] = _ZERO
    return [
        OneTimeInstrumentBucket(isin=isin, name=names.get(isin), layer=layer, amount=value)
        for isin, value in sorted(buckets.items())
        if value > _ZERO
    ]


def allocate_one_time(
    *,
    amount: Decimal,
    holdings: LayerAmounts,
    contributions: list[ContributionItem],
    profile: ResolvedProfile,
) -> OneTimeAllocation:
    minimum_rebalancing = profile.minimum_rebalancing_amount
    if amount <= _ZERO or amount < Decimal(minimum_rebalancing):
        return OneTimeAllocation(
            amount=amount,
            notes=[
                "One-time amount is below the minimum rebalancing amount; no allocation proposed."
            ],
        )

    weights = _priority_weights(holdings, profile.target_weights)
    layer_amounts = floor_distribute({layer: amount * weights[layer] for layer in PRIORITY_LAYERS}, amount)
    layer_amounts = _apply_minimum_rebalancing(layer_amounts, minimum_rebalancing)
    layer_amounts = _apply_minimum_instrument(layer_amounts, profile.minimum_instrument_amount)

    bucket_minimum = max(minimum_rebalancing, profile.minimum_instrument_amount)
    buckets: list[OneTimeInstrumentBucket] = []
    notes: list[str] = []
    for layer in PRIORITY_LAYERS:
        layer_amount = layer_amounts[layer]
        if layer_amount <= _ZERO:
            continue
        layer_buckets = _instrument_buckets(layer, layer_amount, contributions, bucket_minimum)
        if not layer_buckets:
            notes.append(
                f"Layer {layer} receives {format_eur(layer_amount)} EUR "
                "but has no saving plan instruments to hold it."
            )
        buckets.extend(layer_buckets)

    logger.debug("Allocated one-time amount. amount=%s layers=%s", amount, layer_amounts)
    return OneTimeAllocation(
        amount=amount,
        layer_amounts={layer: value for layer, value in layer_amounts.items() if value > _ZERO},
        instrument_buckets=buckets,
        notes=notes,
    )
