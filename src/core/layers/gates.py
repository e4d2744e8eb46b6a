"""
Threshold gates for layer amounts.

Each gate runs as a small state machine (EVALUATE -> ADJUST -> RECONVERGE -> DONE) and returns a
frozen result instead of mutating its inputs. The rebalancing gate bounds its reconvergence loop
at MAX_RECONVERGE_ITERATIONS and reports any residual it could not place.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from src.core.common.diagnostics import format_eur, format_layers
from src.core.layers.amounts import LayerAmounts
from src.core.layers.rounding import floor_distribute
from src.core.models import LAYER_IDS

logger = logging.getLogger(__name__)

MAX_RECONVERGE_ITERATIONS = 12

_ZERO = Decimal("0")


class GateState(str, Enum):
    EVALUATE = "EVALUATE"
    ADJUST = "ADJUST"
    RECONVERGE = "RECONVERGE"
    DONE = "DONE"


@dataclass(frozen=True)
class SavingPlanGateResult:
    adjusted_amounts: LayerAmounts
    notes: tuple[str, ...]
    states: tuple[GateState, ...]
    rebalanced: bool
    zeroed_layers: tuple[int, ...]
    increased_layer_one: bool


@dataclass(frozen=True)
class RebalancingGateResult:
    adjusted_amounts: LayerAmounts
    notes: tuple[str, ...]
    states: tuple[GateState, ...]
    applied: bool
    skipped_layers: tuple[int, ...]
    suppressed_count: int
    suppressed_amount: Decimal
    iterations: int
    residual: Decimal


@dataclass(frozen=True)
class SavingPlanImpact:
    rebalanced: bool
    increased_layer_one: bool


def apply_minimum_saving_plan_gate(amounts: LayerAmounts, minimum: int) -> SavingPlanGateResult:
    """Fold layers below the minimum saving plan size into the next lower layer."""
    state = GateState.EVALUATE
    states: list[GateState] = []
    adjusted = amounts
    zeroed: list[int] = []
    increased_layer_one = False
    floor = Decimal(minimum)

    while state != GateState.DONE:
        states.append(state)
        if state == GateState.EVALUATE:
            state = GateState.ADJUST if minimum >= 1 else GateState.DONE
        elif state == GateState.ADJUST:
            for layer in (5, 4, 3, 2):
                value = adjusted.get(layer)
                if _ZERO < value < floor:
                    adjusted = adjusted.with_amount(layer, _ZERO).adding(layer - 1, value)
                    zeroed.append(layer)
            state = GateState.RECONVERGE
        elif state == GateState.RECONVERGE:
            # Layer 1 alone below the minimum is raised, which increases the total on purpose.
            remaining = adjusted.nonzero_layers()
            layer_one = adjusted.get(1)
            if remaining == [1] and _ZERO < layer_one < floor:
                adjusted = adjusted.with_amount(1, floor)
                increased_layer_one = True
            state = GateState.DONE
    states.append(GateState.DONE)

    notes: list[str] = []
    if zeroed:
        notes.append(f"Adjusted layers below minimum saving plan size: {format_layers(zeroed)}")
    if increased_layer_one:
        notes.append("Increased Layer 1 to the minimum saving plan size.")
    rebalanced = adjusted != amounts
    if rebalanced:
        logger.debug("Minimum saving plan gate adjusted layers. zeroed=%s", zeroed)
    return SavingPlanGateResult(
        adjusted_amounts=adjusted,
        notes=tuple(notes),
        states=tuple(states),
        rebalanced=rebalanced,
        zeroed_layers=tuple(zeroed),
        increased_layer_one=increased_layer_one,
    )


def reconcile_minimum_saving_plan_impact(
    original: LayerAmounts,
    gate: SavingPlanGateResult,
    final: LayerAmounts,
) -> SavingPlanImpact:
    """Report whether the saving plan gate's changes survived into the final amounts."""
    if not gate.rebalanced:
        return SavingPlanImpact(rebalanced=False, increased_layer_one=False)
    adjusted = gate.adjusted_amounts
    rebalanced = any(
        original.get(layer) != adjusted.get(layer) and final.get(layer) == adjusted.get(layer)
        for layer in LAYER_IDS
    )
    # The raise still counts when the rebalancing gate moved part of it out of layer 1.
    increased_layer_one = gate.increased_layer_one and final.total() > original.total()
    return SavingPlanImpact(
        rebalanced=rebalanced or increased_layer_one,
        increased_layer_one=increased_layer_one,
    )


class _Adjustments:
    """Accumulates residual moves for the redistribution notes."""

    _LABELS = (
        ("reduced_increases", "Reduced increases"),
        ("reduced_decreases", "Reduced decreases"),
        ("increased_increases", "Increased increases"),
        ("increased_decreases", "Increased decreases"),
    )

    def __init__(self) -> None:
        self._amounts: dict[str, Decimal] = {}
        self._layers: dict[str, list[int]] = {}

    def record(self, kind: str, layer: int, amount: Decimal) -> None:
        if amount == _ZERO:
            return
        self._amounts[kind] = self._amounts.get(kind, _ZERO) + amount
        layers = self._layers.setdefault(kind, [])
        if layer not in layers:
            layers.append(layer)

    def notes(self) -> list[str]:
        notes = []
        for kind, label in self._LABELS:
            if kind in self._amounts:
                notes.append(
                    f"{label} by {format_eur(self._amounts[kind])} EUR "
                    f"in layers {format_layers(sorted(self._layers[kind]))}"
                )
        return notes


class _RebalancingPass:
    def __init__(self, current: LayerAmounts, adjusted: LayerAmounts, minimum: Decimal) -> None:
        self.current = current
        self.adjusted = adjusted
        self.minimum = minimum
        self.skipped: list[int] = []
        self.adjustments = _Adjustments()

    def delta(self, layer: int) -> Decimal:
        return self.adjusted.get(layer) - self.current.get(layer)

    def _set(self, layer: int, value: Decimal) -> None:
        self.adjusted = self.adjusted.with_amount(layer, value)

    def fold_back(self, layer: int) -> None:
        self._set(layer, self.current.get(layer))
        if layer not in self.skipped:
            self.skipped.append(layer)

    def below_minimum(self, delta: Decimal) -> bool:
        return delta != _ZERO and abs(delta) < self.minimum

    def _ordered(self, layers: list[int]) -> list[int]:
        return sorted(layers, key=lambda layer: (abs(self.delta(layer)), layer))

    def reduce(self, excess: Decimal) -> bool:
        """Remove `excess` from the total. Returns False when nothing could move."""
        increases = [layer for layer in LAYER_IDS if self.delta(layer) > _ZERO]
        if increases:
            remaining = excess
            for layer in self._ordered(increases):
                if remaining <= _ZERO:
                    break
                delta = self.delta(layer)
                reduction = min(delta, remaining)
                if self.below_minimum(delta - reduction):
                    reduction = delta
                    self.fold_back(layer)
                else:
                    self._set(layer, self.adjusted.get(layer) - reduction)
                self.adjustments.record("reduced_increases", layer, reduction)
                remaining -= reduction
            return True

        decreases = [
            layer
            for layer in LAYER_IDS
            if self.delta(layer) < _ZERO and self.adjusted.get(layer) > _ZERO
        ]
        if decreases:
            remaining = excess
            for layer in self._ordered(decreases):
                if remaining <= _ZERO:
                    break
                step = min(remaining, self.adjusted.get(layer))
                self._set(layer, self.adjusted.get(layer) - step)
                self.adjustments.record("increased_decreases", layer, step)
                remaining -= step
            return True
        return self._open_new_change(-excess)

    def add(self, shortfall: Decimal) -> bool:
        """Add `shortfall` to the total. Returns False when nothing could move."""
        increases = [layer for layer in LAYER_IDS if self.delta(layer) > _ZERO]
        if increases:
            delta_total = sum((self.delta(layer) for layer in increases), _ZERO)
            shares = floor_distribute(
                {layer: shortfall * self.delta(layer) / delta_total for layer in increases},
                shortfall,
            )
            for layer, share in shares.items():
                self._set(layer, self.adjusted.get(layer) + share)
                self.adjustments.record("increased_increases", layer, share)
            return True

        decreases = [layer for layer in LAYER_IDS if self.delta(layer) < _ZERO]
        if decreases:
            remaining = shortfall
            for layer in self._ordered(decreases):
                if remaining <= _ZERO:
                    break
                delta = self.delta(layer)
                addition = min(abs(delta), remaining)
                if self.below_minimum(delta + addition):
                    addition = abs(delta)
                    self.fold_back(layer)
                else:
                    self._set(layer, self.adjusted.get(layer) + addition)
                self.adjustments.record("reduced_decreases", layer, addition)
                remaining -= addition
            return True
        return self._open_new_change(shortfall)

    def _open_new_change(self, change: Decimal) -> bool:
        if abs(change) < self.minimum:
            return False
        candidates = [
            layer
            for layer in LAYER_IDS
            if self.adjusted.get(layer) > _ZERO and self.adjusted.get(layer) + change >= _ZERO
        ]
        if not candidates:
            return False
        layer = max(candidates, key=lambda item: (self.adjusted.get(item), -item))
        self._set(layer, self.adjusted.get(layer) + change)
        kind = "increased_increases" if change > _ZERO else "increased_decreases"
        self.adjustments.record(kind, layer, abs(change))
        return True


def apply_minimum_rebalancing_gate(
    proposed: LayerAmounts,
    current: LayerAmounts,
    minimum: int,
    expected_total: Optional[Decimal] = None,
) -> RebalancingGateResult:
    """Suppress layer changes below the minimum rebalancing amount and restore the total."""
    target_total = proposed.total() if expected_total is None else expected_total
    floor = Decimal(minimum)
    state = GateState.EVALUATE
    states: list[GateState] = []
    gate = _RebalancingPass(current=current, adjusted=proposed, minimum=floor)
    suppressed_amount = _ZERO
    initially_skipped: list[int] = []
    iterations = 0
    residual = _ZERO

    while state != GateState.DONE:
        states.append(state)
        if state == GateState.EVALUATE:
            state = GateState.ADJUST if minimum >= 1 else GateState.DONE
        elif state == GateState.ADJUST:
            for layer in LAYER_IDS:
                delta = gate.delta(layer)
                if gate.below_minimum(delta):
                    suppressed_amount += abs(delta)
                    initially_skipped.append(layer)
                    gate.fold_back(layer)
            state = GateState.RECONVERGE
        elif state == GateState.RECONVERGE:
            residual = gate.adjusted.total() - target_total
            while residual != _ZERO and iterations < MAX_RECONVERGE_ITERATIONS:
                iterations += 1
                moved = gate.reduce(residual) if residual > _ZERO else gate.add(-residual)
                residual = gate.adjusted.total() - target_total
                logger.debug(
                    "Rebalancing gate reconverge. iteration=%s residual=%s", iterations, residual
                )
                if not moved:
                    break
            state = GateState.DONE
    states.append(GateState.DONE)

    notes: list[str] = []
    if initially_skipped:
        notes.append(f"Suppressed layer deltas below minimum: {format_layers(initially_skipped)}")
    notes.extend(gate.adjustments.notes())
    if residual != _ZERO:
        notes.append(
            f"Residual of {format_eur(residual)} EUR could not be redistributed "
            f"within {MAX_RECONVERGE_ITERATIONS} iterations."
        )
        logger.warning(
            "Rebalancing gate left unresolved residual. residual=%s iterations=%s",
            residual,
            iterations,
        )

    for layer in gate.skipped:
        if layer not in initially_skipped:
            suppressed_amount += abs(proposed.get(layer) - current.get(layer))

    return RebalancingGateResult(
        adjusted_amounts=gate.adjusted,
        notes=tuple(notes),
        states=tuple(states),
        applied=bool(gate.skipped) or gate.adjusted != proposed,
        skipped_layers=tuple(gate.skipped),
        suppressed_count=len(gate.skipped),
        suppressed_amount=suppressed_amount,
        iterations=iterations,
        residual=residual,
    )
