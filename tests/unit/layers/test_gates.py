import logging
from decimal import Decimal

from src.core.layers.gates import (
    GateState,
    apply_minimum_rebalancing_gate,
    apply_minimum_saving_plan_gate,
    reconcile_minimum_saving_plan_impact,
)
from tests.factories import amounts


def test_saving_plan_gate_folds_small_layer_into_next_lower_layer():
    result = apply_minimum_saving_plan_gate(amounts(700, 200, 70, 20, 10), 15)

    assert result.adjusted_amounts == amounts(700, 200, 70, 30, 0)
    assert result.rebalanced is True
    assert result.zeroed_layers == (5,)
    assert result.notes == ("Adjusted layers below minimum saving plan size: [5]",)
    assert result.states == (
        GateState.EVALUATE,
        GateState.ADJUST,
        GateState.RECONVERGE,
        GateState.DONE,
    )


def test_saving_plan_gate_cascades_through_several_layers():
    result = apply_minimum_saving_plan_gate(amounts(985, 5, 5, 3, 2), 15)

    assert result.adjusted_amounts == amounts(985, 15, 0, 0, 0)
    assert result.zeroed_layers == (5, 4, 3)
    assert result.adjusted_amounts.total() == Decimal("1000")


def test_saving_plan_gate_raises_lone_layer_one_to_minimum():
    result = apply_minimum_saving_plan_gate(amounts(10), 15)

    assert result.adjusted_amounts == amounts(15)
    assert result.increased_layer_one is True
    assert "Increased Layer 1 to the minimum saving plan size." in result.notes


def test_saving_plan_gate_is_disabled_below_one():
    original = amounts(700, 200, 70, 20, 10)
    result = apply_minimum_saving_plan_gate(original, 0)

    assert result.adjusted_amounts == original
    assert result.rebalanced is False
    assert result.states == (GateState.EVALUATE, GateState.DONE)


def test_rebalancing_gate_redistributes_suppressed_delta():
    result = apply_minimum_rebalancing_gate(
        amounts(700, 195, 85, 20, 0),
        amounts(750, 150, 80, 20, 0),
        10,
    )

    assert result.adjusted_amounts == amounts(700, 200, 80, 20, 0)
    assert result.skipped_layers == (3,)
    assert result.suppressed_count == 1
    assert result.suppressed_amount == Decimal("5")
    assert result.residual == Decimal("0")
    assert result.iterations == 1
    assert result.notes == (
        "Suppressed layer deltas below minimum: [3]",
        "Increased increases by 5 EUR in layers [2]",
    )


def test_rebalancing_gate_leaves_large_deltas_alone():
    proposed = amounts(700, 200, 80, 20, 0)
    result = apply_minimum_rebalancing_gate(proposed, amounts(1000), 10)

    assert result.adjusted_amounts == proposed
    assert result.applied is False
    assert result.notes == ()


def test_rebalancing_gate_reports_unresolved_residual(caplog):
    with caplog.at_level(logging.WARNING, logger="src.core.layers.gates"):
        result = apply_minimum_rebalancing_gate(amounts(5), amounts(0), 10)

    assert result.adjusted_amounts == amounts(0)
    assert result.residual == Decimal("-5")
    assert result.notes[-1] == "Residual of -5 EUR could not be redistributed within 12 iterations."
    assert "unresolved residual" in caplog.text


def test_rebalancing_gate_shrinks_decrease_when_only_small_increases_exist():
    result = apply_minimum_rebalancing_gate(
        amounts(690, 206, 84, 20, 0),
        amounts(700, 200, 80, 20, 0),
        10,
    )

    assert result.adjusted_amounts == amounts(700, 200, 80, 20, 0)
    assert result.skipped_layers == (2, 3)
    assert result.suppressed_amount == Decimal("10")
    assert result.residual == Decimal("0")
    assert "Reduced decreases by 10 EUR in layers [1]" in result.notes


def test_rebalancing_gate_shrinks_increase_when_only_small_decreases_exist():
    result = apply_minimum_rebalancing_gate(
        amounts(710, 194, 76, 20, 0),
        amounts(700, 200, 80, 20, 0),
        10,
    )

    assert result.adjusted_amounts == amounts(700, 200, 80, 20, 0)
    assert result.adjusted_amounts.total() == Decimal("1000")
    assert "Reduced increases by 10 EUR in layers [1]" in result.notes


def test_saving_plan_impact_only_counts_changes_that_survive():
    original = amounts(700, 200, 70, 20, 10)
    gate = apply_minimum_saving_plan_gate(original, 15)

    survived = reconcile_minimum_saving_plan_impact(original, gate, gate.adjusted_amounts)
    reverted = reconcile_minimum_saving_plan_impact(original, gate, original)

    assert survived.rebalanced is True
    assert reverted.rebalanced is False
    assert reverted.increased_layer_one is False


def test_layer_one_raise_is_reported_when_partly_folded_back():
    original = amounts(4, 1)
    gate = apply_minimum_saving_plan_gate(original, 15)

    folded_back = reconcile_minimum_saving_plan_impact(original, gate, amounts(10, 0, 0, 5))
    fully_reverted = reconcile_minimum_saving_plan_impact(original, gate, amounts(0, 0, 0, 5))

    assert gate.adjusted_amounts == amounts(15)
    assert folded_back.increased_layer_one is True
    assert folded_back.rebalanced is True
    assert fully_reverted.increased_layer_one is False
