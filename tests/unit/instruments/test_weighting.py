from decimal import Decimal

from src.core.instruments.weighting import (
    allocate_layer,
    compute_weights,
    data_quality_factor,
    score_weight_factor,
)
from src.core.models import InstrumentScore, ReasonCode
from tests.factories import contribution, facts

CUTOFF = Decimal("51")


def _score(isin: str, score: int) -> InstrumentScore:
    return InstrumentScore(isin=isin, score=score)


def _allocate(items, budget, *, facts_by_isin=None, scores=None, minimum=15, rebalancing=10):
    return allocate_layer(
        layer=1,
        budget=Decimal(budget),
        items=items,
        facts_by_isin=facts_by_isin or {},
        scores=scores or {},
        score_cutoff=CUTOFF,
        minimum_saving_plan_size=minimum,
        minimum_rebalancing_amount=rebalancing,
    )


def test_no_signals_fall_back_to_equal_weights():
    result = compute_weights(["A", "B"], {}, {}, CUTOFF)

    assert result.weights == {"A": Decimal("0.5"), "B": Decimal("0.5")}
    assert result.weighted is False


def test_equal_split_of_layer_budget():
    allocation = _allocate([contribution("A", "40"), contribution("B", "60")], "100")

    assert allocation.proposed == {("A", "default"): Decimal("50"), ("B", "default"): Decimal("50")}
    assert allocation.reason_codes[("A", "default")] == [ReasonCode.EQUAL_WEIGHT]
    assert allocation.summary is not None
    assert allocation.summary.weighted is False


def test_scores_tilt_weights_toward_lower_risk():
    result = compute_weights(["A", "B"], {}, {"A": _score("A", 10), "B": _score("B", 40)}, CUTOFF)

    assert result.score_weighted is True
    assert result.weighted is False
    assert result.weights == {"A": Decimal("0.77777778"), "B": Decimal("0.22222222")}


def test_score_weight_factor_is_bounded():
    assert score_weight_factor(0, CUTOFF) == Decimal("1")
    assert score_weight_factor(50, CUTOFF) == Decimal("0.2")
    assert score_weight_factor(10, Decimal("0")) == Decimal("1")


def test_signal_is_ignored_unless_every_instrument_has_it():
    facts_by_isin = {"A": facts("A", ter="0.2"), "B": facts("B")}

    result = compute_weights(["A", "B"], facts_by_isin, {}, CUTOFF)

    assert result.cost_used is False
    assert result.weights == {"A": Decimal("0.5"), "B": Decimal("0.5")}


def test_cost_signal_prefers_cheaper_instruments():
    facts_by_isin = {"A": facts("A", ter="0.2"), "B": facts("B", ter="1.0")}

    result = compute_weights(["A", "B"], facts_by_isin, {}, CUTOFF)

    assert result.weighted is True
    assert result.cost_used is True
    assert result.weights == {"A": Decimal("0.625"), "B": Decimal("0.375")}


def test_shared_benchmark_reduces_weight_of_redundant_instruments():
    facts_by_isin = {
        "A": facts("A", benchmark="MSCI World"),
        "B": facts("B", benchmark="msci world"),
        "C": facts("C", benchmark="MSCI EM"),
    }

    result = compute_weights(["A", "B", "C"], facts_by_isin, {}, CUTOFF)

    assert result.benchmark_used is True
    assert result.weights["C"] > result.weights["A"] == result.weights["B"]


def test_data_quality_factor_discount_is_capped():
    assert data_quality_factor(None) == Decimal("1")
    noisy = facts("A").model_copy(update={"missing_field_count": 50, "warning_count": 10})
    assert data_quality_factor(noisy) == Decimal("0.75")


def test_risky_instruments_receive_nothing():
    allocation = _allocate(
        [contribution("A", "50"), contribution("B", "50")],
        "100",
        scores={"A": _score("A", 20), "B": _score("B", 51)},
    )

    assert allocation.proposed[("A", "default")] == Decimal("100")
    assert allocation.proposed[("B", "default")] == Decimal("0")
    assert ReasonCode.RISK_NOT_ACCEPTABLE in allocation.reason_codes[("B", "default")]


def test_layer_without_eligible_instruments_warns():
    allocation = _allocate(
        [contribution("A", "50")],
        "100",
        scores={"A": _score("A", 80)},
    )

    assert allocation.proposed == {("A", "default"): Decimal("0")}
    assert [warning.code for warning in allocation.warnings] == ["LAYER_NO_ELIGIBLE_INSTRUMENTS"]
    assert ReasonCode.LAYER_BUDGET_ZERO in allocation.reason_codes[("A", "default")]


def test_zero_budget_marks_every_plan():
    allocation = _allocate([contribution("A", "50"), contribution("B", "50")], "0")

    assert set(allocation.proposed.values()) == {Decimal("0")}
    assert allocation.reason_codes[("B", "default")] == [ReasonCode.LAYER_BUDGET_ZERO]


def test_plans_below_minimum_are_dropped_one_at_a_time():
    allocation = _allocate(
        [contribution("A", "20"), contribution("B", "10"), contribution("C", "10")],
        "40",
    )

    assert allocation.proposed == {
        ("A", "default"): Decimal("20"),
        ("B", "default"): Decimal("0"),
        ("C", "default"): Decimal("20"),
    }
    assert ReasonCode.MIN_AMOUNT_DROPPED in allocation.reason_codes[("B", "default")]


def test_small_instrument_changes_are_flagged_not_suppressed():
    allocation = _allocate([contribution("A", "95")], "100")

    assert allocation.proposed[("A", "default")] == Decimal("100")
    assert ReasonCode.MIN_REBALANCE_AMOUNT in allocation.reason_codes[("A", "default")]


def test_same_isin_in_two_depots_shares_its_weight():
    allocation = _allocate(
        [
            contribution("A", "30", depot_id="depot-1"),
            contribution("A", "30", depot_id="depot-2"),
            contribution("B", "40"),
        ],
        "100",
    )

    assert allocation.proposed[("A", "depot-1")] == Decimal("25")
    assert allocation.proposed[("A", "depot-2")] == Decimal("25")
    assert allocation.proposed[("B", "default")] == Decimal("50")
