from decimal import Decimal

from src.core.instruments.scoring import score_instruments
from src.core.instruments.suggestions import (
    BASELINE_RATIONALE,
    allocate_suggestion_amounts,
    candidates_for_layer,
    compute_redundancy,
    coverage_complete,
    suggest_for_gap,
)
from tests.factories import facts

CUTOFF = Decimal("51")


def _suggest(candidates, budget, *, existing=(), existing_count=0, max_instruments=17, minimum=15):
    scores = score_instruments(
        [candidate.isin for candidate in candidates],
        {candidate.isin: candidate for candidate in candidates},
        {candidate.isin: CUTOFF for candidate in candidates},
    )
    return suggest_for_gap(
        layer=3,
        budget=Decimal(budget),
        candidates=list(candidates),
        existing=list(existing),
        existing_count=existing_count,
        scores=scores,
        score_cutoff=CUTOFF,
        max_instruments=max_instruments,
        minimum_amount=minimum,
    )


def test_suggestion_amounts_start_at_minimum_and_share_the_rest():
    assert allocate_suggestion_amounts(["B", "A"], Decimal("100"), 15) == {
        "A": Decimal("50"),
        "B": Decimal("50"),
    }
    assert allocate_suggestion_amounts(["B", "A"], Decimal("101"), 15) == {
        "A": Decimal("51"),
        "B": Decimal("50"),
    }


def test_suggestion_amounts_need_minimum_for_every_instrument():
    assert allocate_suggestion_amounts(["A", "B"], Decimal("29"), 15) == {}


def test_zero_minimum_still_suggests_and_splits_the_budget():
    result = _suggest(
        [facts("C2", layer=3, ter="0.9"), facts("C1", layer=3, ter="0.1")],
        "7",
        minimum=0,
    )

    assert [(item.isin, item.amount) for item in result.suggestions] == [
        ("C1", Decimal("4")),
        ("C2", Decimal("3")),
    ]
    assert allocate_suggestion_amounts(["A"], Decimal("12"), 0) == {"A": Decimal("12")}


def test_incomplete_candidate_coverage_suggests_nothing():
    candidates = [facts("C1", layer=3, ter="0.1"), facts("C2", layer=3, status="PENDING")]

    result = _suggest(candidates, "100")

    assert coverage_complete(candidates) is False
    assert result.coverage_complete is False
    assert result.suggestions == []
    assert result.reserved_amount == Decimal("0")


def test_complete_coverage_ranks_cheaper_candidates_first():
    result = _suggest(
        [facts("C2", layer=3, ter="0.9"), facts("C1", layer=3, ter="0.1")],
        "100",
    )

    assert [item.isin for item in result.suggestions] == ["C1", "C2"]
    assert [item.amount for item in result.suggestions] == [Decimal("50"), Decimal("50")]
    assert result.reserved_amount == Decimal("100")
    assert "low ongoing costs" in result.suggestions[0].rationale
    assert result.suggestions[1].rationale == BASELINE_RATIONALE


def test_budget_limits_the_number_of_suggestions():
    result = _suggest(
        [
            facts("C1", layer=3, ter="0.1", single_stock=True),
            facts("C2", layer=3, ter="0.5"),
        ],
        "20",
    )

    assert [(item.isin, item.amount) for item in result.suggestions] == [("C2", Decimal("20"))]


def test_risky_candidates_are_not_suggested():
    result = _suggest(
        [facts("C1", layer=3, valuation={"pe_ratio": "-1"}), facts("C2", layer=3, ter="0.3")],
        "100",
    )

    assert [item.isin for item in result.suggestions] == ["C2"]
    assert result.suggestions[0].amount == Decimal("100")


def test_max_instruments_per_layer_caps_suggestions():
    result = _suggest(
        [facts("C1", layer=3, ter="0.1"), facts("C2", layer=3, ter="0.2")],
        "100",
        existing_count=16,
    )

    assert len(result.suggestions) == 1


def test_redundancy_uses_shared_benchmarks():
    candidate = facts("C1", benchmark="MSCI World")
    existing = [facts("E1", benchmark="MSCI World"), facts("E2", benchmark="S&P 500")]

    assert compute_redundancy(candidate, existing) == Decimal("0.5")
    assert compute_redundancy(candidate, []) == Decimal("0")


def test_candidates_for_layer_filters_layer_and_existing_isins():
    candidates = [
        facts("C3", layer=3),
        facts("C1", layer=3),
        facts("C2", layer=2),
        facts("E1", layer=3),
    ]

    selected = candidates_for_layer(3, candidates, {"E1"})

    assert [item.isin for item in selected] == ["C1", "C3"]
