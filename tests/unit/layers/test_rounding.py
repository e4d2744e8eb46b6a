from decimal import Decimal

import pytest

from src.core.layers import ceiling_trim, floor_distribute, round_half_up


def _decimals(values: dict) -> dict:
    return {key: Decimal(str(value)) for key, value in values.items()}


def test_round_half_up():
    assert round_half_up(Decimal("2.5")) == Decimal("3")
    assert round_half_up(Decimal("2.49")) == Decimal("2")


def test_ceiling_trim_removes_excess_from_smallest_remainders_first():
    result = ceiling_trim(_decimals({1: "700.4", 2: "199.3", 3: "80.3"}), Decimal("980"))

    assert result == _decimals({1: 701, 2: 199, 3: 80})


def test_ceiling_trim_leaves_exact_values_untouched():
    result = ceiling_trim(_decimals({1: 700, 2: 200, 3: 80, 4: 20, 5: 0}), Decimal("1000"))

    assert result == _decimals({1: 700, 2: 200, 3: 80, 4: 20, 5: 0})


def test_floor_distribute_gives_leftover_to_largest_remainder():
    result = floor_distribute(_decimals({"A": "60.2", "B": "39.8"}), Decimal("100"))

    assert result == _decimals({"A": 60, "B": 40})


def test_floor_distribute_breaks_ties_by_key_then_tie_key():
    third = Decimal("100") / Decimal("3")
    values = {"A": third, "B": third, "C": third}

    assert floor_distribute(values, Decimal("100")) == _decimals({"A": 34, "B": 33, "C": 33})
    ranked = floor_distribute(values, Decimal("100"), tie_key={"A": 2, "B": 1, "C": 3}.get)
    assert ranked == _decimals({"A": 33, "B": 34, "C": 33})


@pytest.mark.parametrize(
    ("values", "total"),
    [
        ({1: "133.298", 2: "608.264", 3: "206.750", 4: "51.688", 5: "0"}, "1000"),
        ({1: "0.7", 2: "0.2", 3: "0.08", 4: "0.02"}, "1"),
        ({1: "33.3", 2: "33.3", 3: "33.4"}, "100"),
        ({"X": "12.5", "Y": "12.5"}, "25"),
    ],
)
def test_rounding_strategies_are_sum_exact_and_stay_within_one_euro(values, total):
    desired = _decimals(values)
    for strategy in (ceiling_trim, floor_distribute):
        rounded = strategy(desired, Decimal(total))

        assert sum(rounded.values()) == round_half_up(Decimal(total))
        for key, value in rounded.items():
            assert desired[key] - 1 < value < desired[key] + 1


def test_empty_input_returns_empty_mapping():
    assert ceiling_trim({}, Decimal("10")) == {}
    assert floor_distribute({}, Decimal("10")) == {}
