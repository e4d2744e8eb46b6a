from decimal import Decimal

import pytest

from src.core.models import LayerTargetProfile, RiskThresholds
from src.core.profiles import resolve_horizon, resolve_profile, resolve_risk_thresholds
from tests.factories import amounts


def test_empty_profile_resolves_to_defaults():
    profile = resolve_profile()

    assert profile.profile_key == "BALANCED"
    assert profile.target_weights == amounts("0.70", "0.20", "0.08", "0.02", "0")
    assert profile.variance_pct == Decimal("3.0")
    assert profile.minimum_saving_plan_size == 15
    assert profile.minimum_rebalancing_amount == 10
    assert profile.minimum_instrument_amount == 25
    assert profile.horizon_months == 12
    assert profile.score_cutoff(1) == Decimal("51")
    assert profile.max_instruments_per_layer == {1: 17, 2: 17, 3: 17, 4: 17, 5: 17}
    assert profile.layer_name(3) == "Layer 3"


def test_targets_are_normalized():
    profile = resolve_profile(LayerTargetProfile(layer_targets={1: Decimal("2"), 2: Decimal("2")}))

    assert profile.target_weights == amounts("0.5", "0.5")


def test_zero_minimums_disable_gates_and_zero_variance_uses_default():
    profile = resolve_profile(
        LayerTargetProfile(
            acceptable_variance_pct=Decimal("0"),
            minimum_saving_plan_size=0,
            minimum_rebalancing_amount=-3,
        )
    )

    assert profile.variance_pct == Decimal("3.0")
    assert profile.minimum_saving_plan_size == 0
    assert profile.minimum_rebalancing_amount == 0


@pytest.mark.parametrize(("months", "expected"), [(None, 12), (0, 1), (24, 24), (500, 120)])
def test_horizon_is_clamped(months, expected):
    assert resolve_horizon(months) == expected


def test_swapped_blend_bounds_are_reordered():
    profile = resolve_profile(
        LayerTargetProfile(projection_blend_min=Decimal("0.6"), projection_blend_max=Decimal("0.2"))
    )

    assert (profile.blend_min, profile.blend_max) == (Decimal("0.2"), Decimal("0.6"))


def test_inverted_risk_thresholds_are_repaired():
    thresholds = resolve_risk_thresholds(RiskThresholds(low_max=Decimal("60"), high_min=Decimal("40")))

    assert thresholds.low_max == Decimal("60")
    assert thresholds.high_min == Decimal("60.1")


def test_per_layer_thresholds_override_the_profile_cutoff():
    profile = resolve_profile(
        LayerTargetProfile(
            risk_thresholds=RiskThresholds(high_min=Decimal("45")),
            risk_thresholds_by_layer={4: RiskThresholds(low_max=Decimal("40"), high_min=Decimal("70"))},
            layer_names={1: " Global Core ", 2: "  "},
        )
    )

    assert profile.score_cutoff(1) == Decimal("45")
    assert profile.score_cutoff(4) == Decimal("70")
    assert profile.layer_name(1) == "Global Core"
    assert profile.layer_name(2) == "Layer 2"


def test_unknown_layer_keys_are_rejected():
    with pytest.raises(ValueError, match="layer ids"):
        LayerTargetProfile(layer_targets={6: Decimal("1")})
