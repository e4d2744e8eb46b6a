from decimal import Decimal

from src.core.layers import LayerAmounts
from src.core.layers.projection import compute_blend_factor, project_layer_targets
from src.core.profiles import resolve_profile
from tests.factories import amounts, layer_profile


def test_blend_factor_interpolates_over_the_horizon_range():
    low = Decimal("0.15")
    high = Decimal("0.45")

    assert compute_blend_factor(1, low, high) == low
    assert compute_blend_factor(120, low, high) == high
    assert compute_blend_factor(500, low, high) == high
    assert low < compute_blend_factor(12, low, high) < high


def test_projection_without_holdings_uses_target_weights(default_profile):
    result = project_layer_targets(
        holdings=LayerAmounts.zero(),
        monthly_total=Decimal("1000"),
        target_weights=default_profile.target_weights,
        profile=default_profile,
    )

    assert result.used_fallback is True
    assert result.rounded == amounts(700, 200, 80, 20, 0)
    assert result.projected_total == Decimal("12000")


def test_projection_suppresses_over_allocated_layers(default_profile):
    result = project_layer_targets(
        holdings=amounts(9000, 1000),
        monthly_total=Decimal("1000"),
        target_weights=default_profile.target_weights,
        profile=default_profile,
    )

    assert result.used_fallback is False
    assert result.projected_total == Decimal("22000")
    assert result.projected_target_totals.get(1) == Decimal("15400")
    assert result.rounded == amounts(160, 517, 258, 65, 0)
    assert result.rounded.total() == Decimal("1000")


def test_projection_blends_current_distribution_into_gap_weights(default_profile):
    result = project_layer_targets(
        holdings=amounts(7500, 1500, 800, 200),
        monthly_total=Decimal("1000"),
        target_weights=default_profile.target_weights,
        profile=default_profile,
    )

    assert result.rounded == amounts(133, 608, 207, 52, 0)
    # Layer 1 is over-allocated, so it keeps only its blended share of the current distribution.
    blended_share = Decimal("0.75") * result.blend_factor
    assert abs(result.final_weights.get(1) - blended_share) < Decimal("0.000001")


def test_longer_horizon_gives_current_distribution_more_weight():
    short = resolve_profile(layer_profile(projection_horizon_months=1))
    long = resolve_profile(layer_profile(projection_horizon_months=120))
    holdings = amounts(7500, 1500, 800, 200)

    short_result = project_layer_targets(
        holdings=holdings,
        monthly_total=Decimal("1000"),
        target_weights=short.target_weights,
        profile=short,
    )
    long_result = project_layer_targets(
        holdings=holdings,
        monthly_total=Decimal("1000"),
        target_weights=long.target_weights,
        profile=long,
    )

    assert short_result.blend_factor == Decimal("0.15")
    assert long_result.blend_factor == Decimal("0.45")
    assert short_result.rounded.total() == long_result.rounded.total() == Decimal("1000")


def test_projection_with_zero_monthly_total_returns_zero_amounts(default_profile):
    result = project_layer_targets(
        holdings=amounts(500, 500),
        monthly_total=Decimal("0"),
        target_weights=default_profile.target_weights,
        profile=default_profile,
    )

    assert result.used_fallback is True
    assert result.rounded == LayerAmounts.zero()
