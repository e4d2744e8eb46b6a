from src.core.layers.amounts import (
    LayerAmounts,
    deviations,
    distribution,
    normalize_layer,
    normalize_weights,
    within_tolerance,
)
from src.core.layers.rounding import ceiling_trim, floor_distribute, round_half_up

__all__ = [
    "LayerAmounts",
    "ceiling_trim",
    "deviations",
    "distribution",
    "floor_distribute",
    "normalize_layer",
    "normalize_weights",
    "round_half_up",
    "within_tolerance",
]
