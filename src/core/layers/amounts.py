"""
Fixed five-slot layer amount container and the distribution math built on it.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator, Mapping, Optional

from src.core.models import LAYER_IDS, normalize_layer

_ZERO = Decimal("0")
_WEIGHT_SCALE = Decimal("0.000001")
DEFAULT_VARIANCE_PCT = Decimal("3.0")


@dataclass(frozen=True)
class LayerAmounts:
    slots: tuple[Decimal, Decimal, Decimal, Decimal, Decimal]

    def __post_init__(self) -> None:
        if len(self.slots) != len(LAYER_IDS):
            raise ValueError("LayerAmounts requires exactly five slots")

    @classmethod
    def zero(cls) -> "LayerAmounts":
        return cls(slots=(_ZERO, _ZERO, _ZERO, _ZERO, _ZERO))

    @classmethod
    def of(cls, values: Mapping[int, Decimal]) -> "LayerAmounts":
        slots = [_ZERO] * len(LAYER_IDS)
        for layer, value in values.items():
            index = normalize_layer(layer) - 1
            slots[index] += Decimal(value)
        return cls(slots=tuple(slots))

    def get(self, layer: int) -> Decimal:
        return self.slots[layer - 1]

    def with_amount(self, layer: int, value: Decimal) -> "LayerAmounts":
        slots = list(self.slots)
        slots[layer - 1] = value
        return LayerAmounts(slots=tuple(slots))

    def adding(self, layer: int, value: Decimal) -> "LayerAmounts":
        return self.with_amount(layer, self.get(layer) + value)

    def total(self) -> Decimal:
        return sum(self.slots, _ZERO)

    def plus(self, other: "LayerAmounts") -> "LayerAmounts":
        return LayerAmounts(slots=tuple(a + b for a, b in zip(self.slots, other.slots)))

    def minus(self, other: "LayerAmounts") -> "LayerAmounts":
        return LayerAmounts(slots=tuple(a - b for a, b in zip(self.slots, other.slots)))

    def scaled(self, factor: Decimal) -> "LayerAmounts":
        return LayerAmounts(slots=tuple(value * factor for value in self.slots))

    def items(self) -> Iterator[tuple[int, Decimal]]:
        return zip(LAYER_IDS, self.slots)

    def as_dict(self) -> dict[int, Decimal]:
        return dict(self.items())

    def nonzero_layers(self) -> list[int]:
        return [layer for layer, value in self.items() if value != _ZERO]


def distribution(amounts: LayerAmounts, total: Decimal) -> LayerAmounts:
    if total <= _ZERO:
        return LayerAmounts.zero()
    return LayerAmounts(
        slots=tuple(
            (value / total).quantize(_WEIGHT_SCALE, rounding=ROUND_HALF_UP) for value in amounts.slots
        )
    )


def deviations(actual: LayerAmounts, target: LayerAmounts) -> LayerAmounts:
    return LayerAmounts(slots=tuple(abs(a - t) for a, t in zip(actual.slots, target.slots)))


def within_tolerance(
    actual: LayerAmounts, target: LayerAmounts, variance_pct: Optional[Decimal] = None
) -> bool:
    if variance_pct is None or variance_pct <= _ZERO:
        variance_pct = DEFAULT_VARIANCE_PCT
    tolerance = (variance_pct / Decimal("100")).quantize(_WEIGHT_SCALE, rounding=ROUND_HALF_UP)
    return all(deviation <= tolerance for deviation in deviations(actual, target).slots)


def normalize_weights(weights: LayerAmounts, scale: int = 6) -> LayerAmounts:
    total = weights.total()
    if total <= _ZERO or total == Decimal("1"):
        return weights
    quantum = Decimal(1).scaleb(-scale)
    return LayerAmounts(
        slots=tuple((value / total).quantize(quantum, rounding=ROUND_HALF_UP) for value in weights.slots)
    )
