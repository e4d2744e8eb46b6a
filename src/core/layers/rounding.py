"""
Sum-exact integer rounding of amount buckets.

Both strategies return whole-euro buckets that add up to the half-up rounded total.
Keys are layer ids or ISINs and must be mutually comparable.
"""

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Callable, Hashable, Mapping, Optional, TypeVar

K = TypeVar("K", bound=Hashable)

_ZERO = Decimal("0")
_ONE = Decimal("1")


def round_half_up(value: Decimal) -> Decimal:
    return value.quantize(_ONE, rounding=ROUND_HALF_UP)


def _floor(value: Decimal) -> Decimal:
    return value.quantize(_ONE, rounding=ROUND_FLOOR)


def _ceil(value: Decimal) -> Decimal:
    return value.quantize(_ONE, rounding=ROUND_CEILING)


def _trim(rounded: dict[K, Decimal], order: list[K], excess: int) -> None:
    index = 0
    while excess > 0 and any(rounded[key] > _ZERO for key in order):
        key = order[index % len(order)]
        if rounded[key] > _ZERO:
            rounded[key] -= _ONE
            excess -= 1
        index += 1


def _grow(rounded: dict[K, Decimal], order: list[K], shortfall: int) -> None:
    index = 0
    while shortfall > 0:
        key = order[index % len(order)]
        rounded[key] += _ONE
        shortfall -= 1
        index += 1


def ceiling_trim(values: Mapping[K, Decimal], total: Decimal) -> dict[K, Decimal]:
    """Round every bucket up, then trim buckets with the smallest remainder first."""
    if not values:
        return {}
    target = round_half_up(total)
    desired = {key: max(value, _ZERO) for key, value in values.items()}
    rounded = {key: _ceil(value) for key, value in desired.items()}
    fractions = {key: value - _floor(value) for key, value in desired.items()}
    diff = int(sum(rounded.values(), _ZERO) - target)

    if diff > 0:
        # Buckets that were actually rounded up go first so each stays within floor..floor+1.
        order = sorted(rounded, key=lambda key: (fractions[key] == _ZERO, fractions[key], key))
        _trim(rounded, order, diff)
    elif diff < 0:
        order = sorted(rounded, key=lambda key: (-fractions[key], key))
        _grow(rounded, order, -diff)
    return rounded


def floor_distribute(
    values: Mapping[K, Decimal],
    total: Decimal,
    tie_key: Optional[Callable[[K], Any]] = None,
) -> dict[K, Decimal]:
    """Round every bucket down, then hand out the shortfall by largest remainder."""
    if not values:
        return {}
    target = round_half_up(total)
    desired = {key: max(value, _ZERO) for key, value in values.items()}
    rounded = {key: _floor(value) for key, value in desired.items()}
    fractions = {key: value - rounded[key] for key, value in desired.items()}
    steps = int(target - sum(rounded.values(), _ZERO))

    def _order_key(key: K) -> tuple:
        secondary = tie_key(key) if tie_key is not None else ()
        return (-fractions[key], secondary, key)

    if steps > 0:
        _grow(rounded, sorted(rounded, key=_order_key), steps)
    elif steps < 0:
        order = sorted(rounded, key=lambda key: (fractions[key], key))
        _trim(rounded, order, -steps)
    return rounded
