"""
Normalized valuation attractiveness score in 0..1 used to tilt instrument weights.
"""

from decimal import Decimal
from typing import Optional

from src.core.models import InstrumentFacts, ValuationFacts

_ZERO = Decimal("0")
_ONE = Decimal("1")

EARNINGS_YIELD_CAP = Decimal("0.20")
EV_TO_EBITDA_TARGET = Decimal("12")
DIVIDEND_YIELD_CAP = Decimal("0.08")
PRICE_TO_BOOK_TARGET = Decimal("2")

_ETF_WEIGHTS = {
    "holdings_yield": Decimal("0.65"),
    "current_yield": Decimal("0.20"),
    "price_to_book": Decimal("0.10"),
    "dividend": Decimal("0.05"),
}
_STOCK_WEIGHTS = {
    "longterm_yield": Decimal("0.50"),
    "current_yield": Decimal("0.20"),
    "ev_to_ebitda": Decimal("0.20"),
    "dividend": Decimal("0.05"),
    "price_to_book": Decimal("0.05"),
}


def _capped_ratio(value: Optional[Decimal], cap: Decimal) -> Decimal:
    if value is None or value <= _ZERO:
        return _ZERO
    return min(value / cap, _ONE)


def _inverse_ratio(value: Optional[Decimal], target: Decimal) -> Decimal:
    if value is None or value <= _ZERO:
        return _ZERO
    return min(target / value, _ONE)


def _sub_scores(valuation: ValuationFacts) -> dict[str, Decimal]:
    return {
        "holdings_yield": _capped_ratio(valuation.holdings_earnings_yield, EARNINGS_YIELD_CAP),
        "longterm_yield": _capped_ratio(valuation.longterm_earnings_yield, EARNINGS_YIELD_CAP),
        "current_yield": _capped_ratio(valuation.earnings_yield, EARNINGS_YIELD_CAP),
        "ev_to_ebitda": _inverse_ratio(valuation.ev_to_ebitda, EV_TO_EBITDA_TARGET),
        "dividend": _capped_ratio(valuation.dividend_yield, DIVIDEND_YIELD_CAP),
        "price_to_book": _inverse_ratio(valuation.price_to_book, PRICE_TO_BOOK_TARGET),
    }


def is_etf(facts: InstrumentFacts) -> bool:
    return (facts.instrument_type or "").strip().upper() == "ETF"


def compute_valuation_score(facts: Optional[InstrumentFacts]) -> Optional[Decimal]:
    """Weighted average of the available positive sub-scores; None when none is available."""
    if facts is None or facts.valuation is None:
        return None
    weights = _ETF_WEIGHTS if is_etf(facts) else _STOCK_WEIGHTS
    scores = _sub_scores(facts.valuation)
    weighted_sum = _ZERO
    weight_sum = _ZERO
    for key, weight in weights.items():
        score = scores[key]
        if score > _ZERO:
            weighted_sum += score * weight
            weight_sum += weight
    if weight_sum <= _ZERO:
        return None
    return weighted_sum / weight_sum
