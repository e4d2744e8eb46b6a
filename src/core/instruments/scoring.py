"""
Additive risk and cost scoring of instruments from knowledge-base facts.

A score is an integer in 0..100. Higher means riskier or more expensive. Instruments at or above a
layer's high-risk cutoff are not eligible for new money.
"""

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional

from src.core.models import InstrumentFacts, InstrumentScore, ScoreComponent, ValuationFacts

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
_POINTS = Decimal("0.01")

VALUATION_CAP = Decimal("35")
DATA_QUALITY_CAP = Decimal("20")
SINGLE_STOCK_PREMIUM = Decimal("15")

CRITERION_TER = "TER"
CRITERION_RISK = "Risk indicator"
CRITERION_PE = "P/E"
CRITERION_EV_EBITDA = "EV/EBITDA"
CRITERION_PB = "P/B"
CRITERION_EARNINGS_YIELD = "Earnings yield"
CRITERION_TOP_HOLDINGS = "Top holdings concentration"
CRITERION_REGIONS = "Region concentration"
CRITERION_DATA_QUALITY = "Data quality"
CRITERION_SINGLE_STOCK = "Single-stock risk premium"
CRITERION_MISSING_DATA = "Missing knowledge-base data"
CRITERION_BAD_FINANCIALS_FLOOR = "Bad financials floor"


def _ceil(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_CEILING)


def cost_penalty(ongoing_charges_pct: Optional[Decimal]) -> Optional[Decimal]:
    if ongoing_charges_pct is None:
        return None
    if ongoing_charges_pct <= Decimal("0.2"):
        return Decimal("0")
    if ongoing_charges_pct <= Decimal("0.5"):
        return Decimal("10")
    if ongoing_charges_pct <= Decimal("1.0"):
        return Decimal("20")
    return Decimal("30")


def risk_penalty(risk_indicator: Optional[int]) -> Optional[Decimal]:
    if risk_indicator is None:
        return None
    if risk_indicator <= 3:
        return Decimal("0")
    return Decimal((risk_indicator - 3) * 8)


def _pe_penalty(valuation: ValuationFacts) -> Decimal:
    pe = valuation.pe_ratio
    if pe is None or pe <= _ZERO:
        return _ZERO
    if pe > Decimal("60"):
        penalty = Decimal("30")
    elif pe > Decimal("40"):
        penalty = Decimal("20")
    elif pe > Decimal("30"):
        penalty = Decimal("10")
    else:
        return _ZERO
    peg = valuation.peg_ratio
    if peg is not None and peg > _ZERO:
        if peg <= Decimal("1"):
            penalty *= Decimal("0.25")
        elif peg <= Decimal("1.5"):
            penalty *= Decimal("0.5")
        elif peg <= Decimal("2"):
            penalty *= Decimal("0.75")
    return penalty


def _ev_penalty(valuation: ValuationFacts) -> Decimal:
    ev = valuation.ev_to_ebitda
    if ev is None or ev <= _ZERO:
        return _ZERO
    if ev > Decimal("30"):
        return Decimal("25")
    if ev > Decimal("20"):
        return Decimal("15")
    return _ZERO


def _pb_penalty(valuation: ValuationFacts) -> Decimal:
    pb = valuation.price_to_book
    if pb is None or pb <= _ZERO:
        return _ZERO
    if pb > Decimal("8"):
        return Decimal("20")
    if pb > Decimal("4"):
        return Decimal("10")
    return _ZERO


def _earnings_yield_penalty(valuation: ValuationFacts) -> Decimal:
    ey = valuation.earnings_yield
    if ey is None or ey <= _ZERO:
        return _ZERO
    if ey < Decimal("0.02"):
        return Decimal("20")
    if ey < Decimal("0.03"):
        return Decimal("10")
    return _ZERO


def valuation_penalties(valuation: Optional[ValuationFacts]) -> list[tuple[str, Decimal]]:
    """Bucketed valuation sub-penalties, scaled down together when they exceed the cap."""
    if valuation is None:
        return []
    raw = [
        (CRITERION_PE, _pe_penalty(valuation)),
        (CRITERION_EV_EBITDA, _ev_penalty(valuation)),
        (CRITERION_PB, _pb_penalty(valuation)),
        (CRITERION_EARNINGS_YIELD, _earnings_yield_penalty(valuation)),
    ]
    raw = [(criterion, points) for criterion, points in raw if points > _ZERO]
    total = sum((points for _, points in raw), _ZERO)
    if total > VALUATION_CAP:
        scale = VALUATION_CAP / total
        raw = [(criterion, points * scale) for criterion, points in raw]
    return raw


def concentration_penalties(facts: InstrumentFacts) -> list[tuple[str, Decimal]]:
    penalties: list[tuple[str, Decimal]] = []
    if facts.top_holdings:
        weights = sorted((holding.weight for holding in facts.top_holdings), reverse=True)
        top1 = weights[0]
        top3 = sum(weights[:3], _ZERO)
        points = _ZERO
        if top1 >= Decimal("0.15"):
            points += Decimal("15")
        elif top1 >= Decimal("0.10"):
            points += Decimal("10")
        if top3 >= Decimal("0.35"):
            points += Decimal("15")
        elif top3 >= Decimal("0.25"):
            points += Decimal("10")
        if points > _ZERO:
            penalties.append((CRITERION_TOP_HOLDINGS, points))
    if facts.regions:
        max_region = max(region.weight for region in facts.regions)
        if max_region >= Decimal("0.75"):
            penalties.append((CRITERION_REGIONS, Decimal("15")))
        elif max_region >= Decimal("0.60"):
            penalties.append((CRITERION_REGIONS, Decimal("10")))
    return penalties


def data_quality_penalty(missing_fields: int, warnings: int) -> Decimal:
    return min(DATA_QUALITY_CAP, Decimal(missing_fields * 3 + warnings * 5))


def has_bad_financials(facts: InstrumentFacts) -> bool:
    valuation = facts.valuation
    if valuation is None:
        return False
    checks = (
        valuation.ebitda_eur is not None and valuation.ebitda_eur < _ZERO,
        valuation.pe_ratio is not None and valuation.pe_ratio <= _ZERO,
        valuation.earnings_yield is not None and valuation.earnings_yield <= _ZERO,
        valuation.net_income_eur is not None and valuation.net_income_eur < _ZERO,
        valuation.revenue_eur is not None and valuation.revenue_eur < _ZERO,
    )
    return any(checks)


def _component(criterion: str, points: Decimal) -> ScoreComponent:
    return ScoreComponent(criterion=criterion, points=points.quantize(_POINTS, rounding=ROUND_HALF_UP))


def score_instrument(
    facts: Optional[InstrumentFacts],
    *,
    score_cutoff: Decimal,
    isin: Optional[str] = None,
) -> InstrumentScore:
    if facts is None:
        floor = min(_HUNDRED, _ceil(score_cutoff))
        return InstrumentScore(
            isin=isin or "",
            score=int(floor),
            bad_financials=True,
            components=[_component(CRITERION_MISSING_DATA, floor)],
        )

    raw: list[tuple[str, Decimal]] = []
    cost = cost_penalty(facts.ongoing_charges_pct)
    if cost is not None and cost > _ZERO:
        raw.append((CRITERION_TER, cost))
    risk = risk_penalty(facts.risk_indicator)
    if risk is not None and risk > _ZERO:
        raw.append((CRITERION_RISK, risk))
    raw.extend(valuation_penalties(facts.valuation))
    raw.extend(concentration_penalties(facts))
    data_quality = data_quality_penalty(facts.missing_field_count, facts.warning_count)
    if data_quality > _ZERO:
        raw.append((CRITERION_DATA_QUALITY, data_quality))
    if facts.single_stock:
        raw.append((CRITERION_SINGLE_STOCK, SINGLE_STOCK_PREMIUM))

    total = sum((points for _, points in raw), _ZERO)
    if total > _HUNDRED:
        scale = _HUNDRED / total
        raw = [(criterion, points * scale) for criterion, points in raw]
        total = sum((points for _, points in raw), _ZERO)

    score = int(max(_ZERO, min(_HUNDRED, total.quantize(Decimal("1"), rounding=ROUND_HALF_UP))))
    components = [_component(criterion, points) for criterion, points in raw]

    bad_financials = has_bad_financials(facts)
    if bad_financials and Decimal(score) < score_cutoff:
        floor = min(_HUNDRED, _ceil(score_cutoff))
        components.append(_component(CRITERION_BAD_FINANCIALS_FLOOR, floor - Decimal(score)))
        score = int(floor)

    return InstrumentScore(
        isin=isin or facts.isin,
        score=score,
        bad_financials=bad_financials,
        components=components,
    )


def score_instruments(
    isins: Iterable[str],
    facts_by_isin: Mapping[str, InstrumentFacts],
    cutoff_by_isin: Mapping[str, Decimal],
) -> dict[str, InstrumentScore]:
    return {
        isin: score_instrument(facts_by_isin.get(isin), score_cutoff=cutoff_by_isin[isin], isin=isin)
        for isin in isins
    }
