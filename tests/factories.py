from decimal import Decimal
from typing import Iterable, Optional

from src.core.layers import LayerAmounts
from src.core.models import (
    ContributionItem,
    HoldingsSnapshot,
    InstrumentFacts,
    LayerTargetProfile,
    RebalanceRequest,
    RegionExposure,
    TopHolding,
    ValuationFacts,
)

BALANCED_TARGETS = {1: "0.70", 2: "0.20", 3: "0.08", 4: "0.02", 5: "0"}


def amounts(*values) -> LayerAmounts:
    padded = list(values) + [0] * (5 - len(values))
    return LayerAmounts(slots=tuple(Decimal(str(value)) for value in padded))


def layer_profile(**overrides) -> LayerTargetProfile:
    data = {"layer_targets": {layer: Decimal(weight) for layer, weight in BALANCED_TARGETS.items()}}
    data.update(overrides)
    return LayerTargetProfile(**data)


def contribution(
    isin: str,
    amount: str,
    layer: Optional[int] = 1,
    *,
    depot_id: str = "default",
    name: Optional[str] = None,
) -> ContributionItem:
    return ContributionItem(
        isin=isin,
        depot_id=depot_id,
        name=name,
        monthly_amount=Decimal(amount),
        layer=layer,
    )


def facts(
    isin: str,
    *,
    layer: Optional[int] = None,
    ter: Optional[str] = None,
    risk: Optional[int] = None,
    benchmark: Optional[str] = None,
    regions: Optional[dict[str, str]] = None,
    holdings: Optional[dict[str, str]] = None,
    valuation: Optional[dict[str, str]] = None,
    status: str = "COMPLETE",
    single_stock: bool = False,
    instrument_type: Optional[str] = None,
) -> InstrumentFacts:
    return InstrumentFacts(
        isin=isin,
        name=f"Instrument {isin}",
        layer=layer,
        instrument_type=instrument_type,
        single_stock=single_stock,
        status=status,
        ongoing_charges_pct=Decimal(ter) if ter is not None else None,
        risk_indicator=risk,
        benchmark=benchmark,
        regions=[
            RegionExposure(region=region, weight=Decimal(weight))
            for region, weight in (regions or {}).items()
        ],
        top_holdings=[
            TopHolding(name=name, weight=Decimal(weight)) for name, weight in (holdings or {}).items()
        ],
        valuation=(
            ValuationFacts(**{key: Decimal(value) for key, value in valuation.items()})
            if valuation is not None
            else None
        ),
    )


def rebalance_request(
    *,
    contributions: Iterable[ContributionItem],
    holdings: Optional[dict[int, str]] = None,
    profile: Optional[LayerTargetProfile] = None,
    instrument_facts: Iterable[InstrumentFacts] = (),
    candidate_instruments: Iterable[InstrumentFacts] = (),
    knowledge_base_enabled: Optional[bool] = None,
    saving_plan_delta: Optional[str] = None,
    one_time_amount: Optional[str] = None,
) -> RebalanceRequest:
    return RebalanceRequest(
        holdings=HoldingsSnapshot(
            amounts_by_layer={layer: Decimal(value) for layer, value in (holdings or {}).items()}
        ),
        contributions=list(contributions),
        profile=profile or layer_profile(),
        instrument_facts=list(instrument_facts),
        candidate_instruments=list(candidate_instruments),
        knowledge_base_enabled=knowledge_base_enabled,
        saving_plan_delta=Decimal(saving_plan_delta) if saving_plan_delta is not None else None,
        one_time_amount=Decimal(one_time_amount) if one_time_amount is not None else None,
    )


def valid_api_payload() -> dict:
    return {
        "holdings": {"amounts_by_layer": {"1": "7500", "2": "1500", "3": "800", "4": "200"}},
        "contributions": [
            {"isin": "IE00B4L5Y983", "monthly_amount": "750", "layer": 1},
            {"isin": "IE00BKM4GZ66", "monthly_amount": "150", "layer": 2},
            {"isin": "DE0005190003", "monthly_amount": "80", "layer": 3},
            {"isin": "US0378331005", "monthly_amount": "20", "layer": 4},
        ],
        "profile": {
            "profile_key": "BALANCED",
            "layer_targets": {"1": "0.70", "2": "0.20", "3": "0.08", "4": "0.02", "5": "0"},
        },
        "instrument_facts": [
            {"isin": "IE00B4L5Y983", "ongoing_charges_pct": "0.20", "risk_indicator": 4},
            {"isin": "IE00BKM4GZ66", "ongoing_charges_pct": "0.18", "risk_indicator": 4},
            {"isin": "DE0005190003", "ongoing_charges_pct": "0.60", "risk_indicator": 5},
            {"isin": "US0378331005", "risk_indicator": 5},
        ],
    }
