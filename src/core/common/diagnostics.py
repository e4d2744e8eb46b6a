"""
Shared diagnostics builders and note formatting for engine pipelines.
"""

from decimal import Decimal
from typing import Iterable

from src.core.models import DiagnosticsData


def make_diagnostics_data() -> DiagnosticsData:
    return DiagnosticsData(
        within_tolerance=False,
        suppressed_delta_count=0,
        suppressed_amount_total=Decimal("0"),
        redistribution_notes=[],
        residual_unresolved=Decimal("0"),
        warnings=[],
    )


def format_eur(value: Decimal) -> str:
    normalized = value.normalize()
    if normalized == normalized.to_integral():
        return str(normalized.quantize(Decimal("1")))
    return format(normalized, "f")


def format_layers(layers: Iterable[int]) -> str:
    return "[" + ", ".join(str(layer) for layer in layers) + "]"
