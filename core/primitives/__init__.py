"""
Kirana Core Primitives — Amounts
==================================
Engine-agnostic numeric building blocks:

- Pure Python (no Django dependency)
- Decimal only; floats enter through str()
- Deterministic (same input → same output)

Primitives:
    amounts     — quantity / unit-cost / money quantisation and rounding
"""

from core.primitives.amounts import (
    MONEY_PLACES,
    QUANTITY_PLACES,
    UNIT_COST_PLACES,
    MAX_MAGNITUDE,
    ZERO,
    quantize_money,
    quantize_quantity,
    quantize_unit_cost,
    round_half_away,
    safe_average,
    to_decimal,
)

__all__ = [
    "MAX_MAGNITUDE",
    "MONEY_PLACES",
    "QUANTITY_PLACES",
    "UNIT_COST_PLACES",
    "ZERO",
    "quantize_money",
    "quantize_quantity",
    "quantize_unit_cost",
    "round_half_away",
    "safe_average",
    "to_decimal",
]
