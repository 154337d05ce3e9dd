"""
Kirana Amount Primitives — Quantities, Unit Costs, Money
==========================================================
Decimal coercion and quantisation shared by the costing engine,
the valuation read side and the tax engine.

RULES (NON-NEGOTIABLE):
- No float arithmetic on stored values; floats are converted via str()
- Quantities:  4 decimal places (fractional units such as kg)
- Unit costs:  4 decimal places
- Money:       2 decimal places (paise)
- Rounding is ROUND_HALF_UP everywhere (half away from zero)
- Inputs are bounded below 10^14 in magnitude, the integer digits a
  DecimalField(max_digits=18, decimal_places=4) column can hold

This file contains NO business logic.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

Number = Union[int, str, float, Decimal]

QUANTITY_PLACES = Decimal("0.0001")
UNIT_COST_PLACES = Decimal("0.0001")
MONEY_PLACES = Decimal("0.01")
WHOLE_UNIT = Decimal("1")
MAX_MAGNITUDE = Decimal("1e14")

ZERO = Decimal("0")


def to_decimal(
    value: Number,
    *,
    field_name: str = "value",
    limit: Optional[Decimal] = MAX_MAGNITUDE,
) -> Decimal:
    """
    Convert int / str / float / Decimal into a finite Decimal.

    Raises ValueError for bools, None, NaN, infinities, unparsable text
    and values whose magnitude reaches `limit` (None disables the bound).
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field_name} must be a number, got {value!r}.")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"{field_name} must be a number, got {value!r}.") from exc
    if not result.is_finite():
        raise ValueError(f"{field_name} must be finite, got {value!r}.")
    if limit is not None and abs(result) >= limit:
        raise ValueError(f"{field_name} is out of range, got {value!r}.")
    return result


def _quantize(value: Decimal, places: Decimal) -> Decimal:
    try:
        return value.quantize(places, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"{value!r} does not fit at {places} precision.") from exc


def quantize_quantity(value: Decimal) -> Decimal:
    return _quantize(value, QUANTITY_PLACES)


def quantize_unit_cost(value: Decimal) -> Decimal:
    return _quantize(value, UNIT_COST_PLACES)


def quantize_money(value: Decimal) -> Decimal:
    return _quantize(value, MONEY_PLACES)


def round_half_away(value: Decimal) -> Decimal:
    """Round to the nearest whole currency unit, halves away from zero."""
    return _quantize(value, WHOLE_UNIT)


def safe_average(value: Decimal, quantity: Decimal) -> Decimal:
    """value / quantity at unit-cost precision; 0 when quantity is 0."""
    if quantity == 0:
        return quantize_unit_cost(ZERO)
    return quantize_unit_cost(value / quantity)
