"""
Kirana Tax Engine — GST Split
===============================
Jurisdiction-aware GST computation with deterministic rounding.

RULES (NON-NEGOTIABLE):
- Intra-state (buyer missing/blank or same as seller after trimming):
    CGST = SGST = round2(subtotal × rate / 100 / 2), IGST = 0
- Inter-state:
    IGST = round2(subtotal × rate / 100), CGST = SGST = 0
- total_tax = CGST + SGST + IGST; grand_total = subtotal + total_tax
- Whole-unit round-off is half away from zero, symmetric for refunds;
  the difference is always returned explicitly
- Pure functions only: no state, no clock, no store
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Tuple, Union

from core.primitives.amounts import (
    ZERO,
    Number,
    quantize_money,
    quantize_quantity,
    round_half_away,
    to_decimal,
)

HUNDRED = Decimal("100")
TWO = Decimal("2")


class InvalidTaxInput(ValueError):
    """Negative amounts or rates, or a missing seller jurisdiction."""

    code = "INVALID_TAX_INPUT"

    def __init__(self, field_name: str, value, detail: str):
        self.field_name = field_name
        self.value = value
        super().__init__(f"{field_name} {value!r} {detail}.")

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": str(self),
            "field": self.field_name,
            "value": str(self.value),
        }


# ══════════════════════════════════════════════════════════════
# RESULTS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RoundOff:
    rounded: Decimal
    diff: Decimal   # rounded - amount, exact

    def to_dict(self) -> dict:
        return {"rounded": str(self.rounded), "diff": str(self.diff)}


@dataclass(frozen=True)
class TaxSplit:
    subtotal: Decimal
    rate: Decimal
    seller_jurisdiction: str
    buyer_jurisdiction: Optional[str]
    is_interstate: bool
    cgst_rate: Decimal
    sgst_rate: Decimal
    igst_rate: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    total_tax: Decimal
    grand_total: Decimal
    rounded_total: Decimal
    round_off: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "rate": str(self.rate),
            "seller_jurisdiction": self.seller_jurisdiction,
            "buyer_jurisdiction": self.buyer_jurisdiction,
            "is_interstate": self.is_interstate,
            "cgst_rate": str(self.cgst_rate),
            "sgst_rate": str(self.sgst_rate),
            "igst_rate": str(self.igst_rate),
            "cgst": str(self.cgst),
            "sgst": str(self.sgst),
            "igst": str(self.igst),
            "total_tax": str(self.total_tax),
            "grand_total": str(self.grand_total),
            "rounded_total": str(self.rounded_total),
            "round_off": str(self.round_off),
        }


@dataclass(frozen=True)
class InvoiceLine:
    """One bill line before discount and tax."""
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    item_id: Optional[str] = None

    @property
    def gross(self) -> Decimal:
        return quantize_money(self.quantity * self.unit_price)


@dataclass(frozen=True)
class InvoiceLineTax:
    line: InvoiceLine
    discount: Decimal
    split: TaxSplit


@dataclass(frozen=True)
class InvoiceTax:
    lines: Tuple[InvoiceLineTax, ...]
    discount_percent: Decimal
    gross_total: Decimal
    discount_total: Decimal
    subtotal: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    total_tax: Decimal
    grand_total: Decimal
    rounded_total: Decimal
    round_off: Decimal

    @property
    def is_interstate(self) -> bool:
        return any(line.split.is_interstate for line in self.lines)

    def tax_by_rate(self) -> dict:
        """rate → total tax at that rate (the HSN-style summary on a bill)."""
        summary: dict = {}
        for line in self.lines:
            rate = line.split.rate
            summary[rate] = summary.get(rate, ZERO) + line.split.total_tax
        return summary

    def to_dict(self) -> dict:
        return {
            "discount_percent": str(self.discount_percent),
            "gross_total": str(self.gross_total),
            "discount_total": str(self.discount_total),
            "subtotal": str(self.subtotal),
            "cgst": str(self.cgst),
            "sgst": str(self.sgst),
            "igst": str(self.igst),
            "total_tax": str(self.total_tax),
            "grand_total": str(self.grand_total),
            "rounded_total": str(self.rounded_total),
            "round_off": str(self.round_off),
            "lines": [
                {
                    "item_id": line.line.item_id,
                    "gross": str(line.line.gross),
                    "discount": str(line.discount),
                    **line.split.to_dict(),
                }
                for line in self.lines
            ],
        }


# ══════════════════════════════════════════════════════════════
# HELPERS
# ══════════════════════════════════════════════════════════════

def _non_negative(value: Number, field_name: str) -> Decimal:
    try:
        amount = to_decimal(value, field_name=field_name)
    except ValueError:
        raise InvalidTaxInput(field_name, value, "is not a number in range") from None
    if amount < 0:
        raise InvalidTaxInput(field_name, value, "cannot be negative")
    return amount


def _jurisdiction(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip() or None


def _percent(value: Number, field_name: str) -> Decimal:
    pct = _non_negative(value, field_name)
    if pct > HUNDRED:
        raise InvalidTaxInput(field_name, value, "cannot exceed 100")
    return pct


# ══════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════

def round_total(amount: Number) -> RoundOff:
    """Round to a whole currency unit, halves away from zero."""
    try:
        exact = to_decimal(amount, field_name="amount", limit=None)
        rounded = round_half_away(exact)
    except ValueError:
        raise InvalidTaxInput("amount", amount, "is not a number in range") from None
    return RoundOff(rounded=rounded, diff=rounded - exact)


def compute_tax(
    subtotal: Number,
    rate: Number,
    seller_jurisdiction: str,
    buyer_jurisdiction: Optional[str] = None,
) -> TaxSplit:
    """
    Split GST on `subtotal` at `rate` percent.

    Blank or missing buyer jurisdiction means an intra-state sale.
    """
    base = quantize_money(_non_negative(subtotal, "subtotal"))
    pct = _non_negative(rate, "rate")
    seller = _jurisdiction(seller_jurisdiction)
    if seller is None:
        raise InvalidTaxInput("seller_jurisdiction", seller_jurisdiction, "is required")
    buyer = _jurisdiction(buyer_jurisdiction)

    interstate = buyer is not None and buyer != seller
    if interstate:
        cgst = sgst = quantize_money(ZERO)
        igst = quantize_money(base * pct / HUNDRED)
        cgst_rate = sgst_rate = ZERO
        igst_rate = pct
    else:
        cgst = sgst = quantize_money(base * pct / HUNDRED / TWO)
        igst = quantize_money(ZERO)
        cgst_rate = sgst_rate = pct / TWO
        igst_rate = ZERO

    total_tax = cgst + sgst + igst
    grand_total = base + total_tax
    round_off = round_total(grand_total)
    return TaxSplit(
        subtotal=base,
        rate=pct,
        seller_jurisdiction=seller,
        buyer_jurisdiction=buyer,
        is_interstate=interstate,
        cgst_rate=cgst_rate,
        sgst_rate=sgst_rate,
        igst_rate=igst_rate,
        cgst=cgst,
        sgst=sgst,
        igst=igst,
        total_tax=total_tax,
        grand_total=grand_total,
        rounded_total=round_off.rounded,
        round_off=round_off.diff,
    )


LineInput = Union[InvoiceLine, Mapping[str, object]]


def _as_line(raw: LineInput) -> InvoiceLine:
    if isinstance(raw, InvoiceLine):
        return raw
    quantity = _non_negative(raw.get("quantity", 1), "quantity")
    return InvoiceLine(
        quantity=quantize_quantity(quantity),
        unit_price=_non_negative(raw["unit_price"], "unit_price"),
        tax_rate=_non_negative(raw.get("tax_rate", 0), "tax_rate"),
        item_id=raw.get("item_id"),
    )


def compute_invoice_tax(
    lines: Iterable[LineInput],
    discount_percent: Number = 0,
    seller_jurisdiction: str = "",
    buyer_jurisdiction: Optional[str] = None,
) -> InvoiceTax:
    """
    Tax a multi-rate bill.

    The invoice-level discount is prorated: every line is discounted by
    the same percentage, then taxed at its own rate.
    """
    pct = _percent(discount_percent, "discount_percent")
    taxed: List[InvoiceLineTax] = []
    for raw in lines:
        line = _as_line(raw)
        try:
            gross = line.gross
        except ValueError:
            raise InvalidTaxInput(
                "unit_price", line.unit_price, "gives a line amount out of range",
            ) from None
        discount = quantize_money(gross * pct / HUNDRED)
        split = compute_tax(
            gross - discount, line.tax_rate, seller_jurisdiction, buyer_jurisdiction,
        )
        taxed.append(InvoiceLineTax(line=line, discount=discount, split=split))

    def total(values) -> Decimal:
        return sum(values, quantize_money(ZERO))

    subtotal = total(t.split.subtotal for t in taxed)
    cgst = total(t.split.cgst for t in taxed)
    sgst = total(t.split.sgst for t in taxed)
    igst = total(t.split.igst for t in taxed)
    total_tax = cgst + sgst + igst
    grand_total = subtotal + total_tax
    round_off = round_total(grand_total)
    return InvoiceTax(
        lines=tuple(taxed),
        discount_percent=pct,
        gross_total=total(t.line.gross for t in taxed),
        discount_total=total(t.discount for t in taxed),
        subtotal=subtotal,
        cgst=cgst,
        sgst=sgst,
        igst=igst,
        total_tax=total_tax,
        grand_total=grand_total,
        rounded_total=round_off.rounded,
        round_off=round_off.diff,
    )
