"""
Kirana Costing Engine — Records
=================================
Immutable records owned by the costing engine.

RULES (NON-NEGOTIABLE):
- CostLayer: 0 <= quantity_remaining <= quantity_received; layers are
  never deleted, an exhausted layer is dormant (kept for audit).
- LedgerEntry: append-only; running_quantity = previous + delta;
  average_cost = running_value / running_quantity (0 at zero stock).
- Records are keyed by (organization_id, item_id, sequence).

Stores hand out these frozen snapshots only. Mutation happens through
the engine's operations, never by editing a record.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from core.primitives.amounts import quantize_money

# ══════════════════════════════════════════════════════════════
# ENUMS
# ══════════════════════════════════════════════════════════════


class LayerSource(Enum):
    """Why a cost layer exists."""
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"
    OPENING = "opening"


class MovementType(Enum):
    """Ledger movement types."""
    PURCHASE = "purchase"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    OPENING = "opening"


class AdjustmentReason(Enum):
    """Reason codes accepted by the adjustment flow."""
    PHYSICAL_COUNT = "physical_count"
    DAMAGE = "damage"
    THEFT = "theft"
    EXPIRY = "expiry"
    RETURN = "return"
    CORRECTION = "correction"


# ══════════════════════════════════════════════════════════════
# COST LAYER
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LayerReference:
    """Optional provenance of a layer (receipt, supplier, batch)."""
    receipt_id: Optional[str] = None
    supplier_id: Optional[str] = None
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    reference_number: Optional[str] = None

    @property
    def primary_id(self) -> Optional[str]:
        """Identifier copied onto the ledger entry's reference_id."""
        return self.receipt_id or self.reference_number or self.batch_number

    def to_dict(self) -> dict:
        return {
            "receipt_id": self.receipt_id,
            "supplier_id": self.supplier_id,
            "batch_number": self.batch_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "reference_number": self.reference_number,
        }


@dataclass(frozen=True)
class CostLayer:
    """One receipt of stock at a specific unit cost."""
    layer_id: str
    organization_id: str
    item_id: str
    sequence: int
    layer_date: date
    source: LayerSource
    quantity_received: Decimal
    quantity_remaining: Decimal
    unit_cost: Decimal
    reference: LayerReference = field(default_factory=LayerReference)
    created_at: Optional[datetime] = None

    @property
    def total_cost(self) -> Decimal:
        return quantize_money(self.quantity_received * self.unit_cost)

    @property
    def is_dormant(self) -> bool:
        return self.quantity_remaining <= 0

    @property
    def remaining_value(self) -> Decimal:
        return quantize_money(self.quantity_remaining * self.unit_cost)

    @property
    def sort_key(self) -> tuple:
        """FIFO order: layer date, then insertion sequence."""
        return (self.layer_date, self.sequence)

    def with_remaining(self, quantity_remaining: Decimal) -> "CostLayer":
        return replace(self, quantity_remaining=quantity_remaining)


# ══════════════════════════════════════════════════════════════
# LEDGER ENTRY
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LedgerEntry:
    """
    One immutable stock movement for an item.

    Fields:
        quantity_delta:   signed (+ in, - out)
        unit_cost:        cost per unit applied to this movement
        total_cost_delta: signed value change (money precision)
        running_*:        item state after this entry
    """
    entry_id: str
    organization_id: str
    item_id: str
    sequence: int
    transaction_date: date
    movement_type: MovementType
    quantity_delta: Decimal
    unit_cost: Decimal
    total_cost_delta: Decimal
    running_quantity: Decimal
    running_value: Decimal
    average_cost: Decimal
    note: str = ""
    reference_id: Optional[str] = None
    recorded_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "organization_id": self.organization_id,
            "item_id": self.item_id,
            "sequence": self.sequence,
            "transaction_date": self.transaction_date.isoformat(),
            "movement_type": self.movement_type.value,
            "quantity_delta": str(self.quantity_delta),
            "unit_cost": str(self.unit_cost),
            "total_cost_delta": str(self.total_cost_delta),
            "running_quantity": str(self.running_quantity),
            "running_value": str(self.running_value),
            "average_cost": str(self.average_cost),
            "note": self.note,
            "reference_id": self.reference_id,
        }
