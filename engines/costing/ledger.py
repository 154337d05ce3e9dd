"""
Kirana Costing Engine — Transaction Ledger
============================================
Append-only stock movement log with running totals per item.

RULES (NON-NEGOTIABLE):
- Running totals are computed from the item's latest entry only
  (zero state when the item has no entries)
- running_quantity may never drop below zero → NegativeStock
- Transaction dates never go backwards within an item → OutOfOrderEntry
- Entries are never edited or deleted; corrections are new
  ADJUSTMENT entries
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from core.primitives.amounts import (
    ZERO,
    Number,
    quantize_money,
    quantize_quantity,
    quantize_unit_cost,
    safe_average,
    to_decimal,
)
from engines.costing.errors import InvalidCost, InvalidQuantity, NegativeStock, OutOfOrderEntry
from engines.costing.records import LedgerEntry, MovementType
from engines.costing.store import CostingStore

logger = logging.getLogger("kirana.ledger")


@dataclass(frozen=True)
class RunningState:
    """Item state after some ledger entry (zero state if none)."""
    quantity: Decimal = ZERO
    value: Decimal = ZERO
    average_cost: Decimal = ZERO
    last_date: Optional[date] = None

    @classmethod
    def of(cls, entry: Optional[LedgerEntry]) -> "RunningState":
        if entry is None:
            return cls()
        return cls(
            quantity=entry.running_quantity,
            value=entry.running_value,
            average_cost=entry.average_cost,
            last_date=entry.transaction_date,
        )


def _check_order(item_id: str, transaction_date: date, state: RunningState) -> None:
    if state.last_date is not None and transaction_date < state.last_date:
        raise OutOfOrderEntry(item_id, transaction_date, state.last_date)


class TransactionLedger:
    """
    Ledger facade over a CostingStore.

    append() must be called inside the item's critical section; reads
    may be called from anywhere.
    """

    def __init__(self, store: CostingStore):
        self._store = store

    def append(
        self,
        organization_id: str,
        item_id: str,
        movement_type: MovementType,
        quantity_delta: Number,
        unit_cost: Number,
        *,
        transaction_date: date,
        total_cost_delta: Optional[Number] = None,
        reference_id: Optional[str] = None,
        note: str = "",
        recorded_at: Optional[datetime] = None,
    ) -> LedgerEntry:
        """
        Append one movement and return the stored entry.

        A zero quantity_delta is accepted only for an ADJUSTMENT that
        carries a non-zero total_cost_delta (a value-only revaluation).
        """
        if not isinstance(movement_type, MovementType):
            raise ValueError(f"movement_type must be MovementType, got {movement_type!r}.")
        try:
            delta = quantize_quantity(to_decimal(quantity_delta, field_name="quantity_delta"))
        except ValueError:
            raise InvalidQuantity(quantity_delta, "is not a number in range") from None
        revaluation = movement_type is MovementType.ADJUSTMENT and total_cost_delta is not None
        if delta == 0 and not revaluation:
            raise InvalidQuantity(quantity_delta, "must be non-zero")
        try:
            cost = quantize_unit_cost(to_decimal(unit_cost, field_name="unit_cost"))
        except ValueError:
            raise InvalidCost(unit_cost) from None
        if cost < 0:
            raise InvalidCost(unit_cost)

        try:
            if total_cost_delta is None:
                value_delta = quantize_money(delta * cost)
            else:
                value_delta = quantize_money(
                    to_decimal(total_cost_delta, field_name="total_cost_delta", limit=None)
                )
        except ValueError:
            raise InvalidCost(unit_cost, "gives a movement value out of range") from None
        if delta == 0 and value_delta == 0:
            raise InvalidQuantity(quantity_delta, "must be non-zero")

        latest = self._store.latest_entry(organization_id, item_id)
        state = RunningState.of(latest)
        _check_order(item_id, transaction_date, state)

        running_quantity = state.quantity + delta
        if running_quantity < 0:
            logger.error(
                "NegativeStock: item=%s org=%s running=%s delta=%s",
                item_id, organization_id, state.quantity, delta,
            )
            raise NegativeStock(item_id, state.quantity, delta)

        running_value = state.value + value_delta
        entry = LedgerEntry(
            entry_id=str(uuid.uuid4()),
            organization_id=organization_id,
            item_id=item_id,
            sequence=(latest.sequence + 1) if latest else 1,
            transaction_date=transaction_date,
            movement_type=movement_type,
            quantity_delta=delta,
            unit_cost=cost,
            total_cost_delta=value_delta,
            running_quantity=running_quantity,
            running_value=running_value,
            average_cost=safe_average(running_value, running_quantity),
            note=note or "",
            reference_id=reference_id,
            recorded_at=recorded_at,
        )
        return self._store.append_entry(entry)

    # ── Reads ─────────────────────────────────────────────────

    def latest(self, organization_id: str, item_id: str) -> Optional[LedgerEntry]:
        return self._store.latest_entry(organization_id, item_id)

    def running_state(self, organization_id: str, item_id: str) -> RunningState:
        return RunningState.of(self.latest(organization_id, item_id))

    def ensure_in_order(
        self, organization_id: str, item_id: str, transaction_date: date,
    ) -> RunningState:
        """Current state, or OutOfOrderEntry if `transaction_date` is backdated."""
        state = self.running_state(organization_id, item_id)
        _check_order(item_id, transaction_date, state)
        return state

    def entries(
        self,
        organization_id: str,
        item_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[LedgerEntry]:
        """Entries in ledger order, optionally bounded by transaction date."""
        return [
            entry for entry in self._store.list_entries(organization_id, item_id)
            if (date_from is None or entry.transaction_date >= date_from)
            and (date_to is None or entry.transaction_date <= date_to)
        ]

    def state_as_of(self, organization_id: str, item_id: str, as_of: date) -> RunningState:
        """Item state after the last entry dated on or before `as_of`."""
        found = None
        for entry in self._store.list_entries(organization_id, item_id):
            if entry.transaction_date > as_of:
                break
            found = entry
        return RunningState.of(found)
