"""
Kirana Projections — Inventory Valuation Read Model
=====================================================
Read-only queries over the costing store: stock on hand, average
cost, valuation snapshots and reports, COGS previews, conservation
checks, reorder alerts and expiring batches.

RULES (NON-NEGOTIABLE):
- Never mutates layers or ledger entries
- Takes no item lock; every result is an immutable snapshot
- total_value of an item is the ledger running_value
- Calling a read twice with no writes in between returns equal results
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Tuple

from core.config.settings import EngineSettings
from core.primitives.amounts import (
    ZERO,
    Number,
    quantize_money,
    quantize_quantity,
    to_decimal,
)
from core.time.clock import Clock, SystemClock
from engines.costing.errors import ConservationViolation
from engines.costing.layers import CostLayerStore
from engines.costing.ledger import TransactionLedger
from engines.costing.methods import CostingMethod, resolve_costing_method
from engines.costing.records import CostLayer, LedgerEntry, MovementType
from engines.costing.store import CostingStore
from engines.costing.strategies import CogsResult, select_consumption

logger = logging.getLogger("kirana.valuation")


# ══════════════════════════════════════════════════════════════
# READ MODELS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ValuationSnapshot:
    organization_id: str
    item_id: str
    current_stock: Decimal
    average_cost: Decimal
    total_value: Decimal
    last_purchase_cost: Optional[Decimal]
    last_purchase_date: Optional[date]
    as_of: date

    def to_dict(self) -> dict:
        return {
            "organization_id": self.organization_id,
            "item_id": self.item_id,
            "current_stock": str(self.current_stock),
            "average_cost": str(self.average_cost),
            "total_value": str(self.total_value),
            "last_purchase_cost": (
                str(self.last_purchase_cost) if self.last_purchase_cost is not None else None
            ),
            "last_purchase_date": (
                self.last_purchase_date.isoformat() if self.last_purchase_date else None
            ),
            "as_of": self.as_of.isoformat(),
        }


@dataclass(frozen=True)
class ValuationReport:
    organization_id: str
    as_of: date
    items: Tuple[ValuationSnapshot, ...]

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def total_quantity(self) -> Decimal:
        return sum((s.current_stock for s in self.items), quantize_quantity(ZERO))

    @property
    def total_value(self) -> Decimal:
        return sum((s.total_value for s in self.items), quantize_money(ZERO))

    def to_dict(self) -> dict:
        return {
            "organization_id": self.organization_id,
            "as_of": self.as_of.isoformat(),
            "total_items": self.total_items,
            "total_quantity": str(self.total_quantity),
            "total_value": str(self.total_value),
            "items": [s.to_dict() for s in self.items],
        }


@dataclass(frozen=True)
class ConservationCheck:
    """Layer-side vs ledger-side view of an item's stock."""
    item_id: str
    layer_quantity: Decimal
    ledger_quantity: Decimal
    layer_value: Decimal
    ledger_value: Decimal

    @property
    def holds(self) -> bool:
        return self.layer_quantity == self.ledger_quantity

    @property
    def value_drift(self) -> Decimal:
        """Ledger value minus layer value (rounding residue under WAC)."""
        return self.ledger_value - self.layer_value


@dataclass(frozen=True)
class LowStockAlert:
    item_id: str
    current_stock: Decimal
    min_stock_level: Decimal
    severity: str                  # "critical" | "low"
    suggested_order_qty: Decimal
    estimated_cost: Decimal

    @property
    def out_of_stock(self) -> bool:
        return self.current_stock == 0


@dataclass(frozen=True)
class ExpiringLayer:
    layer: CostLayer
    days_to_expiry: int
    status: str                    # "expired" | "expiring"

    @property
    def value_at_risk(self) -> Decimal:
        return self.layer.remaining_value


# ══════════════════════════════════════════════════════════════
# SERVICE
# ══════════════════════════════════════════════════════════════

class ValuationService:
    """Read side of the valuation engine."""

    def __init__(
        self,
        store: CostingStore,
        *,
        settings: Optional[EngineSettings] = None,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()
        self._layers = CostLayerStore(store)
        self._ledger = TransactionLedger(store)

    # ── Stock and cost ────────────────────────────────────────

    def current_stock(self, organization_id: str, item_id: str) -> Decimal:
        return self._layers.active_layers(organization_id, item_id).total_quantity()

    def average_cost(self, organization_id: str, item_id: str) -> Decimal:
        latest = self._ledger.latest(organization_id, item_id)
        return latest.average_cost if latest else ZERO

    def layers(self, organization_id: str, item_id: str) -> List[CostLayer]:
        """Every cost layer of the item, dormant ones included, oldest first."""
        return self._layers.layers(organization_id, item_id)

    def _last_purchase(
        self, entries: List[LedgerEntry],
    ) -> Tuple[Optional[Decimal], Optional[date]]:
        for entry in reversed(entries):
            if entry.movement_type is MovementType.PURCHASE:
                return entry.unit_cost, entry.transaction_date
        return None, None

    def snapshot(
        self,
        organization_id: str,
        item_id: str,
        as_of: Optional[date] = None,
    ) -> ValuationSnapshot:
        """
        Item valuation after the last entry dated on or before `as_of`.

        Without `as_of` the snapshot follows the latest entry whatever its
        date, so it always agrees with current_stock(); its as_of is then
        today or the tail's date, whichever is later.
        """
        entries = self._ledger.entries(organization_id, item_id, date_to=as_of)
        tail = entries[-1] if entries else None
        on_date = as_of or self._clock.today()
        if as_of is None and tail is not None and tail.transaction_date > on_date:
            on_date = tail.transaction_date
        last_cost, last_date = self._last_purchase(entries)
        return ValuationSnapshot(
            organization_id=organization_id,
            item_id=item_id,
            current_stock=tail.running_quantity if tail else quantize_quantity(ZERO),
            average_cost=tail.average_cost if tail else ZERO,
            total_value=tail.running_value if tail else quantize_money(ZERO),
            last_purchase_cost=last_cost,
            last_purchase_date=last_date,
            as_of=on_date,
        )

    def valuation_report(
        self,
        organization_id: str,
        as_of: Optional[date] = None,
    ) -> ValuationReport:
        items = tuple(
            self.snapshot(organization_id, item_id, as_of=as_of)
            for item_id in self._store.list_item_ids(organization_id)
        )
        on_date = as_of or max(
            [self._clock.today()] + [snapshot.as_of for snapshot in items]
        )
        return ValuationReport(organization_id=organization_id, as_of=on_date, items=items)

    # ── COGS preview ──────────────────────────────────────────

    def compute_cogs(
        self,
        organization_id: str,
        item_id: str,
        quantity: Number,
        method=None,
        *,
        layer_id: Optional[str] = None,
    ) -> CogsResult:
        """What selling `quantity` now would cost, without selling it."""
        if method is None:
            method = resolve_costing_method(
                self._store.list_costing_methods(organization_id),
                item_id,
                self._clock.today(),
                self._settings.default_costing_method,
            )
        state = self._ledger.running_state(organization_id, item_id)
        return select_consumption(
            self._layers.active_layers(organization_id, item_id),
            quantity,
            CostingMethod.parse(method),
            average_cost=state.average_cost,
            layer_id=layer_id,
            running_quantity=state.quantity,
            running_value=state.value,
        )

    # ── Invariant checks ──────────────────────────────────────

    def verify_conservation(self, organization_id: str, item_id: str) -> ConservationCheck:
        active = list(self._layers.active_layers(organization_id, item_id))
        state = self._ledger.running_state(organization_id, item_id)
        return ConservationCheck(
            item_id=item_id,
            layer_quantity=sum((layer.quantity_remaining for layer in active), ZERO),
            ledger_quantity=state.quantity,
            layer_value=sum((layer.remaining_value for layer in active), ZERO),
            ledger_value=state.value,
        )

    def assert_conservation(self, organization_id: str, item_id: str) -> ConservationCheck:
        check = self.verify_conservation(organization_id, item_id)
        if not check.holds:
            logger.error(
                "Conservation violated: org=%s item=%s layers=%s ledger=%s",
                organization_id, item_id, check.layer_quantity, check.ledger_quantity,
            )
            raise ConservationViolation(item_id, check.layer_quantity, check.ledger_quantity)
        return check

    # ── History and alerts ────────────────────────────────────

    def item_history(
        self,
        organization_id: str,
        item_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[LedgerEntry]:
        return self._ledger.entries(organization_id, item_id, date_from, date_to)

    def low_stock_alerts(
        self,
        organization_id: str,
        min_levels: Mapping[str, Number],
    ) -> List[LowStockAlert]:
        """
        Items at or below their minimum level, most urgent first.

        critical: stock below half the minimum; low: otherwise.
        Suggested reorder: max(2 × minimum, reorder floor).
        """
        floor = Decimal(self._settings.reorder_floor_quantity)
        alerts: List[LowStockAlert] = []
        for item_id, raw_min in min_levels.items():
            minimum = to_decimal(raw_min, field_name="min_stock_level")
            stock = self.current_stock(organization_id, item_id)
            if stock > minimum:
                continue
            suggested = max(minimum * 2, floor)
            snapshot = self.snapshot(organization_id, item_id)
            unit_cost = (
                snapshot.last_purchase_cost
                if snapshot.last_purchase_cost is not None
                else snapshot.average_cost
            )
            alerts.append(LowStockAlert(
                item_id=item_id,
                current_stock=stock,
                min_stock_level=minimum,
                severity="critical" if stock < minimum / 2 else "low",
                suggested_order_qty=suggested,
                estimated_cost=quantize_money(suggested * unit_cost),
            ))
        alerts.sort(key=lambda a: (a.severity != "critical", a.current_stock, a.item_id))
        return alerts

    def expiring_layers(
        self,
        organization_id: str,
        on_date: Optional[date] = None,
        within_days: Optional[int] = None,
    ) -> List[ExpiringLayer]:
        """Active layers expired or expiring within the warning window."""
        today = on_date or self._clock.today()
        window = self._settings.expiry_warning_days if within_days is None else within_days
        horizon = today + timedelta(days=window)
        found: List[ExpiringLayer] = []
        for item_id in self._store.list_item_ids(organization_id):
            for layer in self._layers.active_layers(organization_id, item_id):
                expiry = layer.reference.expiry_date
                if expiry is None or expiry > horizon:
                    continue
                found.append(ExpiringLayer(
                    layer=layer,
                    days_to_expiry=(expiry - today).days,
                    status="expired" if expiry < today else "expiring",
                ))
        found.sort(key=lambda e: (e.days_to_expiry, e.layer.item_id, e.layer.sequence))
        return found


__all__ = [
    "ConservationCheck",
    "ExpiringLayer",
    "LowStockAlert",
    "ValuationReport",
    "ValuationService",
    "ValuationSnapshot",
]
