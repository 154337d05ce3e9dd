"""
Kirana Costing Engine — Application Service
=============================================
The operation boundary of the inventory valuation engine.

PostPurchase / PostOpeningStock / PostSale / PostAdjustment /
SetCostingMethod / GetValuation.

RULES (NON-NEGOTIABLE):
- Every mutation runs inside the (organization, item) critical section
  and inside store.atomic(): layers and ledger change together or not
  at all
- Inputs are validated before the critical section is entered
- Costing-method changes are serialized against each other per
  organization (key (org, None)); a sale resolves its method once,
  under the item key, and is not ordered against a concurrent change
- Layers and ledger are private: callers read them through
  `valuation`, never mutate them directly
- A FIFO / LIFO / specific withdrawal that drains the item clears any
  leftover ledger value with a separate zero-quantity ADJUSTMENT line
- Store, clock, settings and locks are injected; no module singletons
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Union

from core.config.settings import EngineSettings
from core.locking.keyed import KeyedLockRegistry
from core.primitives.amounts import (
    Number,
    quantize_money,
    quantize_quantity,
    to_decimal,
)
from core.time.clock import Clock, SystemClock
from engines.costing.errors import (
    InvalidAdjustmentReason,
    InvalidQuantity,
    LayerSelectionNotAllowed,
)
from engines.costing.layers import CostLayerStore, parse_quantity, parse_unit_cost
from engines.costing.ledger import TransactionLedger
from engines.costing.methods import (
    CostingMethod,
    CostingMethodAssignment,
    resolve_costing_method,
)
from engines.costing.records import (
    AdjustmentReason,
    LayerReference,
    LayerSource,
    LedgerEntry,
    MovementType,
)
from engines.costing.store import CostingStore
from engines.costing.strategies import ConsumptionPlan, select_consumption
from engines.tax.gst import InvalidTaxInput, TaxSplit, compute_tax
from projections.valuation import ValuationReport, ValuationService, ValuationSnapshot

logger = logging.getLogger("kirana.costing")

HUNDRED = Decimal("100")


# ══════════════════════════════════════════════════════════════
# RESULTS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SaleDraft:
    """What a sale is about to commit; handed to before_commit hooks."""
    organization_id: str
    item_id: str
    quantity: Decimal
    transaction_date: date
    cogs: ConsumptionPlan
    tax_split: TaxSplit
    reference_id: Optional[str] = None


@dataclass(frozen=True)
class SaleResult:
    ledger_entry: LedgerEntry
    tax_split: TaxSplit
    cogs: ConsumptionPlan
    gross_amount: Decimal
    discount_amount: Decimal
    revaluation_entry: Optional[LedgerEntry] = None

    @property
    def gross_margin(self) -> Decimal:
        return self.tax_split.subtotal - self.cogs.total_cost

    def to_dict(self) -> dict:
        return {
            "ledger_entry": self.ledger_entry.to_dict(),
            "tax_split": self.tax_split.to_dict(),
            "cogs": self.cogs.to_dict(),
            "gross_amount": str(self.gross_amount),
            "discount_amount": str(self.discount_amount),
            "gross_margin": str(self.gross_margin),
            "revaluation_entry": (
                self.revaluation_entry.to_dict() if self.revaluation_entry else None
            ),
        }


BeforeCommit = Callable[[SaleDraft], None]


def _money_input(value: Number, field_name: str) -> Decimal:
    try:
        return to_decimal(value, field_name=field_name)
    except ValueError:
        raise InvalidTaxInput(field_name, value, "is not a number in range") from None


def _parse_reason(reason) -> AdjustmentReason:
    if isinstance(reason, AdjustmentReason):
        return reason
    if isinstance(reason, str):
        try:
            return AdjustmentReason(reason.strip().lower())
        except ValueError:
            pass
    raise InvalidAdjustmentReason(reason)


# ══════════════════════════════════════════════════════════════
# ENGINE
# ══════════════════════════════════════════════════════════════

class InventoryCostingEngine:
    """
    Inventory valuation engine for one store backend.

    Usage:
        engine = InventoryCostingEngine(InMemoryCostingStore())
        engine.post_purchase("org-1", "RICE-5KG", 100, "10.00")
        result = engine.post_sale(
            "org-1", "RICE-5KG", 20,
            unit_price="15.00", tax_rate=5, seller_jurisdiction="KA",
        )
    """

    def __init__(
        self,
        store: CostingStore,
        *,
        settings: Optional[EngineSettings] = None,
        clock: Optional[Clock] = None,
        locks: Optional[KeyedLockRegistry] = None,
    ):
        self._store = store
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()
        self._locks = locks or KeyedLockRegistry(self._settings.lock_timeout_seconds)
        self._layers = CostLayerStore(store)
        self._ledger = TransactionLedger(store)
        self._valuation = ValuationService(
            store, settings=self._settings, clock=self._clock,
        )

    @property
    def valuation(self) -> ValuationService:
        """Read side bound to the same store."""
        return self._valuation

    @property
    def locks(self) -> KeyedLockRegistry:
        return self._locks

    # ── Internals ─────────────────────────────────────────────

    def _critical(self, organization_id: str, item_id: Optional[str]):
        return self._locks.hold(
            (organization_id, item_id), timeout=self._settings.lock_timeout_seconds,
        )

    def _consume(
        self,
        organization_id: str,
        item_id: str,
        quantity: Decimal,
        on_date: date,
        layer_id: Optional[str],
    ) -> ConsumptionPlan:
        """Select and apply a withdrawal. Caller holds the lock and the unit of work."""
        state = self._ledger.ensure_in_order(organization_id, item_id, on_date)
        plan = select_consumption(
            self._layers.active_layers(organization_id, item_id),
            quantity,
            self.costing_method(organization_id, item_id, on_date),
            average_cost=state.average_cost,
            layer_id=layer_id,
            running_quantity=state.quantity,
            running_value=state.value,
        )
        for draw in plan.draws:
            self._layers.consume_from_layer(draw.layer_id, draw.quantity)
        return plan

    def _clear_residue(
        self, entry: LedgerEntry, reference_id: Optional[str],
    ) -> Optional[LedgerEntry]:
        """Zero the ledger value of a drained item with a value-only ADJUSTMENT."""
        if entry.running_quantity != 0 or entry.running_value == 0:
            return None
        revaluation = self._ledger.append(
            entry.organization_id, entry.item_id, MovementType.ADJUSTMENT,
            0, 0,
            total_cost_delta=-entry.running_value,
            transaction_date=entry.transaction_date,
            reference_id=reference_id,
            note=f"revaluation: residue {entry.running_value} cleared on drain",
            recorded_at=self._clock.now_utc(),
        )
        logger.info(
            "Residue cleared: org=%s item=%s value_delta=%s",
            entry.organization_id, entry.item_id, revaluation.total_cost_delta,
        )
        return revaluation

    def _receive(
        self,
        organization_id: str,
        item_id: str,
        quantity: Decimal,
        unit_cost: Decimal,
        *,
        source: LayerSource,
        movement_type: MovementType,
        on_date: date,
        reference: Optional[LayerReference],
        note: str,
    ) -> LedgerEntry:
        with self._critical(organization_id, item_id), self._store.atomic():
            self._ledger.ensure_in_order(organization_id, item_id, on_date)
            layer = self._layers.create_layer(
                organization_id, item_id, quantity, unit_cost, source,
                layer_date=on_date,
                reference=reference,
                created_at=self._clock.now_utc(),
            )
            return self._ledger.append(
                organization_id, item_id, movement_type,
                layer.quantity_received, layer.unit_cost,
                transaction_date=on_date,
                reference_id=layer.reference.primary_id or layer.layer_id,
                note=note,
                recorded_at=self._clock.now_utc(),
            )

    # ══════════════════════════════════════════════════════════
    # OPERATIONS
    # ══════════════════════════════════════════════════════════

    def post_purchase(
        self,
        organization_id: str,
        item_id: str,
        quantity: Number,
        unit_cost: Number,
        *,
        reference: Optional[LayerReference] = None,
        transaction_date: Optional[date] = None,
        note: str = "",
    ) -> LedgerEntry:
        """Receive stock: one new cost layer plus a PURCHASE ledger entry."""
        qty = parse_quantity(quantity)
        cost = parse_unit_cost(unit_cost)
        on_date = transaction_date or self._clock.today()
        entry = self._receive(
            organization_id, item_id, qty, cost,
            source=LayerSource.PURCHASE,
            movement_type=MovementType.PURCHASE,
            on_date=on_date,
            reference=reference,
            note=note,
        )
        logger.info(
            "Purchase posted: org=%s item=%s qty=%s unit_cost=%s running=%s",
            organization_id, item_id, qty, cost, entry.running_quantity,
        )
        return entry

    def post_opening_stock(
        self,
        organization_id: str,
        item_id: str,
        quantity: Number,
        unit_cost: Number,
        *,
        as_of: Optional[date] = None,
        reference: Optional[LayerReference] = None,
    ) -> LedgerEntry:
        """Seed an item's starting balance (migration from another system)."""
        qty = parse_quantity(quantity)
        cost = parse_unit_cost(unit_cost)
        on_date = as_of or self._clock.today()
        entry = self._receive(
            organization_id, item_id, qty, cost,
            source=LayerSource.OPENING,
            movement_type=MovementType.OPENING,
            on_date=on_date,
            reference=reference,
            note="Opening stock",
        )
        logger.info(
            "Opening stock posted: org=%s item=%s qty=%s unit_cost=%s",
            organization_id, item_id, qty, cost,
        )
        return entry

    def post_sale(
        self,
        organization_id: str,
        item_id: str,
        quantity: Number,
        *,
        unit_price: Number,
        seller_jurisdiction: str,
        buyer_jurisdiction: Optional[str] = None,
        tax_rate: Number = 0,
        discount_percent: Number = 0,
        layer_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        transaction_date: Optional[date] = None,
        before_commit: Optional[BeforeCommit] = None,
    ) -> SaleResult:
        """
        Sell stock: consume layers under the item's costing method,
        append a SALE entry and split GST on the discounted price.

        layer_id names the layer to draw under specific identification;
        any other method rejects it with LayerSelectionNotAllowed.

        before_commit(draft) runs inside the critical section after the
        layers are consumed; raising from it rolls the whole sale back.
        """
        qty = parse_quantity(quantity)
        price = _money_input(unit_price, "unit_price")
        pct = _money_input(discount_percent, "discount_percent")
        if price < 0:
            raise InvalidTaxInput("unit_price", unit_price, "cannot be negative")
        if pct < 0 or pct > HUNDRED:
            raise InvalidTaxInput("discount_percent", discount_percent, "must be between 0 and 100")

        try:
            gross = quantize_money(qty * price)
        except ValueError:
            raise InvalidTaxInput(
                "unit_price", unit_price, "gives a sale amount out of range",
            ) from None
        discount = quantize_money(gross * pct / HUNDRED)
        tax_split = compute_tax(gross - discount, tax_rate, seller_jurisdiction, buyer_jurisdiction)
        on_date = transaction_date or self._clock.today()

        with self._critical(organization_id, item_id), self._store.atomic():
            plan = self._consume(organization_id, item_id, qty, on_date, layer_id)
            if before_commit is not None:
                before_commit(SaleDraft(
                    organization_id=organization_id,
                    item_id=item_id,
                    quantity=qty,
                    transaction_date=on_date,
                    cogs=plan,
                    tax_split=tax_split,
                    reference_id=reference_id,
                ))
            entry = self._ledger.append(
                organization_id, item_id, MovementType.SALE,
                -qty, plan.average_unit_cost,
                total_cost_delta=-plan.total_cost,
                transaction_date=on_date,
                reference_id=reference_id,
                recorded_at=self._clock.now_utc(),
            )
            revaluation = self._clear_residue(entry, reference_id)

        logger.info(
            "Sale posted: org=%s item=%s qty=%s method=%s cogs=%s running=%s",
            organization_id, item_id, qty, plan.method.value,
            plan.total_cost, entry.running_quantity,
        )
        return SaleResult(
            ledger_entry=entry,
            tax_split=tax_split,
            cogs=plan,
            gross_amount=gross,
            discount_amount=discount,
            revaluation_entry=revaluation,
        )

    def post_adjustment(
        self,
        organization_id: str,
        item_id: str,
        signed_quantity: Number,
        *,
        reason: Union[AdjustmentReason, str],
        unit_cost: Optional[Number] = None,
        layer_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        note: str = "",
        transaction_date: Optional[date] = None,
    ) -> LedgerEntry:
        """
        Correct stock after a count, damage, theft, expiry or return.

        Positive quantities add an ADJUSTMENT layer (at unit_cost, or at
        the current average cost when omitted). Negative quantities
        consume layers through the item's costing method.
        """
        adjustment_reason = _parse_reason(reason)
        try:
            delta = quantize_quantity(to_decimal(signed_quantity, field_name="quantity"))
        except ValueError:
            raise InvalidQuantity(signed_quantity, "is not a number in range") from None
        if delta == 0:
            raise InvalidQuantity(signed_quantity, "must be non-zero")
        if delta > 0 and layer_id is not None:
            raise LayerSelectionNotAllowed(item_id, "stock receipts")
        explicit_cost = parse_unit_cost(unit_cost) if unit_cost is not None else None
        on_date = transaction_date or self._clock.today()
        memo = f"{adjustment_reason.value}: {note}" if note else adjustment_reason.value

        with self._critical(organization_id, item_id), self._store.atomic():
            if delta > 0:
                state = self._ledger.ensure_in_order(organization_id, item_id, on_date)
                cost = explicit_cost if explicit_cost is not None else state.average_cost
                layer = self._layers.create_layer(
                    organization_id, item_id, delta, cost, LayerSource.ADJUSTMENT,
                    layer_date=on_date,
                    reference=LayerReference(reference_number=reference_id),
                    created_at=self._clock.now_utc(),
                )
                entry = self._ledger.append(
                    organization_id, item_id, MovementType.ADJUSTMENT,
                    delta, layer.unit_cost,
                    transaction_date=on_date,
                    reference_id=reference_id or layer.layer_id,
                    note=memo,
                    recorded_at=self._clock.now_utc(),
                )
            else:
                plan = self._consume(organization_id, item_id, -delta, on_date, layer_id)
                entry = self._ledger.append(
                    organization_id, item_id, MovementType.ADJUSTMENT,
                    delta, plan.average_unit_cost,
                    total_cost_delta=-plan.total_cost,
                    transaction_date=on_date,
                    reference_id=reference_id,
                    note=memo,
                    recorded_at=self._clock.now_utc(),
                )
                self._clear_residue(entry, reference_id)

        logger.info(
            "Adjustment posted: org=%s item=%s delta=%s reason=%s value_delta=%s",
            organization_id, item_id, delta, adjustment_reason.value, entry.total_cost_delta,
        )
        return entry

    # ── Costing methods ───────────────────────────────────────

    def set_costing_method(
        self,
        organization_id: str,
        method,
        item_id: Optional[str] = None,
        effective_from: Optional[date] = None,
    ) -> CostingMethodAssignment:
        """Assign a method to an item, or the org default when item_id is None."""
        resolved = CostingMethod.parse(method)
        assignment = CostingMethodAssignment(
            organization_id=organization_id,
            method=resolved,
            effective_from=effective_from or self._clock.today(),
            item_id=item_id,
        )
        with self._critical(organization_id, None), self._store.atomic():
            saved = self._store.save_costing_method(assignment)
        logger.info(
            "Costing method set: org=%s item=%s method=%s from=%s",
            organization_id, item_id or "*", resolved.value,
            assignment.effective_from.isoformat(),
        )
        return saved

    def costing_method(
        self,
        organization_id: str,
        item_id: str,
        on_date: Optional[date] = None,
    ) -> CostingMethod:
        return resolve_costing_method(
            self._store.list_costing_methods(organization_id),
            item_id,
            on_date or self._clock.today(),
            self._settings.default_costing_method,
        )

    # ── Reads ─────────────────────────────────────────────────

    def get_valuation(
        self,
        organization_id: str,
        item_id: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> Union[ValuationSnapshot, ValuationReport]:
        """ValuationSnapshot for one item, or a ValuationReport for the org."""
        if item_id is None:
            return self._valuation.valuation_report(organization_id, as_of=as_of)
        return self._valuation.snapshot(organization_id, item_id, as_of=as_of)


__all__ = [
    "BeforeCommit",
    "InventoryCostingEngine",
    "SaleDraft",
    "SaleResult",
]
