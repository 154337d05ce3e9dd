"""
Kirana — Inventory Costing Engine Tests
=========================================
End-to-end operations through InventoryCostingEngine on the
in-memory store: purchases, sales under every costing method,
adjustments, method assignment and valuation reads.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from core.config.settings import EngineSettings
from core.time.clock import FixedClock
from engines.costing.errors import (
    InsufficientStock,
    InvalidAdjustmentReason,
    InvalidCost,
    InvalidQuantity,
    LayerSelectionNotAllowed,
    LayerSelectionRequired,
    OutOfOrderEntry,
    UnknownCostingMethod,
)
from engines.costing.methods import CostingMethod
from engines.costing.records import AdjustmentReason, LayerReference, MovementType
from engines.costing.service import InventoryCostingEngine
from engines.costing.store import InMemoryCostingStore
from engines.tax.gst import InvalidTaxInput
from projections.valuation import ValuationReport, ValuationSnapshot

ORG = "org-1"
ITEM = "GHEE-500G"
JAN_1 = date(2026, 1, 1)
JAN_2 = date(2026, 1, 2)
JAN_3 = date(2026, 1, 3)
NOW = datetime(2026, 1, 10, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryCostingStore()


@pytest.fixture
def engine(store):
    return InventoryCostingEngine(store, clock=FixedClock(NOW))


def stock_two_layers(engine, item=ITEM):
    engine.post_purchase(ORG, item, 100, "10.00", transaction_date=JAN_1)
    engine.post_purchase(ORG, item, 50, "12.00", transaction_date=JAN_2)


def sell(engine, quantity, item=ITEM, **kwargs):
    kwargs.setdefault("unit_price", "20.00")
    kwargs.setdefault("seller_jurisdiction", "KA")
    kwargs.setdefault("transaction_date", JAN_3)
    return engine.post_sale(ORG, item, quantity, **kwargs)


# ══════════════════════════════════════════════════════════════
# PURCHASE
# ══════════════════════════════════════════════════════════════

class TestPostPurchase:
    def test_creates_layer_and_entry(self, engine):
        entry = engine.post_purchase(
            ORG, ITEM, 100, "10.00",
            reference=LayerReference(receipt_id="GRN-1", supplier_id="SUP-9"),
            transaction_date=JAN_1,
        )
        assert entry.movement_type is MovementType.PURCHASE
        assert entry.running_quantity == Decimal("100")
        assert entry.running_value == Decimal("1000.00")
        assert entry.reference_id == "GRN-1"
        assert entry.recorded_at == NOW
        layers = engine.valuation.layers(ORG, ITEM)
        assert len(layers) == 1
        assert layers[0].reference.supplier_id == "SUP-9"

    def test_defaults_to_clock_date(self, engine):
        entry = engine.post_purchase(ORG, ITEM, 1, 1)
        assert entry.transaction_date == NOW.date()

    def test_invalid_input_changes_nothing(self, engine):
        with pytest.raises(InvalidQuantity):
            engine.post_purchase(ORG, ITEM, -5, 10)
        assert engine.valuation.item_history(ORG, ITEM) == []
        assert engine.valuation.layers(ORG, ITEM) == []

    def test_backdated_purchase_rejected_atomically(self, engine):
        engine.post_purchase(ORG, ITEM, 1, 1, transaction_date=JAN_2)
        with pytest.raises(OutOfOrderEntry):
            engine.post_purchase(ORG, ITEM, 1, 1, transaction_date=JAN_1)
        assert len(engine.valuation.layers(ORG, ITEM)) == 1

    def test_logs_info(self, engine, caplog):
        with caplog.at_level(logging.INFO, logger="kirana.costing"):
            engine.post_purchase(ORG, ITEM, 3, 4, transaction_date=JAN_1)
        assert "Purchase posted" in caplog.text

    def test_out_of_range_inputs_are_typed_errors(self, engine):
        with pytest.raises(InvalidQuantity):
            engine.post_purchase(ORG, ITEM, "1e40", 1)
        with pytest.raises(InvalidCost):
            engine.post_purchase(ORG, ITEM, 1, "1e40")
        with pytest.raises(InvalidQuantity):
            engine.post_adjustment(ORG, ITEM, "-1e40", reason="damage")
        with pytest.raises(InvalidTaxInput):
            sell(engine, 1, unit_price="1e40")
        with pytest.raises(InvalidTaxInput, match="out of range"):
            sell(engine, "99999999999999", unit_price="99999999999999")
        assert engine.valuation.item_history(ORG, ITEM) == []
        assert engine.valuation.layers(ORG, ITEM) == []

    def test_engine_hands_out_no_mutable_layer_or_ledger_handle(self, engine):
        assert not hasattr(engine, "layers")
        assert not hasattr(engine, "ledger")


class TestOpeningStock:
    def test_opening_layer_and_entry(self, engine):
        entry = engine.post_opening_stock(ORG, ITEM, 40, "7.50", as_of=JAN_1)
        assert entry.movement_type is MovementType.OPENING
        assert entry.running_value == Decimal("300.00")
        assert engine.valuation.layers(ORG, ITEM)[0].source.value == "opening"


# ══════════════════════════════════════════════════════════════
# SALE
# ══════════════════════════════════════════════════════════════

class TestPostSale:
    def test_fifo_sale(self, engine):
        stock_two_layers(engine)
        result = sell(engine, 120)
        assert result.cogs.method is CostingMethod.FIFO
        assert result.cogs.total_cost == Decimal("1240.00")
        assert result.ledger_entry.movement_type is MovementType.SALE
        assert result.ledger_entry.quantity_delta == Decimal("-120")
        assert result.ledger_entry.running_quantity == Decimal("30")
        assert result.ledger_entry.running_value == Decimal("360.00")
        assert engine.valuation.current_stock(ORG, ITEM) == Decimal("30")

    def test_lifo_sale(self, engine):
        engine.set_costing_method(ORG, "lifo", item_id=ITEM, effective_from=JAN_1)
        stock_two_layers(engine)
        result = sell(engine, 30)
        assert result.cogs.total_cost == Decimal("360.00")
        remaining = [layer.quantity_remaining for layer in engine.valuation.layers(ORG, ITEM)]
        assert remaining == [Decimal("100"), Decimal("20")]

    def test_weighted_average_sale(self, engine):
        engine.set_costing_method(ORG, CostingMethod.WEIGHTED_AVERAGE, effective_from=JAN_1)
        stock_two_layers(engine)
        assert engine.valuation.average_cost(ORG, ITEM) == Decimal("10.6667")
        result = sell(engine, 120)
        assert result.cogs.total_cost == Decimal("1280.00")
        assert result.ledger_entry.running_value == Decimal("320.00")

    def test_weighted_average_drain_leaves_zero_value(self, engine):
        engine.set_costing_method(ORG, "weighted_average", effective_from=JAN_1)
        stock_two_layers(engine)
        sell(engine, 120)
        last = sell(engine, 30)
        assert last.ledger_entry.running_quantity == 0
        assert last.ledger_entry.running_value == 0
        assert last.cogs.total_cost == Decimal("320.00")

    def test_specific_identification_sale(self, engine):
        engine.set_costing_method(ORG, "specific_identification", item_id=ITEM, effective_from=JAN_1)
        stock_two_layers(engine)
        newest = engine.valuation.layers(ORG, ITEM)[1]
        result = sell(engine, 10, layer_id=newest.layer_id)
        assert result.cogs.total_cost == Decimal("120.00")
        with pytest.raises(LayerSelectionRequired):
            sell(engine, 1)

    @pytest.mark.parametrize("method", ["fifo", "lifo", "weighted_average"])
    def test_layer_id_rejected_outside_specific_identification(self, engine, method):
        engine.set_costing_method(ORG, method, item_id=ITEM, effective_from=JAN_1)
        stock_two_layers(engine)
        oldest = engine.valuation.layers(ORG, ITEM)[0]
        with pytest.raises(LayerSelectionNotAllowed):
            sell(engine, 5, layer_id=oldest.layer_id)
        assert engine.valuation.current_stock(ORG, ITEM) == Decimal("150")
        assert len(engine.valuation.item_history(ORG, ITEM)) == 2

    def test_method_switch_then_drain_costs_drawn_layers(self, engine):
        engine.set_costing_method(ORG, "weighted_average", effective_from=JAN_1)
        stock_two_layers(engine)
        sell(engine, 120)
        engine.set_costing_method(ORG, "fifo", effective_from=JAN_3)

        result = sell(engine, 30)

        assert result.cogs.method is CostingMethod.FIFO
        assert result.cogs.total_cost == Decimal("360.00")
        assert result.cogs.total_cost == sum(d.total_cost for d in result.cogs.layer_breakdown)
        assert result.ledger_entry.total_cost_delta == Decimal("-360.00")
        assert result.ledger_entry.running_value == Decimal("-40.00")

        revaluation = result.revaluation_entry
        assert revaluation.movement_type is MovementType.ADJUSTMENT
        assert revaluation.quantity_delta == 0
        assert revaluation.total_cost_delta == Decimal("40.00")
        assert revaluation.running_value == 0
        assert revaluation.note.startswith("revaluation")
        assert engine.get_valuation(ORG, ITEM).total_value == 0
        assert len(engine.valuation.item_history(ORG, ITEM)) == 5
        engine.valuation.assert_conservation(ORG, ITEM)

    def test_clean_drain_appends_no_revaluation(self, engine):
        stock_two_layers(engine)
        result = sell(engine, 150)
        assert result.cogs.total_cost == Decimal("1600.00")
        assert result.revaluation_entry is None
        assert len(engine.valuation.item_history(ORG, ITEM)) == 3

    def test_tax_split_on_discounted_price(self, engine):
        stock_two_layers(engine)
        result = sell(
            engine, 10,
            unit_price="110.00", discount_percent=10, tax_rate=18,
            seller_jurisdiction="KA", buyer_jurisdiction="KA",
        )
        assert result.gross_amount == Decimal("1100.00")
        assert result.discount_amount == Decimal("110.00")
        assert result.tax_split.subtotal == Decimal("990.00")
        assert result.tax_split.cgst == Decimal("89.10")
        assert result.tax_split.sgst == Decimal("89.10")
        assert result.tax_split.grand_total == Decimal("1168.20")
        assert result.gross_margin == Decimal("890.00")

    def test_interstate_sale(self, engine):
        stock_two_layers(engine)
        result = sell(
            engine, 10, unit_price="100.00", tax_rate=18,
            seller_jurisdiction="KA", buyer_jurisdiction="MH",
        )
        assert result.tax_split.is_interstate
        assert result.tax_split.igst == Decimal("180.00")

    def test_insufficient_stock_leaves_state_untouched(self, engine):
        stock_two_layers(engine)
        with pytest.raises(InsufficientStock):
            sell(engine, 151)
        assert engine.valuation.current_stock(ORG, ITEM) == Decimal("150")
        assert len(engine.valuation.item_history(ORG, ITEM)) == 2

    def test_sale_of_unknown_item(self, engine):
        with pytest.raises(InsufficientStock) as exc:
            sell(engine, 1, item="GHOST")
        assert exc.value.available == 0

    def test_invalid_tax_input_rejected_before_state_change(self, engine):
        stock_two_layers(engine)
        with pytest.raises(InvalidTaxInput):
            sell(engine, 1, discount_percent=120)
        with pytest.raises(InvalidTaxInput):
            sell(engine, 1, seller_jurisdiction="  ")
        assert engine.valuation.current_stock(ORG, ITEM) == Decimal("150")

    def test_before_commit_sees_draft(self, engine):
        stock_two_layers(engine)
        seen = []
        sell(engine, 5, before_commit=seen.append, reference_id="BILL-1")
        assert seen[0].quantity == Decimal("5")
        assert seen[0].cogs.total_cost == Decimal("50.00")
        assert seen[0].reference_id == "BILL-1"

    def test_failed_before_commit_rolls_back(self, engine):
        stock_two_layers(engine)

        def payment_declined(draft):
            raise RuntimeError("payment declined")

        with pytest.raises(RuntimeError, match="declined"):
            sell(engine, 120, before_commit=payment_declined)
        remaining = [layer.quantity_remaining for layer in engine.valuation.layers(ORG, ITEM)]
        assert remaining == [Decimal("100"), Decimal("50")]
        assert len(engine.valuation.item_history(ORG, ITEM)) == 2
        engine.valuation.assert_conservation(ORG, ITEM)

    def test_sale_result_serializes(self, engine):
        stock_two_layers(engine)
        data = sell(engine, 1, tax_rate=5).to_dict()
        assert data["cogs"]["total_cost"] == "10.00"
        assert data["tax_split"]["cgst"] == "0.50"


# ══════════════════════════════════════════════════════════════
# ADJUSTMENT
# ══════════════════════════════════════════════════════════════

class TestPostAdjustment:
    def test_positive_adjustment_creates_layer(self, engine):
        entry = engine.post_adjustment(
            ORG, ITEM, 10, reason=AdjustmentReason.PHYSICAL_COUNT,
            unit_cost="9.00", transaction_date=JAN_1,
        )
        assert entry.movement_type is MovementType.ADJUSTMENT
        assert entry.running_value == Decimal("90.00")
        assert entry.note == "physical_count"
        assert engine.valuation.layers(ORG, ITEM)[0].source.value == "adjustment"

    def test_positive_adjustment_defaults_to_average_cost(self, engine):
        stock_two_layers(engine)
        entry = engine.post_adjustment(ORG, ITEM, 3, reason="return", transaction_date=JAN_3)
        assert entry.unit_cost == Decimal("10.6667")

    def test_negative_adjustment_consumes_by_method(self, engine):
        stock_two_layers(engine)
        entry = engine.post_adjustment(
            ORG, ITEM, -5, reason="damage", note="crushed tins", transaction_date=JAN_3,
        )
        assert entry.total_cost_delta == Decimal("-50.00")
        assert entry.running_quantity == Decimal("145")
        assert entry.note == "damage: crushed tins"

    def test_negative_adjustment_beyond_stock(self, engine):
        stock_two_layers(engine)
        with pytest.raises(InsufficientStock):
            engine.post_adjustment(ORG, ITEM, -151, reason="theft", transaction_date=JAN_3)

    def test_zero_adjustment_rejected(self, engine):
        with pytest.raises(InvalidQuantity):
            engine.post_adjustment(ORG, ITEM, 0, reason="correction")

    def test_unknown_reason_rejected(self, engine):
        with pytest.raises(InvalidAdjustmentReason):
            engine.post_adjustment(ORG, ITEM, 1, reason="gift")

    def test_layer_id_rejected_on_receipt(self, engine):
        stock_two_layers(engine)
        oldest = engine.valuation.layers(ORG, ITEM)[0]
        with pytest.raises(LayerSelectionNotAllowed):
            engine.post_adjustment(
                ORG, ITEM, 2, reason="return", layer_id=oldest.layer_id, transaction_date=JAN_3,
            )
        assert len(engine.valuation.layers(ORG, ITEM)) == 2

    def test_draining_write_off_clears_residue(self, engine):
        engine.set_costing_method(ORG, "weighted_average", effective_from=JAN_1)
        stock_two_layers(engine)
        sell(engine, 120)
        engine.set_costing_method(ORG, "lifo", effective_from=JAN_3)
        entry = engine.post_adjustment(ORG, ITEM, -30, reason="theft", transaction_date=JAN_3)
        assert entry.total_cost_delta == Decimal("-360.00")
        history = engine.valuation.item_history(ORG, ITEM)
        assert history[-1].quantity_delta == 0
        assert history[-1].running_value == 0


# ══════════════════════════════════════════════════════════════
# COSTING METHODS
# ══════════════════════════════════════════════════════════════

class TestCostingMethods:
    def test_default_comes_from_settings(self, store):
        engine = InventoryCostingEngine(
            store,
            settings=EngineSettings(default_costing_method="lifo"),
            clock=FixedClock(NOW),
        )
        assert engine.costing_method(ORG, ITEM) is CostingMethod.LIFO

    def test_item_overrides_org_default(self, engine):
        engine.set_costing_method(ORG, "weighted_average", effective_from=JAN_1)
        engine.set_costing_method(ORG, "lifo", item_id=ITEM, effective_from=JAN_1)
        assert engine.costing_method(ORG, ITEM) is CostingMethod.LIFO
        assert engine.costing_method(ORG, "OTHER") is CostingMethod.WEIGHTED_AVERAGE

    def test_effective_dates(self, engine):
        engine.set_costing_method(ORG, "fifo", item_id=ITEM, effective_from=JAN_1)
        engine.set_costing_method(ORG, "lifo", item_id=ITEM, effective_from=JAN_3)
        assert engine.costing_method(ORG, ITEM, on_date=JAN_2) is CostingMethod.FIFO
        assert engine.costing_method(ORG, ITEM, on_date=JAN_3) is CostingMethod.LIFO
        assert engine.costing_method(ORG, ITEM, on_date=date(2025, 12, 1)) is CostingMethod.FIFO

    def test_same_effective_date_replaces(self, engine, store):
        engine.set_costing_method(ORG, "fifo", item_id=ITEM, effective_from=JAN_1)
        engine.set_costing_method(ORG, "lifo", item_id=ITEM, effective_from=JAN_1)
        assert len(store.list_costing_methods(ORG)) == 1
        assert engine.costing_method(ORG, ITEM) is CostingMethod.LIFO

    def test_unknown_method_rejected(self, engine):
        with pytest.raises(UnknownCostingMethod):
            engine.set_costing_method(ORG, "hifo")


# ══════════════════════════════════════════════════════════════
# VALUATION
# ══════════════════════════════════════════════════════════════

class TestGetValuation:
    def test_item_snapshot(self, engine):
        stock_two_layers(engine)
        snap = engine.get_valuation(ORG, ITEM)
        assert isinstance(snap, ValuationSnapshot)
        assert snap.current_stock == Decimal("150")
        assert snap.total_value == Decimal("1600.00")
        assert snap.last_purchase_cost == Decimal("12.0000")
        assert snap.last_purchase_date == JAN_2

    def test_org_report(self, engine):
        stock_two_layers(engine)
        engine.post_purchase(ORG, "DAL-1KG", 10, "80.00", transaction_date=JAN_1)
        report = engine.get_valuation(ORG)
        assert isinstance(report, ValuationReport)
        assert report.total_items == 2
        assert report.total_quantity == Decimal("160")
        assert report.total_value == Decimal("2400.00")

    def test_reads_are_idempotent(self, engine):
        stock_two_layers(engine)
        sell(engine, 20)
        assert engine.get_valuation(ORG) == engine.get_valuation(ORG)
        assert engine.get_valuation(ORG, ITEM) == engine.get_valuation(ORG, ITEM)

    def test_future_dated_entries_count_in_current_snapshot(self, engine):
        later = date(2026, 3, 5)
        engine.post_purchase(ORG, ITEM, 10, 5, transaction_date=later)

        snap = engine.get_valuation(ORG, ITEM)
        assert snap.current_stock == Decimal("10")
        assert snap.current_stock == engine.valuation.current_stock(ORG, ITEM)
        assert snap.total_value == Decimal("50.00")
        assert snap.as_of == later

        report = engine.get_valuation(ORG)
        assert report.total_quantity == Decimal("10")
        assert report.as_of == later
        assert engine.get_valuation(ORG, ITEM, as_of=NOW.date()).current_stock == 0

    def test_conservation_holds_after_every_step(self, engine):
        def checked():
            check = engine.valuation.assert_conservation(ORG, ITEM)
            assert check.ledger_quantity == engine.valuation.current_stock(ORG, ITEM)
            return check

        engine.post_purchase(ORG, ITEM, 100, "10.00", transaction_date=JAN_1)
        checked()
        engine.post_purchase(ORG, ITEM, 50, "12.00", transaction_date=JAN_2)
        checked()
        sell(engine, 70)
        checked()

        engine.set_costing_method(ORG, "weighted_average", item_id=ITEM, effective_from=JAN_3)
        sell(engine, 20)
        checked()

        def payment_declined(draft):
            raise RuntimeError("payment declined")

        with pytest.raises(RuntimeError):
            sell(engine, 10, before_commit=payment_declined)
        assert checked().layer_quantity == Decimal("60")

        engine.set_costing_method(ORG, "specific", item_id=ITEM, effective_from=JAN_3)
        newest = engine.valuation.layers(ORG, ITEM)[1]
        sell(engine, 5, layer_id=newest.layer_id)
        checked()
        engine.post_adjustment(
            ORG, ITEM, -3, reason="expiry", layer_id=newest.layer_id, transaction_date=JAN_3,
        )
        checked()
        engine.post_adjustment(
            ORG, ITEM, 8, reason="physical_count", unit_cost=11, transaction_date=JAN_3,
        )
        check = checked()
        assert check.layer_quantity == Decimal("60")
        assert [layer.quantity_remaining for layer in engine.valuation.layers(ORG, ITEM)] == [
            Decimal("10"),
            Decimal("42"),
            Decimal("8"),
        ]
