"""
Kirana — Costing Strategy Tests
=================================
FIFO / LIFO / weighted average / specific identification selection.
Selection is read-only: no test here expects a layer to change.
"""

from datetime import date
from decimal import Decimal

import pytest

from engines.costing.errors import (
    InsufficientLayerQuantity,
    InsufficientStock,
    LayerSelectionNotAllowed,
    LayerSelectionRequired,
    UnknownCostingMethod,
    UnknownLayer,
)
from engines.costing.layers import CostLayerStore
from engines.costing.methods import CostingMethod
from engines.costing.records import LayerSource
from engines.costing.store import InMemoryCostingStore
from engines.costing.strategies import (
    FifoStrategy,
    get_strategy,
    register_strategy,
    select_consumption,
)

ORG = "org-1"
ITEM = "OIL-1L"


@pytest.fixture
def layers():
    return CostLayerStore(InMemoryCostingStore())


@pytest.fixture
def two_layers(layers):
    """L1 = 100 @ 10.00 (Jan 1), L2 = 50 @ 12.00 (Jan 2)."""
    l1 = layers.create_layer(ORG, ITEM, 100, "10.00", LayerSource.PURCHASE, date(2026, 1, 1))
    l2 = layers.create_layer(ORG, ITEM, 50, "12.00", LayerSource.PURCHASE, date(2026, 1, 2))
    return layers, l1, l2


class TestFifo:
    def test_consumes_oldest_first(self, two_layers):
        layers, l1, l2 = two_layers
        plan = select_consumption(layers.active_layers(ORG, ITEM), 120, CostingMethod.FIFO)
        assert plan.total_cost == Decimal("1240.00")
        assert [(d.layer_id, d.quantity) for d in plan.draws] == [
            (l1.layer_id, Decimal("100")),
            (l2.layer_id, Decimal("20")),
        ]

    def test_selection_does_not_mutate(self, two_layers):
        layers, l1, _ = two_layers
        select_consumption(layers.active_layers(ORG, ITEM), 120, "fifo")
        assert layers.get_layer(l1.layer_id).quantity_remaining == Decimal("100")

    def test_draining_costs_the_drawn_layers_not_the_running_value(self, two_layers):
        layers, _, _ = two_layers
        plan = select_consumption(
            layers.active_layers(ORG, ITEM), 150, CostingMethod.FIFO,
            running_quantity=Decimal("150"),
            running_value=Decimal("1590.00"),
        )
        assert plan.total_cost == Decimal("1600.00")
        assert plan.total_cost == sum(d.total_cost for d in plan.layer_breakdown)


class TestLifo:
    def test_consumes_newest_first(self, two_layers):
        layers, _, l2 = two_layers
        plan = select_consumption(layers.active_layers(ORG, ITEM), 30, CostingMethod.LIFO)
        assert plan.total_cost == Decimal("360.00")
        assert len(plan.draws) == 1
        assert plan.draws[0].layer_id == l2.layer_id

    def test_spills_into_older_layers(self, two_layers):
        layers, l1, l2 = two_layers
        plan = select_consumption(layers.active_layers(ORG, ITEM), 60, "lifo")
        assert [d.layer_id for d in plan.draws] == [l2.layer_id, l1.layer_id]
        assert plan.total_cost == Decimal("700.00")  # 50×12 + 10×10

    def test_draining_ignores_running_value(self, two_layers):
        layers, _, _ = two_layers
        plan = select_consumption(
            layers.active_layers(ORG, ITEM), 150, "lifo",
            running_quantity=Decimal("150"),
            running_value=Decimal("1560.00"),
        )
        assert plan.total_cost == Decimal("1600.00")


class TestWeightedAverage:
    def test_cost_uses_average(self, two_layers):
        layers, _, _ = two_layers
        plan = select_consumption(
            layers.active_layers(ORG, ITEM), 120, CostingMethod.WEIGHTED_AVERAGE,
            average_cost=Decimal("10.6667"),
        )
        assert plan.total_cost == Decimal("1280.00")
        assert plan.priced_at == Decimal("10.6667")
        breakdown = plan.layer_breakdown
        assert len(breakdown) == 1
        assert breakdown[0].layer_id is None

    def test_layers_still_drawn_fifo(self, two_layers):
        layers, l1, l2 = two_layers
        plan = select_consumption(layers.active_layers(ORG, ITEM), 120, "wac")
        assert [d.layer_id for d in plan.draws] == [l1.layer_id, l2.layer_id]

    def test_average_computed_from_layers_when_missing(self, two_layers):
        layers, _, _ = two_layers
        plan = select_consumption(layers.active_layers(ORG, ITEM), 120, "weighted_average")
        assert plan.priced_at == Decimal("10.6667")

    def test_draining_takes_whole_running_value(self, two_layers):
        layers, _, _ = two_layers
        plan = select_consumption(
            layers.active_layers(ORG, ITEM), 150, CostingMethod.WEIGHTED_AVERAGE,
            average_cost=Decimal("10.6667"),
            running_quantity=Decimal("150"),
            running_value=Decimal("1600.00"),
        )
        assert plan.total_cost == Decimal("1600.00")


class TestSpecificIdentification:
    def test_draws_named_layer(self, two_layers):
        layers, _, l2 = two_layers
        plan = select_consumption(
            layers.active_layers(ORG, ITEM), 5, CostingMethod.SPECIFIC_IDENTIFICATION,
            layer_id=l2.layer_id,
        )
        assert plan.total_cost == Decimal("60.00")
        assert plan.draws[0].layer_id == l2.layer_id

    def test_requires_layer_id(self, two_layers):
        layers, _, _ = two_layers
        with pytest.raises(LayerSelectionRequired):
            select_consumption(layers.active_layers(ORG, ITEM), 5, "specific")

    def test_unknown_layer(self, two_layers):
        layers, _, _ = two_layers
        with pytest.raises(UnknownLayer):
            select_consumption(
                layers.active_layers(ORG, ITEM), 5, "specific", layer_id="nope",
            )

    def test_layer_of_other_item_is_unknown(self, two_layers):
        layers, _, _ = two_layers
        foreign = layers.create_layer(ORG, "OTHER", 5, 1, LayerSource.PURCHASE, date(2026, 1, 1))
        with pytest.raises(UnknownLayer):
            select_consumption(
                layers.active_layers(ORG, ITEM), 1, "specific", layer_id=foreign.layer_id,
            )

    def test_layer_too_small(self, two_layers):
        layers, _, l2 = two_layers
        with pytest.raises(InsufficientLayerQuantity):
            select_consumption(
                layers.active_layers(ORG, ITEM), 60, "specific", layer_id=l2.layer_id,
            )


class TestCommon:
    @pytest.mark.parametrize("method", list(CostingMethod))
    def test_insufficient_stock(self, two_layers, method):
        layers, l1, _ = two_layers
        with pytest.raises(InsufficientStock) as exc:
            select_consumption(
                layers.active_layers(ORG, ITEM), 151, method,
                layer_id=l1.layer_id if method is CostingMethod.SPECIFIC_IDENTIFICATION else None,
            )
        assert exc.value.requested == Decimal("151")
        assert exc.value.available == Decimal("150")
        assert exc.value.to_dict()["code"] == "INSUFFICIENT_STOCK"

    @pytest.mark.parametrize("method", ["fifo", "lifo", "wac"])
    def test_layer_id_rejected_outside_specific_identification(self, two_layers, method):
        layers, l1, _ = two_layers
        with pytest.raises(LayerSelectionNotAllowed) as exc:
            select_consumption(
                layers.active_layers(ORG, ITEM), 5, method, layer_id=l1.layer_id,
            )
        assert exc.value.to_dict()["code"] == "LAYER_SELECTION_NOT_ALLOWED"

    def test_unknown_method(self, two_layers):
        layers, _, _ = two_layers
        with pytest.raises(UnknownCostingMethod):
            select_consumption(layers.active_layers(ORG, ITEM), 1, "hifo")

    def test_registry_can_replace_a_strategy(self):
        original = get_strategy(CostingMethod.FIFO)

        class Recording(FifoStrategy):
            calls = 0

            def select(self, layers, quantity, context):
                Recording.calls += 1
                return super().select(layers, quantity, context)

        register_strategy(Recording())
        try:
            store = CostLayerStore(InMemoryCostingStore())
            store.create_layer(ORG, ITEM, 1, 1, LayerSource.PURCHASE, date(2026, 1, 1))
            select_consumption(store.active_layers(ORG, ITEM), 1, "fifo")
            assert Recording.calls == 1
        finally:
            register_strategy(original)
