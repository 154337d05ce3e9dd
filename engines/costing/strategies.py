"""
Kirana Costing Engine — Costing Strategies
============================================
Pluggable algorithms that decide which layers satisfy a withdrawal
and what cost the withdrawal carries.

RULES (NON-NEGOTIABLE):
- FIFO: walk active layers oldest → newest, greedy
- LIFO: walk active layers newest → oldest, greedy
- WEIGHTED_AVERAGE: layers drawn FIFO (keeps layer accounting
  consistent) but cost = quantity × current average cost
- SPECIFIC_IDENTIFICATION: the caller names the layer; only that
  layer is drawn
- Not enough active stock → InsufficientStock; a plan is all or nothing
- FIFO / LIFO / SPECIFIC cost is exactly the sum of the drawn layers
- WEIGHTED_AVERAGE: draining the item to zero takes the whole running
  value as cost, so average-cost residue never outlives the stock
- layer_id is accepted only under SPECIFIC_IDENTIFICATION

Selection is read-only: a ConsumptionPlan describes the draws, the
engine applies them inside the item's critical section.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from core.primitives.amounts import quantize_money, safe_average
from engines.costing.errors import (
    InsufficientLayerQuantity,
    InsufficientStock,
    LayerSelectionNotAllowed,
    LayerSelectionRequired,
    UnknownCostingMethod,
    UnknownLayer,
)
from engines.costing.layers import ActiveLayers, parse_quantity
from engines.costing.methods import CostingMethod
from engines.costing.records import CostLayer


# ══════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LayerDraw:
    """Quantity taken from one layer (layer_id=None for a synthetic line)."""
    layer_id: Optional[str]
    quantity: Decimal
    unit_cost: Decimal

    @property
    def total_cost(self) -> Decimal:
        return quantize_money(self.quantity * self.unit_cost)

    def to_dict(self) -> dict:
        return {
            "layer_id": self.layer_id,
            "quantity": str(self.quantity),
            "unit_cost": str(self.unit_cost),
            "total_cost": str(self.total_cost),
        }


@dataclass(frozen=True)
class ConsumptionPlan:
    """
    Result of a selection: which layers to decrement and the COGS.

    draws:        physical layer decrements, in consumption order
    total_cost:   cost of goods sold (money precision)
    priced_at:    average unit cost used (WEIGHTED_AVERAGE only)
    """
    item_id: str
    method: CostingMethod
    quantity: Decimal
    draws: Tuple[LayerDraw, ...]
    total_cost: Decimal
    priced_at: Optional[Decimal] = None

    @property
    def average_unit_cost(self) -> Decimal:
        return safe_average(self.total_cost, self.quantity)

    @property
    def layer_breakdown(self) -> Tuple[LayerDraw, ...]:
        """Cost view for the caller: one synthetic line under WAC."""
        if self.priced_at is not None:
            return (LayerDraw(layer_id=None, quantity=self.quantity, unit_cost=self.priced_at),)
        return self.draws

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "method": self.method.value,
            "quantity": str(self.quantity),
            "total_cost": str(self.total_cost),
            "average_unit_cost": str(self.average_unit_cost),
            "layer_breakdown": [d.to_dict() for d in self.layer_breakdown],
        }


# COGS reports are consumption plans seen from the caller's side.
CogsResult = ConsumptionPlan


@dataclass(frozen=True)
class SelectionContext:
    """Item state a strategy may need besides the layers."""
    average_cost: Optional[Decimal] = None
    running_quantity: Optional[Decimal] = None
    running_value: Optional[Decimal] = None
    layer_id: Optional[str] = None


# ══════════════════════════════════════════════════════════════
# STRATEGY PROTOCOL + HELPERS
# ══════════════════════════════════════════════════════════════

class CostingStrategy(Protocol):
    method: CostingMethod

    def select(
        self,
        layers: ActiveLayers,
        quantity: Decimal,
        context: SelectionContext,
    ) -> ConsumptionPlan:
        ...


def _require_stock(item_id: str, loaded: List[CostLayer], quantity: Decimal) -> None:
    available = sum((layer.quantity_remaining for layer in loaded), Decimal(0))
    if available < quantity:
        raise InsufficientStock(item_id, quantity, available)


def _greedy(ordered: Iterable[CostLayer], quantity: Decimal) -> Tuple[LayerDraw, ...]:
    remaining = quantity
    draws: List[LayerDraw] = []
    for layer in ordered:
        if remaining <= 0:
            break
        take = min(layer.quantity_remaining, remaining)
        draws.append(LayerDraw(layer.layer_id, take, layer.unit_cost))
        remaining -= take
    return tuple(draws)


def _average_priced(
    quantity: Decimal,
    cost: Decimal,
    context: SelectionContext,
) -> Decimal:
    """Weighted-average COGS; a withdrawal that drains the item takes its whole running value."""
    if (
        context.running_quantity is not None
        and context.running_value is not None
        and quantity == context.running_quantity
    ):
        return context.running_value
    return quantize_money(cost)


# ══════════════════════════════════════════════════════════════
# STRATEGIES
# ══════════════════════════════════════════════════════════════

class FifoStrategy:
    method = CostingMethod.FIFO

    def select(self, layers, quantity, context):
        loaded = list(layers)
        _require_stock(layers.item_id, loaded, quantity)
        draws = _greedy(loaded, quantity)
        raw = sum((d.quantity * d.unit_cost for d in draws), Decimal(0))
        return ConsumptionPlan(
            item_id=layers.item_id,
            method=self.method,
            quantity=quantity,
            draws=draws,
            total_cost=quantize_money(raw),
        )


class LifoStrategy:
    method = CostingMethod.LIFO

    def select(self, layers, quantity, context):
        loaded = list(layers)
        _require_stock(layers.item_id, loaded, quantity)
        draws = _greedy(reversed(loaded), quantity)
        raw = sum((d.quantity * d.unit_cost for d in draws), Decimal(0))
        return ConsumptionPlan(
            item_id=layers.item_id,
            method=self.method,
            quantity=quantity,
            draws=draws,
            total_cost=quantize_money(raw),
        )


class WeightedAverageStrategy:
    method = CostingMethod.WEIGHTED_AVERAGE

    def select(self, layers, quantity, context):
        loaded = list(layers)
        _require_stock(layers.item_id, loaded, quantity)
        average = context.average_cost
        if average is None:
            value = sum((layer.quantity_remaining * layer.unit_cost for layer in loaded), Decimal(0))
            available = sum((layer.quantity_remaining for layer in loaded), Decimal(0))
            average = safe_average(value, available)
        draws = _greedy(loaded, quantity)
        return ConsumptionPlan(
            item_id=layers.item_id,
            method=self.method,
            quantity=quantity,
            draws=draws,
            total_cost=_average_priced(quantity, quantity * average, context),
            priced_at=average,
        )


class SpecificIdentificationStrategy:
    method = CostingMethod.SPECIFIC_IDENTIFICATION

    def select(self, layers, quantity, context):
        if not context.layer_id:
            raise LayerSelectionRequired(layers.item_id)
        loaded = list(layers)
        _require_stock(layers.item_id, loaded, quantity)
        layer = layers.find(context.layer_id)
        if layer is None:
            raise UnknownLayer(context.layer_id, layers.item_id)
        if layer.quantity_remaining < quantity:
            raise InsufficientLayerQuantity(layer.layer_id, quantity, layer.quantity_remaining)
        draw = LayerDraw(layer.layer_id, quantity, layer.unit_cost)
        return ConsumptionPlan(
            item_id=layers.item_id,
            method=self.method,
            quantity=quantity,
            draws=(draw,),
            total_cost=quantize_money(quantity * layer.unit_cost),
        )


# ══════════════════════════════════════════════════════════════
# REGISTRY
# ══════════════════════════════════════════════════════════════

_STRATEGIES: Dict[CostingMethod, CostingStrategy] = {}


def register_strategy(strategy: CostingStrategy) -> None:
    """Install (or replace) the strategy for strategy.method."""
    _STRATEGIES[strategy.method] = strategy


def get_strategy(method) -> CostingStrategy:
    resolved = CostingMethod.parse(method)
    strategy = _STRATEGIES.get(resolved)
    if strategy is None:
        raise UnknownCostingMethod(method)
    return strategy


for _strategy in (
    FifoStrategy(),
    LifoStrategy(),
    WeightedAverageStrategy(),
    SpecificIdentificationStrategy(),
):
    register_strategy(_strategy)


def select_consumption(
    layers: ActiveLayers,
    quantity,
    method,
    *,
    average_cost: Optional[Decimal] = None,
    layer_id: Optional[str] = None,
    running_quantity: Optional[Decimal] = None,
    running_value: Optional[Decimal] = None,
) -> ConsumptionPlan:
    """Select layers for `quantity` units under `method` (read-only)."""
    qty = parse_quantity(quantity)
    context = SelectionContext(
        average_cost=average_cost,
        running_quantity=running_quantity,
        running_value=running_value,
        layer_id=layer_id,
    )
    strategy = get_strategy(method)
    if layer_id is not None and strategy.method is not CostingMethod.SPECIFIC_IDENTIFICATION:
        raise LayerSelectionNotAllowed(layers.item_id, strategy.method)
    return strategy.select(layers, qty, context)
