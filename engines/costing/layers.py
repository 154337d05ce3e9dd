"""
Kirana Costing Engine — Cost Layer Store
==========================================
Create, consume and enumerate cost layers for an item.

RULES (NON-NEGOTIABLE):
- quantity_received > 0, unit_cost >= 0 (rejected before any write)
- quantity_remaining only goes down, never below zero
- Exhausted layers stay in the store (audit) but are dormant:
  active_layers() skips them
- Ordering is deterministic: layer_date, then insertion sequence

A "layer" is a batch of stock received together at one unit cost.
Each purchase, opening balance or positive adjustment creates one.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Iterator, List, Optional

from core.primitives.amounts import (
    Number,
    quantize_quantity,
    quantize_unit_cost,
    to_decimal,
)
from engines.costing.errors import (
    InsufficientLayerQuantity,
    InvalidCost,
    InvalidQuantity,
    UnknownLayer,
)
from engines.costing.records import CostLayer, LayerReference, LayerSource
from engines.costing.store import CostingStore


def parse_quantity(value: Number) -> Decimal:
    """Positive quantity at quantity precision, or InvalidQuantity."""
    try:
        quantity = quantize_quantity(to_decimal(value, field_name="quantity"))
    except ValueError:
        raise InvalidQuantity(value, "is not a number in range") from None
    if quantity <= 0:
        raise InvalidQuantity(value)
    return quantity


def parse_unit_cost(value: Number) -> Decimal:
    """Non-negative unit cost at unit-cost precision, or InvalidCost."""
    try:
        unit_cost = quantize_unit_cost(to_decimal(value, field_name="unit_cost"))
    except ValueError:
        raise InvalidCost(value) from None
    if unit_cost < 0:
        raise InvalidCost(value)
    return unit_cost


# ══════════════════════════════════════════════════════════════
# ACTIVE LAYER SEQUENCE
# ══════════════════════════════════════════════════════════════

class ActiveLayers:
    """
    Lazy, restartable view of an item's non-dormant layers.

    Every iteration re-reads the store, so a view created before a
    consumption reflects it on the next pass. reversed() walks
    newest → oldest (LIFO order).
    """

    def __init__(self, store: CostingStore, organization_id: str, item_id: str):
        self._store = store
        self.organization_id = organization_id
        self.item_id = item_id

    def _load(self) -> List[CostLayer]:
        return [
            layer
            for layer in self._store.list_layers(self.organization_id, self.item_id)
            if not layer.is_dormant
        ]

    def __iter__(self) -> Iterator[CostLayer]:
        return iter(self._load())

    def __reversed__(self) -> Iterator[CostLayer]:
        return reversed(self._load())

    def total_quantity(self) -> Decimal:
        return sum((layer.quantity_remaining for layer in self), Decimal(0))

    def find(self, layer_id: str) -> Optional[CostLayer]:
        """Look a layer of this item up by id, dormant layers included."""
        for layer in self._store.list_layers(self.organization_id, self.item_id):
            if layer.layer_id == layer_id:
                return layer
        return None


# ══════════════════════════════════════════════════════════════
# COST LAYER STORE
# ══════════════════════════════════════════════════════════════

class CostLayerStore:
    """
    Invariant-enforcing facade over the layer half of a CostingStore.

    Callers that mutate (create / consume) must hold the item's
    critical section; the engine service takes care of that.
    """

    def __init__(self, store: CostingStore):
        self._store = store

    def create_layer(
        self,
        organization_id: str,
        item_id: str,
        quantity: Number,
        unit_cost: Number,
        source: LayerSource,
        layer_date: date,
        reference: Optional[LayerReference] = None,
        created_at: Optional[datetime] = None,
    ) -> CostLayer:
        """Add a new layer with quantity_remaining == quantity."""
        qty = parse_quantity(quantity)
        cost = parse_unit_cost(unit_cost)
        if not isinstance(source, LayerSource):
            raise ValueError(f"source must be LayerSource, got {source!r}.")

        existing = self._store.list_layers(organization_id, item_id)
        sequence = max((layer.sequence for layer in existing), default=0) + 1
        layer = CostLayer(
            layer_id=str(uuid.uuid4()),
            organization_id=organization_id,
            item_id=item_id,
            sequence=sequence,
            layer_date=layer_date,
            source=source,
            quantity_received=qty,
            quantity_remaining=qty,
            unit_cost=cost,
            reference=reference or LayerReference(),
            created_at=created_at,
        )
        return self._store.insert_layer(layer)

    def consume_from_layer(self, layer_id: str, quantity: Number) -> Decimal:
        """Decrement one layer; returns the quantity consumed."""
        qty = parse_quantity(quantity)
        layer = self._store.get_layer(layer_id)
        if layer is None:
            raise UnknownLayer(layer_id)
        if qty > layer.quantity_remaining:
            raise InsufficientLayerQuantity(layer_id, qty, layer.quantity_remaining)
        self._store.update_layer_remaining(layer_id, layer.quantity_remaining - qty)
        return qty

    def get_layer(self, layer_id: str) -> CostLayer:
        layer = self._store.get_layer(layer_id)
        if layer is None:
            raise UnknownLayer(layer_id)
        return layer

    def active_layers(self, organization_id: str, item_id: str) -> ActiveLayers:
        return ActiveLayers(self._store, organization_id, item_id)

    def layers(self, organization_id: str, item_id: str) -> List[CostLayer]:
        """All layers including dormant ones (audit view)."""
        return self._store.list_layers(organization_id, item_id)
