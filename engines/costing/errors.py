"""
Kirana Costing Engine — Errors
================================
Error taxonomy for the valuation engine.

- Input errors (also ValueError): rejected before any state change.
- Business-rule errors: rejected, no partial effect.
- NegativeStock: internal-consistency failure, never swallowed.
- Busy: lock contention, retryable (re-exported from core.locking).

Every error carries a machine-readable `code` and enough context
(item, requested vs available) for the caller to explain it.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

from core.locking.errors import Busy


class CostingError(Exception):
    """Base error for the costing engine."""

    code = "COSTING_ERROR"

    def context(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": str(self)}
        data.update(
            {k: (str(v) if isinstance(v, Decimal) else v) for k, v in self.context().items()}
        )
        return data


# ══════════════════════════════════════════════════════════════
# INPUT VALIDATION
# ══════════════════════════════════════════════════════════════

class InvalidQuantity(CostingError, ValueError):
    code = "INVALID_QUANTITY"

    def __init__(self, quantity: Any, detail: str = "must be positive"):
        self.quantity = quantity
        super().__init__(f"Quantity {quantity!r} {detail}.")

    def context(self) -> Dict[str, Any]:
        return {"quantity": self.quantity}


class InvalidCost(CostingError, ValueError):
    code = "INVALID_COST"

    def __init__(self, unit_cost: Any, detail: str = "must be a non-negative number"):
        self.unit_cost = unit_cost
        super().__init__(f"Unit cost {unit_cost!r} {detail}.")

    def context(self) -> Dict[str, Any]:
        return {"unit_cost": self.unit_cost}


class InvalidAdjustmentReason(CostingError, ValueError):
    code = "INVALID_ADJUSTMENT_REASON"

    def __init__(self, reason: Any):
        self.reason = reason
        super().__init__(f"Adjustment reason {reason!r} is not recognised.")

    def context(self) -> Dict[str, Any]:
        return {"reason": self.reason}


class OutOfOrderEntry(CostingError, ValueError):
    """A ledger entry dated before the item's latest entry."""

    code = "OUT_OF_ORDER_ENTRY"

    def __init__(self, item_id: str, transaction_date, latest_date):
        self.item_id = item_id
        self.transaction_date = transaction_date
        self.latest_date = latest_date
        super().__init__(
            f"Cannot post {transaction_date.isoformat()} for item {item_id}: "
            f"ledger already has an entry dated {latest_date.isoformat()}."
        )

    def context(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "transaction_date": self.transaction_date.isoformat(),
            "latest_date": self.latest_date.isoformat(),
        }


class UnknownLayer(CostingError, ValueError):
    code = "UNKNOWN_LAYER"

    def __init__(self, layer_id: Any, item_id: Optional[str] = None):
        self.layer_id = layer_id
        self.item_id = item_id
        suffix = f" for item {item_id}" if item_id else ""
        super().__init__(f"Cost layer {layer_id!r} not found{suffix}.")

    def context(self) -> Dict[str, Any]:
        return {"layer_id": self.layer_id, "item_id": self.item_id}


class LayerSelectionRequired(CostingError, ValueError):
    """Specific identification needs the caller to name the layer."""

    code = "LAYER_SELECTION_REQUIRED"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(
            f"Item {item_id} uses specific identification; a layer_id is required."
        )

    def context(self) -> Dict[str, Any]:
        return {"item_id": self.item_id}


class LayerSelectionNotAllowed(CostingError, ValueError):
    """Only specific identification draws from a caller-named layer."""

    code = "LAYER_SELECTION_NOT_ALLOWED"

    def __init__(self, item_id: str, method: Any):
        self.item_id = item_id
        self.method = method
        label = getattr(method, "value", method)
        super().__init__(
            f"Item {item_id}: layer_id is only accepted for specific-identification "
            f"withdrawals, not {label}."
        )

    def context(self) -> Dict[str, Any]:
        return {"item_id": self.item_id, "method": getattr(self.method, "value", self.method)}


class UnknownCostingMethod(CostingError, ValueError):
    code = "UNKNOWN_COSTING_METHOD"

    def __init__(self, method: Any):
        self.method = method
        super().__init__(f"Costing method {method!r} is not supported.")

    def context(self) -> Dict[str, Any]:
        return {"method": repr(self.method)}


# ══════════════════════════════════════════════════════════════
# BUSINESS RULES
# ══════════════════════════════════════════════════════════════

class InsufficientStock(CostingError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, item_id: str, requested: Decimal, available: Decimal):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for item {item_id}: "
            f"{requested} requested, {available} available."
        )

    def context(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "requested": self.requested,
            "available": self.available,
        }


class InsufficientLayerQuantity(CostingError):
    code = "INSUFFICIENT_LAYER_QUANTITY"

    def __init__(self, layer_id: str, requested: Decimal, available: Decimal):
        self.layer_id = layer_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cost layer {layer_id} has {available} remaining; "
            f"{requested} requested."
        )

    def context(self) -> Dict[str, Any]:
        return {
            "layer_id": self.layer_id,
            "requested": self.requested,
            "available": self.available,
        }


# ══════════════════════════════════════════════════════════════
# INTERNAL CONSISTENCY
# ══════════════════════════════════════════════════════════════

class NegativeStock(CostingError):
    """
    The ledger would go below zero.

    Upstream selection should already have raised InsufficientStock;
    reaching this means an internal bug. The operation is aborted.
    """

    code = "NEGATIVE_STOCK"

    def __init__(self, item_id: str, running_quantity: Decimal, quantity_delta: Decimal):
        self.item_id = item_id
        self.running_quantity = running_quantity
        self.quantity_delta = quantity_delta
        super().__init__(
            f"Ledger for item {item_id} would go negative: "
            f"running quantity {running_quantity}, delta {quantity_delta}."
        )

    def context(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "running_quantity": self.running_quantity,
            "quantity_delta": self.quantity_delta,
        }


class ConservationViolation(CostingError, AssertionError):
    code = "CONSERVATION_VIOLATION"

    def __init__(self, item_id: str, layer_quantity: Decimal, ledger_quantity: Decimal):
        self.item_id = item_id
        self.layer_quantity = layer_quantity
        self.ledger_quantity = ledger_quantity
        super().__init__(
            f"Item {item_id}: layers hold {layer_quantity} but ledger "
            f"shows {ledger_quantity}."
        )

    def context(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "layer_quantity": self.layer_quantity,
            "ledger_quantity": self.ledger_quantity,
        }


__all__ = [
    "Busy",
    "CostingError",
    "ConservationViolation",
    "InsufficientLayerQuantity",
    "InsufficientStock",
    "InvalidAdjustmentReason",
    "InvalidCost",
    "InvalidQuantity",
    "LayerSelectionNotAllowed",
    "LayerSelectionRequired",
    "NegativeStock",
    "OutOfOrderEntry",
    "UnknownCostingMethod",
    "UnknownLayer",
]
