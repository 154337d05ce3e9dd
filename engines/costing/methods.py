"""
Kirana Costing Engine — Costing Methods
=========================================
Tagged costing-method variant plus per-organization / per-item
assignments with effective dates.

Resolution order for (organization, item, date):
1. the item's assignment effective on that date
2. the organization default effective on that date
3. the engine-wide default from EngineSettings
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional

from engines.costing.errors import UnknownCostingMethod


class CostingMethod(Enum):
    FIFO = "fifo"                                        # oldest layers first
    LIFO = "lifo"                                        # newest layers first
    WEIGHTED_AVERAGE = "weighted_average"                # FIFO draw, average cost
    SPECIFIC_IDENTIFICATION = "specific_identification"  # caller names the layer

    @classmethod
    def parse(cls, value) -> "CostingMethod":
        """Accept an enum member or its (case-insensitive) name/value/alias."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_").replace(" ", "_")
            key = _ALIASES.get(key, key)
            for member in cls:
                if member.value == key:
                    return member
        raise UnknownCostingMethod(value)


_ALIASES = {
    "wac": "weighted_average",
    "avg": "weighted_average",
    "average": "weighted_average",
    "specific": "specific_identification",
    "specific_id": "specific_identification",
}


@dataclass(frozen=True)
class CostingMethodAssignment:
    """A costing method in effect for an item, or an org default (item_id=None)."""
    organization_id: str
    method: CostingMethod
    effective_from: date
    item_id: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return self.item_id is None

    def to_dict(self) -> dict:
        return {
            "organization_id": self.organization_id,
            "item_id": self.item_id,
            "method": self.method.value,
            "effective_from": self.effective_from.isoformat(),
            "is_default": self.is_default,
        }


def _effective(
    assignments: Iterable[CostingMethodAssignment],
    item_id: Optional[str],
    on_date: date,
) -> Optional[CostingMethodAssignment]:
    candidates = [
        a for a in assignments
        if a.item_id == item_id and a.effective_from <= on_date
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda a: a.effective_from)


def resolve_costing_method(
    assignments: Iterable[CostingMethodAssignment],
    item_id: str,
    on_date: date,
    default: CostingMethod,
) -> CostingMethod:
    """Pick the method in effect for `item_id` on `on_date`."""
    assignments = tuple(assignments)
    for scope in (item_id, None):
        found = _effective(assignments, scope, on_date)
        if found is not None:
            return found.method
    return default
