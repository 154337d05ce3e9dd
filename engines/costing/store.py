"""
Kirana Costing Engine — Costing Store
=======================================
Protocol + InMemory implementation for cost-layer and ledger storage.

Doctrine:
- The store is a dependency injection point (testable, swappable).
- InMemory store is deterministic and used in tests and bootstrap.
- The Django ORM store lives in core.costing_store (adapters layer).
- The store does not validate business rules; CostLayerStore and
  TransactionLedger own the invariants. It only keeps records and
  makes a unit of work all-or-nothing through atomic().
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, ContextManager, Dict, Iterator, List, Optional, Protocol, Tuple

from engines.costing.errors import UnknownLayer
from engines.costing.methods import CostingMethodAssignment
from engines.costing.records import CostLayer, LedgerEntry

logger = logging.getLogger("kirana.store")


# ══════════════════════════════════════════════════════════════
# PROTOCOL
# ══════════════════════════════════════════════════════════════

class CostingStore(Protocol):
    def atomic(self) -> ContextManager[None]:
        """Unit of work: every write inside commits together or not at all."""
        ...

    def insert_layer(self, layer: CostLayer) -> CostLayer:
        ...

    def get_layer(self, layer_id: str) -> Optional[CostLayer]:
        ...

    def list_layers(self, organization_id: str, item_id: str) -> List[CostLayer]:
        """All layers (dormant included), ordered by (layer_date, sequence)."""
        ...

    def update_layer_remaining(self, layer_id: str, quantity_remaining: Decimal) -> CostLayer:
        ...

    def append_entry(self, entry: LedgerEntry) -> LedgerEntry:
        ...

    def list_entries(self, organization_id: str, item_id: str) -> List[LedgerEntry]:
        """All ledger entries for the item, in sequence order."""
        ...

    def latest_entry(self, organization_id: str, item_id: str) -> Optional[LedgerEntry]:
        ...

    def list_item_ids(self, organization_id: str) -> List[str]:
        """Items with at least one layer or ledger entry, sorted."""
        ...

    def save_costing_method(self, assignment: CostingMethodAssignment) -> CostingMethodAssignment:
        """Insert, or replace the assignment with the same (item, effective_from)."""
        ...

    def list_costing_methods(self, organization_id: str) -> List[CostingMethodAssignment]:
        ...


# ══════════════════════════════════════════════════════════════
# IN-MEMORY STORE
# ══════════════════════════════════════════════════════════════

_ItemKey = Tuple[str, str]  # (organization_id, item_id)
_Undo = Callable[[], None]


@dataclass
class _ItemBucket:
    layers: List[CostLayer] = field(default_factory=list)     # insertion order
    entries: List[LedgerEntry] = field(default_factory=list)  # sequence order


class InMemoryCostingStore:
    """
    Thread-safe in-memory costing store.

    atomic() keeps a thread-local undo journal; any exception raised
    inside the block replays the journal in reverse before propagating.
    Nested atomic() blocks join the outermost unit of work.

    Readers get copies of frozen records, so they never observe a
    half-written record. They may observe an in-flight unit of work
    from another thread (eventually consistent reads).
    """

    def __init__(self) -> None:
        self._guard = threading.RLock()
        self._buckets: Dict[_ItemKey, _ItemBucket] = {}
        self._layer_index: Dict[str, Tuple[_ItemKey, int]] = {}
        self._methods: Dict[str, List[CostingMethodAssignment]] = {}
        self._local = threading.local()

    # ── Unit of work ──────────────────────────────────────────

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if getattr(self._local, "journal", None) is not None:
            yield
            return
        journal: List[_Undo] = []
        self._local.journal = journal
        try:
            yield
        except BaseException:
            self._rollback(journal)
            raise
        finally:
            self._local.journal = None

    def _record(self, undo: _Undo) -> None:
        journal = getattr(self._local, "journal", None)
        if journal is not None:
            journal.append(undo)

    def _rollback(self, journal: List[_Undo]) -> None:
        if not journal:
            return
        logger.warning("Rolling back %d store write(s).", len(journal))
        with self._guard:
            for undo in reversed(journal):
                undo()

    def _bucket(self, organization_id: str, item_id: str) -> _ItemBucket:
        key = (organization_id, item_id)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _ItemBucket()
            self._buckets[key] = bucket
        return bucket

    # ── Layers ────────────────────────────────────────────────

    def insert_layer(self, layer: CostLayer) -> CostLayer:
        with self._guard:
            key = (layer.organization_id, layer.item_id)
            bucket = self._bucket(*key)
            self._layer_index[layer.layer_id] = (key, len(bucket.layers))
            bucket.layers.append(layer)

            def undo() -> None:
                bucket.layers.pop()
                self._layer_index.pop(layer.layer_id, None)

            self._record(undo)
        return layer

    def get_layer(self, layer_id: str) -> Optional[CostLayer]:
        with self._guard:
            located = self._layer_index.get(layer_id)
            if located is None:
                return None
            key, position = located
            return self._buckets[key].layers[position]

    def list_layers(self, organization_id: str, item_id: str) -> List[CostLayer]:
        with self._guard:
            bucket = self._buckets.get((organization_id, item_id))
            layers = list(bucket.layers) if bucket else []
        return sorted(layers, key=lambda layer: layer.sort_key)

    def update_layer_remaining(self, layer_id: str, quantity_remaining: Decimal) -> CostLayer:
        with self._guard:
            located = self._layer_index.get(layer_id)
            if located is None:
                raise UnknownLayer(layer_id)
            key, position = located
            layers = self._buckets[key].layers
            previous = layers[position]
            updated = previous.with_remaining(quantity_remaining)
            layers[position] = updated

            def undo() -> None:
                layers[position] = previous

            self._record(undo)
        return updated

    # ── Ledger ────────────────────────────────────────────────

    def append_entry(self, entry: LedgerEntry) -> LedgerEntry:
        with self._guard:
            entries = self._bucket(entry.organization_id, entry.item_id).entries
            entries.append(entry)
            self._record(entries.pop)
        return entry

    def list_entries(self, organization_id: str, item_id: str) -> List[LedgerEntry]:
        with self._guard:
            bucket = self._buckets.get((organization_id, item_id))
            return list(bucket.entries) if bucket else []

    def latest_entry(self, organization_id: str, item_id: str) -> Optional[LedgerEntry]:
        with self._guard:
            bucket = self._buckets.get((organization_id, item_id))
            if not bucket or not bucket.entries:
                return None
            return bucket.entries[-1]

    def list_item_ids(self, organization_id: str) -> List[str]:
        with self._guard:
            return sorted(
                item_id for (org, item_id), bucket in self._buckets.items()
                if org == organization_id and (bucket.layers or bucket.entries)
            )

    # ── Costing methods ───────────────────────────────────────

    def save_costing_method(self, assignment: CostingMethodAssignment) -> CostingMethodAssignment:
        with self._guard:
            rows = self._methods.setdefault(assignment.organization_id, [])
            snapshot = list(rows)
            rows[:] = [
                a for a in rows
                if not (a.item_id == assignment.item_id
                        and a.effective_from == assignment.effective_from)
            ]
            rows.append(assignment)

            def undo() -> None:
                rows[:] = snapshot

            self._record(undo)
        return assignment

    def list_costing_methods(self, organization_id: str) -> List[CostingMethodAssignment]:
        with self._guard:
            return list(self._methods.get(organization_id, ()))
