"""
Kirana Costing Store — Django Repository
==========================================
CostingStore implementation backed by the Django ORM.

atomic() is transaction.atomic(): a failed engine operation rolls the
database back, so layers and ledger never disagree. Model imports are
deferred so engine code can import this module before Django is set up.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from django.db import transaction

from engines.costing.errors import UnknownLayer
from engines.costing.methods import CostingMethod, CostingMethodAssignment
from engines.costing.records import (
    CostLayer,
    LayerReference,
    LayerSource,
    LedgerEntry,
    MovementType,
)


def _as_uuid(value) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


# ══════════════════════════════════════════════════════════════
# ROW ↔ RECORD
# ══════════════════════════════════════════════════════════════

def _to_layer(row) -> CostLayer:
    return CostLayer(
        layer_id=str(row.layer_id),
        organization_id=row.organization_id,
        item_id=row.item_id,
        sequence=row.sequence,
        layer_date=row.layer_date,
        source=LayerSource(row.source),
        quantity_received=row.quantity_received,
        quantity_remaining=row.quantity_remaining,
        unit_cost=row.unit_cost,
        reference=LayerReference(
            receipt_id=row.receipt_id,
            supplier_id=row.supplier_id,
            batch_number=row.batch_number,
            expiry_date=row.expiry_date,
            reference_number=row.reference_number,
        ),
        created_at=row.created_at,
    )


def _to_entry(row) -> LedgerEntry:
    return LedgerEntry(
        entry_id=str(row.entry_id),
        organization_id=row.organization_id,
        item_id=row.item_id,
        sequence=row.sequence,
        transaction_date=row.transaction_date,
        movement_type=MovementType(row.movement_type),
        quantity_delta=row.quantity_delta,
        unit_cost=row.unit_cost,
        total_cost_delta=row.total_cost_delta,
        running_quantity=row.running_quantity,
        running_value=row.running_value,
        average_cost=row.average_cost,
        note=row.note,
        reference_id=row.reference_id,
        recorded_at=row.recorded_at,
    )


def _to_assignment(row) -> CostingMethodAssignment:
    return CostingMethodAssignment(
        organization_id=row.organization_id,
        method=CostingMethod(row.method),
        effective_from=row.effective_from,
        item_id=row.item_id or None,
    )


# ══════════════════════════════════════════════════════════════
# STORE
# ══════════════════════════════════════════════════════════════

class DjangoCostingStore:
    """Durable CostingStore; one instance may be shared across threads."""

    def __init__(self, using: str = "default"):
        self._using = using

    def atomic(self):
        return transaction.atomic(using=self._using)

    # ── Layers ────────────────────────────────────────────────

    def insert_layer(self, layer: CostLayer) -> CostLayer:
        from core.costing_store.models import CostLayerRecord

        ref = layer.reference
        CostLayerRecord.objects.using(self._using).create(
            layer_id=uuid.UUID(layer.layer_id),
            organization_id=layer.organization_id,
            item_id=layer.item_id,
            sequence=layer.sequence,
            layer_date=layer.layer_date,
            source=layer.source.value,
            quantity_received=layer.quantity_received,
            quantity_remaining=layer.quantity_remaining,
            unit_cost=layer.unit_cost,
            receipt_id=ref.receipt_id,
            supplier_id=ref.supplier_id,
            batch_number=ref.batch_number,
            expiry_date=ref.expiry_date,
            reference_number=ref.reference_number,
            created_at=layer.created_at,
        )
        return layer

    def get_layer(self, layer_id: str) -> Optional[CostLayer]:
        from core.costing_store.models import CostLayerRecord

        key = _as_uuid(layer_id)
        if key is None:
            return None
        row = CostLayerRecord.objects.using(self._using).filter(layer_id=key).first()
        return _to_layer(row) if row else None

    def list_layers(self, organization_id: str, item_id: str) -> List[CostLayer]:
        from core.costing_store.models import CostLayerRecord

        rows = (
            CostLayerRecord.objects.using(self._using)
            .filter(organization_id=organization_id, item_id=item_id)
            .order_by("layer_date", "sequence")
        )
        return [_to_layer(row) for row in rows]

    def update_layer_remaining(self, layer_id: str, quantity_remaining) -> CostLayer:
        from core.costing_store.models import CostLayerRecord

        key = _as_uuid(layer_id)
        row = (
            CostLayerRecord.objects.using(self._using).filter(layer_id=key).first()
            if key is not None else None
        )
        if row is None:
            raise UnknownLayer(layer_id)
        row.quantity_remaining = quantity_remaining
        row.save(using=self._using, update_fields=["quantity_remaining"])
        return _to_layer(row)

    # ── Ledger ────────────────────────────────────────────────

    def append_entry(self, entry: LedgerEntry) -> LedgerEntry:
        from core.costing_store.models import LedgerEntryRecord

        LedgerEntryRecord.objects.using(self._using).create(
            entry_id=uuid.UUID(entry.entry_id),
            organization_id=entry.organization_id,
            item_id=entry.item_id,
            sequence=entry.sequence,
            transaction_date=entry.transaction_date,
            movement_type=entry.movement_type.value,
            quantity_delta=entry.quantity_delta,
            unit_cost=entry.unit_cost,
            total_cost_delta=entry.total_cost_delta,
            running_quantity=entry.running_quantity,
            running_value=entry.running_value,
            average_cost=entry.average_cost,
            note=entry.note,
            reference_id=entry.reference_id,
            recorded_at=entry.recorded_at,
        )
        return entry

    def list_entries(self, organization_id: str, item_id: str) -> List[LedgerEntry]:
        from core.costing_store.models import LedgerEntryRecord

        rows = (
            LedgerEntryRecord.objects.using(self._using)
            .filter(organization_id=organization_id, item_id=item_id)
            .order_by("sequence")
        )
        return [_to_entry(row) for row in rows]

    def latest_entry(self, organization_id: str, item_id: str) -> Optional[LedgerEntry]:
        from core.costing_store.models import LedgerEntryRecord

        row = (
            LedgerEntryRecord.objects.using(self._using)
            .filter(organization_id=organization_id, item_id=item_id)
            .order_by("-sequence")
            .first()
        )
        return _to_entry(row) if row else None

    def list_item_ids(self, organization_id: str) -> List[str]:
        from core.costing_store.models import CostLayerRecord, LedgerEntryRecord

        item_ids = set()
        for model in (CostLayerRecord, LedgerEntryRecord):
            item_ids.update(
                model.objects.using(self._using)
                .filter(organization_id=organization_id)
                .values_list("item_id", flat=True)
                .distinct()
            )
        return sorted(item_ids)

    # ── Costing methods ───────────────────────────────────────

    def save_costing_method(self, assignment: CostingMethodAssignment) -> CostingMethodAssignment:
        from core.costing_store.models import CostingMethodRecord

        CostingMethodRecord.objects.using(self._using).update_or_create(
            organization_id=assignment.organization_id,
            item_id=assignment.item_id or "",
            effective_from=assignment.effective_from,
            defaults={"method": assignment.method.value},
        )
        return assignment

    def list_costing_methods(self, organization_id: str) -> List[CostingMethodAssignment]:
        from core.costing_store.models import CostingMethodRecord

        rows = CostingMethodRecord.objects.using(self._using).filter(
            organization_id=organization_id,
        )
        return [_to_assignment(row) for row in rows]
