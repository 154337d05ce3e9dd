"""
Kirana Costing Store — ORM Models
===================================
Relational shape of the costing engine's records.

RULES (NON-NEGOTIABLE):
- Ledger entries are INSERT only; corrections are new entries
- Cost layers may only change quantity_remaining after insert
- Nothing is ever deleted (dormant layers stay for audit)
- (organization_id, item_id, sequence) is unique per table

This file contains NO business logic.
"""

import uuid

from django.db import models

QUANTITY = {"max_digits": 18, "decimal_places": 4}
UNIT_COST = {"max_digits": 18, "decimal_places": 4}
MONEY = {"max_digits": 18, "decimal_places": 2}


# ══════════════════════════════════════════════════════════════
# ENUMS
# ══════════════════════════════════════════════════════════════

class LayerSourceChoice(models.TextChoices):
    PURCHASE = "purchase", "Purchase"
    ADJUSTMENT = "adjustment", "Adjustment"
    OPENING = "opening", "Opening stock"


class MovementTypeChoice(models.TextChoices):
    PURCHASE = "purchase", "Purchase"
    SALE = "sale", "Sale"
    ADJUSTMENT = "adjustment", "Adjustment"
    TRANSFER = "transfer", "Transfer"
    OPENING = "opening", "Opening stock"


class CostingMethodChoice(models.TextChoices):
    FIFO = "fifo", "FIFO"
    LIFO = "lifo", "LIFO"
    WEIGHTED_AVERAGE = "weighted_average", "Weighted average"
    SPECIFIC_IDENTIFICATION = "specific_identification", "Specific identification"


# ══════════════════════════════════════════════════════════════
# COST LAYER
# ══════════════════════════════════════════════════════════════

class CostLayerRecord(models.Model):
    """One receipt of stock at one unit cost."""

    layer_id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization_id = models.CharField(max_length=100)
    item_id = models.CharField(max_length=100)
    sequence = models.PositiveIntegerField(
        help_text="Per-item insertion order; breaks layer_date ties.",
    )
    layer_date = models.DateField()
    source = models.CharField(max_length=20, choices=LayerSourceChoice.choices)

    quantity_received = models.DecimalField(**QUANTITY)
    quantity_remaining = models.DecimalField(**QUANTITY)
    unit_cost = models.DecimalField(**UNIT_COST)

    # ── Provenance ────────────────────────────────────────────
    receipt_id = models.CharField(max_length=100, null=True, blank=True)
    supplier_id = models.CharField(max_length=100, null=True, blank=True)
    batch_number = models.CharField(max_length=100, null=True, blank=True)
    expiry_date = models.DateField(null=True, blank=True)
    reference_number = models.CharField(max_length=100, null=True, blank=True)

    created_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "kirana_cost_layers"
        ordering = ["layer_date", "sequence"]
        constraints = [
            models.UniqueConstraint(
                fields=("organization_id", "item_id", "sequence"),
                name="uq_layer_org_item_seq",
            ),
        ]
        indexes = [
            models.Index(
                fields=["organization_id", "item_id", "layer_date", "sequence"],
                name="idx_layer_item_order",
            ),
            models.Index(fields=["expiry_date"], name="idx_layer_expiry"),
        ]

    def save(self, *args, **kwargs):
        """GUARD: after insert only quantity_remaining may change."""
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if update_fields is None or set(update_fields) != {"quantity_remaining"}:
                raise PermissionError(
                    "Cost layers are immutable except for quantity_remaining."
                )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise PermissionError("Cost layers are never deleted; exhausted layers stay dormant.")

    def __str__(self):
        return f"[{self.item_id}#{self.sequence}] {self.quantity_remaining}@{self.unit_cost}"


# ══════════════════════════════════════════════════════════════
# LEDGER ENTRY
# ══════════════════════════════════════════════════════════════

class LedgerEntryRecord(models.Model):
    """One immutable stock movement."""

    entry_id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    organization_id = models.CharField(max_length=100)
    item_id = models.CharField(max_length=100)
    sequence = models.PositiveIntegerField()
    transaction_date = models.DateField()
    movement_type = models.CharField(max_length=20, choices=MovementTypeChoice.choices)

    quantity_delta = models.DecimalField(**QUANTITY)
    unit_cost = models.DecimalField(**UNIT_COST)
    total_cost_delta = models.DecimalField(**MONEY)
    running_quantity = models.DecimalField(**QUANTITY)
    running_value = models.DecimalField(**MONEY)
    average_cost = models.DecimalField(**UNIT_COST)

    note = models.TextField(blank=True, default="")
    reference_id = models.CharField(max_length=100, null=True, blank=True)
    recorded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "kirana_ledger_entries"
        ordering = ["organization_id", "item_id", "sequence"]
        constraints = [
            models.UniqueConstraint(
                fields=("organization_id", "item_id", "sequence"),
                name="uq_ledger_org_item_seq",
            ),
        ]
        indexes = [
            models.Index(
                fields=["organization_id", "item_id", "transaction_date"],
                name="idx_ledger_item_date",
            ),
        ]

    def save(self, *args, **kwargs):
        """GUARD: INSERT only."""
        if not self._state.adding:
            raise PermissionError(
                "Ledger entries are immutable. Post an adjustment instead."
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise PermissionError("Ledger entries are never deleted.")

    def __str__(self):
        return f"[{self.item_id}#{self.sequence}] {self.movement_type} {self.quantity_delta}"


# ══════════════════════════════════════════════════════════════
# COSTING METHOD ASSIGNMENT
# ══════════════════════════════════════════════════════════════

class CostingMethodRecord(models.Model):
    """item_id == "" marks the organization default."""

    organization_id = models.CharField(max_length=100)
    item_id = models.CharField(max_length=100, blank=True, default="")
    method = models.CharField(max_length=30, choices=CostingMethodChoice.choices)
    effective_from = models.DateField()

    class Meta:
        db_table = "kirana_costing_methods"
        ordering = ["organization_id", "item_id", "effective_from"]
        constraints = [
            models.UniqueConstraint(
                fields=("organization_id", "item_id", "effective_from"),
                name="uq_method_org_item_from",
            ),
        ]

    def __str__(self):
        return f"{self.organization_id}/{self.item_id or '*'}: {self.method} from {self.effective_from}"
