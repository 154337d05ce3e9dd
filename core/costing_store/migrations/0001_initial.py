import uuid

from django.db import migrations, models

LAYER_SOURCES = [
    ("purchase", "Purchase"),
    ("adjustment", "Adjustment"),
    ("opening", "Opening stock"),
]

MOVEMENT_TYPES = [
    ("purchase", "Purchase"),
    ("sale", "Sale"),
    ("adjustment", "Adjustment"),
    ("transfer", "Transfer"),
    ("opening", "Opening stock"),
]

COSTING_METHODS = [
    ("fifo", "FIFO"),
    ("lifo", "LIFO"),
    ("weighted_average", "Weighted average"),
    ("specific_identification", "Specific identification"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="CostLayerRecord",
            fields=[
                (
                    "layer_id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("organization_id", models.CharField(max_length=100)),
                ("item_id", models.CharField(max_length=100)),
                (
                    "sequence",
                    models.PositiveIntegerField(
                        help_text="Per-item insertion order; breaks layer_date ties.",
                    ),
                ),
                ("layer_date", models.DateField()),
                ("source", models.CharField(choices=LAYER_SOURCES, max_length=20)),
                ("quantity_received", models.DecimalField(decimal_places=4, max_digits=18)),
                ("quantity_remaining", models.DecimalField(decimal_places=4, max_digits=18)),
                ("unit_cost", models.DecimalField(decimal_places=4, max_digits=18)),
                ("receipt_id", models.CharField(blank=True, max_length=100, null=True)),
                ("supplier_id", models.CharField(blank=True, max_length=100, null=True)),
                ("batch_number", models.CharField(blank=True, max_length=100, null=True)),
                ("expiry_date", models.DateField(blank=True, null=True)),
                ("reference_number", models.CharField(blank=True, max_length=100, null=True)),
                ("created_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "db_table": "kirana_cost_layers",
                "ordering": ["layer_date", "sequence"],
                "indexes": [
                    models.Index(
                        fields=["organization_id", "item_id", "layer_date", "sequence"],
                        name="idx_layer_item_order",
                    ),
                    models.Index(fields=["expiry_date"], name="idx_layer_expiry"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("organization_id", "item_id", "sequence"),
                        name="uq_layer_org_item_seq",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="LedgerEntryRecord",
            fields=[
                (
                    "entry_id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("organization_id", models.CharField(max_length=100)),
                ("item_id", models.CharField(max_length=100)),
                ("sequence", models.PositiveIntegerField()),
                ("transaction_date", models.DateField()),
                ("movement_type", models.CharField(choices=MOVEMENT_TYPES, max_length=20)),
                ("quantity_delta", models.DecimalField(decimal_places=4, max_digits=18)),
                ("unit_cost", models.DecimalField(decimal_places=4, max_digits=18)),
                ("total_cost_delta", models.DecimalField(decimal_places=2, max_digits=18)),
                ("running_quantity", models.DecimalField(decimal_places=4, max_digits=18)),
                ("running_value", models.DecimalField(decimal_places=2, max_digits=18)),
                ("average_cost", models.DecimalField(decimal_places=4, max_digits=18)),
                ("note", models.TextField(blank=True, default="")),
                ("reference_id", models.CharField(blank=True, max_length=100, null=True)),
                ("recorded_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "db_table": "kirana_ledger_entries",
                "ordering": ["organization_id", "item_id", "sequence"],
                "indexes": [
                    models.Index(
                        fields=["organization_id", "item_id", "transaction_date"],
                        name="idx_ledger_item_date",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("organization_id", "item_id", "sequence"),
                        name="uq_ledger_org_item_seq",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CostingMethodRecord",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("organization_id", models.CharField(max_length=100)),
                ("item_id", models.CharField(blank=True, default="", max_length=100)),
                ("method", models.CharField(choices=COSTING_METHODS, max_length=30)),
                ("effective_from", models.DateField()),
            ],
            options={
                "db_table": "kirana_costing_methods",
                "ordering": ["organization_id", "item_id", "effective_from"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("organization_id", "item_id", "effective_from"),
                        name="uq_method_org_item_from",
                    ),
                ],
            },
        ),
    ]
