"""
Kirana Core — Costing Store App Configuration
===============================================
Durable storage for cost layers, the transaction ledger and
costing-method assignments.

This app:
- Persists layers, ledger entries and method assignments
- Enforces (organization, item, sequence) uniqueness
- Refuses updates to ledger rows and deletes of any row

This app does NOT:
- Select layers or compute costs (engines.costing does)
- Validate quantities or costs
"""

from django.apps import AppConfig


class CostingStoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "core.costing_store"
    label = "costing_store"
    verbose_name = "Kirana Costing Store"
