"""
Kirana Core Config — Engine Settings
======================================
Operator-tunable settings for the valuation engine.

Sources (pick one at wiring time, nothing is read implicitly):
- EngineSettings()                        defaults
- EngineSettings.from_mapping({...})      plain dict (tests, JSON config)
- EngineSettings.from_env()               KIRANA_* environment variables
- EngineSettings.from_django_settings()   settings.KIRANA_COSTING dict
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

ENV_PREFIX = "KIRANA_"

_FIELDS = (
    "lock_timeout_seconds",
    "default_costing_method",
    "expiry_warning_days",
    "reorder_floor_quantity",
)


@dataclass(frozen=True)
class EngineSettings:
    """
    lock_timeout_seconds:    max wait for a per-item critical section
    default_costing_method:  method used when no assignment applies
    expiry_warning_days:     window for expiring-batch reports
    reorder_floor_quantity:  minimum suggested reorder quantity
    """

    lock_timeout_seconds: float = 5.0
    default_costing_method: Any = "fifo"
    expiry_warning_days: int = 30
    reorder_floor_quantity: int = 10

    def __post_init__(self) -> None:
        from engines.costing.methods import CostingMethod

        try:
            timeout = float(self.lock_timeout_seconds)
            expiry_days = int(self.expiry_warning_days)
            reorder_floor = int(self.reorder_floor_quantity)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid engine setting: {exc}") from exc
        if timeout < 0:
            raise ValueError("lock_timeout_seconds cannot be negative.")
        if expiry_days < 0:
            raise ValueError("expiry_warning_days cannot be negative.")
        if reorder_floor < 0:
            raise ValueError("reorder_floor_quantity cannot be negative.")

        object.__setattr__(self, "lock_timeout_seconds", timeout)
        object.__setattr__(self, "expiry_warning_days", expiry_days)
        object.__setattr__(self, "reorder_floor_quantity", reorder_floor)
        object.__setattr__(
            self,
            "default_costing_method",
            CostingMethod.parse(self.default_costing_method),
        )

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]]) -> "EngineSettings":
        values = dict(values or {})
        unknown = sorted(set(values) - set(_FIELDS))
        if unknown:
            raise ValueError(f"Unknown engine settings: {', '.join(unknown)}.")
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        environ = os.environ if environ is None else environ
        values = {}
        for name in _FIELDS:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None and raw.strip():
                values[name] = raw.strip()
        return cls(**values)

    @classmethod
    def from_django_settings(cls) -> "EngineSettings":
        from django.conf import settings

        return cls.from_mapping(getattr(settings, "KIRANA_COSTING", None))
