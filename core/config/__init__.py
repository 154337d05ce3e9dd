"""
Kirana Core Config — Public API
=================================
Operator-tunable engine settings.
"""

from core.config.settings import ENV_PREFIX, EngineSettings

__all__ = [
    "ENV_PREFIX",
    "EngineSettings",
]
