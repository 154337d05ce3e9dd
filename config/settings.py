"""
Kirana – Django Settings (Infrastructure Only)
================================================
Django hosts the optional durable costing store.
The valuation engine itself does not depend on Django; it runs on the
in-memory store unless core.costing_store.repository is wired in.
"""

import os
from pathlib import Path

# ── Paths ─────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent

# ── Security ──────────────────────────────────────────────────
SECRET_KEY = os.environ.get("KIRANA_SECRET_KEY", "kirana-dev-key-replace-before-deployment")

DEBUG = os.environ.get("KIRANA_DEBUG", "1") == "1"

ALLOWED_HOSTS = []

# ── Installed Apps ────────────────────────────────────────────
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    # ── Kirana Modules ────────────────────────────────────
    "core.costing_store",
]

MIDDLEWARE = []

# ── Database ──────────────────────────────────────────────────
# SQLite for development. Production DB configured separately.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get("KIRANA_DB_PATH", BASE_DIR / "db.sqlite3"),
    }
}

# ── Internationalization ──────────────────────────────────────
LANGUAGE_CODE = "en-in"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ── Costing Engine ────────────────────────────────────────────
# Read by EngineSettings.from_django_settings().
KIRANA_COSTING = {
    "lock_timeout_seconds": 5.0,
    "default_costing_method": "fifo",
    "expiry_warning_days": 30,
    "reorder_floor_quantity": 10,
}

# ── Logging ───────────────────────────────────────────────────
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "loggers": {
        "kirana": {
            "handlers": ["console"],
            "level": os.environ.get("KIRANA_LOG_LEVEL", "INFO"),
        },
    },
}
