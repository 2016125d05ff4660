from __future__ import annotations

import logging
import os
import sys
from pathlib import Path


# ======================================================
# PATHS / SECRETS
# ======================================================
BASE_DIR = Path(__file__).resolve().parent

DATA_DIR = Path(os.environ.get("DATA_DIR", str(BASE_DIR)))
DB_PATH = Path(os.environ.get("DB_PATH", str(DATA_DIR / "workhours.db")))

APP_SECRET = os.environ.get("WORKHOURS_SECRET", "dev-secret-change-me").encode("utf-8")
COOKIE_NAME = os.environ.get("COOKIE_NAME", "wh_session")
COOKIE_AGE = int(os.environ.get("COOKIE_AGE", str(90 * 24 * 60 * 60)))  # 90 days


# ======================================================
# CLOCK / HOLIDAYS
# ======================================================
# single fixed timezone for every wall-clock operation
APP_TZ = os.environ.get("APP_TZ", "Europe/Berlin")

HOLIDAY_COUNTRY = os.environ.get("HOLIDAY_COUNTRY", "DE")
HOLIDAY_SUBDIV = os.environ.get("HOLIDAY_SUBDIV", "HH") or None


# ======================================================
# BASELINE DEFAULTS
# ======================================================
DEFAULT_WEEKLY_MINUTES = int(os.environ.get("DEFAULT_WEEKLY_MINUTES", "2400"))
DEFAULT_DAILY_MINUTES = int(os.environ.get("DEFAULT_DAILY_MINUTES", "480"))
DEFAULT_WORKDAYS = int(os.environ.get("DEFAULT_WORKDAYS", "5"))


# ======================================================
# LOGGING
# ======================================================
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging() -> logging.Logger:
    """Attach a stdout handler to the ``workhours`` logger (idempotent)."""
    logger = logging.getLogger("workhours")
    logger.setLevel(LOG_LEVEL)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    return logger
