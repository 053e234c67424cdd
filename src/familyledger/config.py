"""Configuration constants for familyledger, read from the environment."""
from __future__ import annotations

import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.environ.get("FAMILYLEDGER_DATABASE_URL", "sqlite:///familyledger.db")
DEFAULT_ANNUAL_RATE = Decimal(os.environ.get("FAMILYLEDGER_DEFAULT_ANNUAL_RATE", "0.03"))
DEFAULT_POINTS_VALUE = Decimal(os.environ.get("FAMILYLEDGER_DEFAULT_POINTS_VALUE", "0.50"))
LOG_PATH = os.environ.get("FAMILYLEDGER_LOG_PATH") or None
LOG_LEVEL = os.environ.get("FAMILYLEDGER_LOG_LEVEL", "info").lower()
DEFAULT_PAGE_SIZE = int(os.environ.get("FAMILYLEDGER_PAGE_SIZE", "20"))
MAX_PAGE_SIZE = 100
DAYS_PER_YEAR = 365

__all__ = [
    "DATABASE_URL",
    "DEFAULT_ANNUAL_RATE",
    "DEFAULT_POINTS_VALUE",
    "LOG_PATH",
    "LOG_LEVEL",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "DAYS_PER_YEAR",
]
