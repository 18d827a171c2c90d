"""
Engagement Ledger Configuration and Constants

Token packages, grant limits and runtime settings are defined here.
Runtime settings are read from the environment.
"""

import logging
import os
from decimal import Decimal


class Config:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./engagement.db")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Tokens credited to every newly registered provider
    WELCOME_TOKENS = int(os.getenv("WELCOME_TOKENS", "5"))

    HISTORY_PAGE_SIZE = int(os.getenv("HISTORY_PAGE_SIZE", "20"))

    # Seconds a SQLite writer waits for the database lock
    SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))


# ==================== TOKEN PACKAGES (EUR) ====================
TOKEN_PACKAGES = {
    "starter": {
        "name": "Starter",
        "tokens": 5,
        "price": Decimal("9.99"),
    },
    "popular": {
        "name": "Popular",
        "tokens": 15,
        "price": Decimal("24.99"),
    },
    "pro": {
        "name": "Pro",
        "tokens": 30,
        "price": Decimal("44.99"),
    },
}

# ==================== LIMITS ====================
UNLOCK_COST = 1
GRANT_MIN = 1
GRANT_MAX = 100
REASON_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 2000
HISTORY_MAX_PAGE_SIZE = 100


def configure_logging(level=None):
    logging.basicConfig(
        level=level or Config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
