"""
Application configuration.

All configuration is loaded from environment variables.
Never hardcode secrets or connection strings in code.
"""

import os
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file into environment variables
load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Kitchen Ledger"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "postgresql://localhost:5432/kitchen_ledger"
    )

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Bookkeeping
    # Every amount is stored in integer cents of this currency.
    CURRENCY: str = os.getenv("CURRENCY", "MXN")

    # Inventory
    # Orders without a prep location consume stock from here.
    DEFAULT_PREP_LOCATION: str = os.getenv("DEFAULT_PREP_LOCATION", "CASA_AG")
    # Product whose price is charged when the customer pays shipping
    # and the order carries no shipping fee of its own.
    SHIPPING_SKU: str = os.getenv("SHIPPING_SKU", "ENVIO")
    # Lock the stock row while a purchase recomputes its average cost.
    LOCK_STOCK_ROWS: bool = os.getenv("LOCK_STOCK_ROWS", "true").lower() == "true"

    # Verification
    # Inventory value and ledger balance may differ by less than this
    # before the cost accounting check reports a mismatch.
    COST_TOLERANCE_CENTS: int = int(os.getenv("COST_TOLERANCE_CENTS", "100"))


@lru_cache()
def get_settings() -> Settings:
    """
    Return cached settings instance.

    Using lru_cache means the Settings object is created once
    and reused for all subsequent calls. This avoids reading
    environment variables repeatedly.
    """
    return Settings()
