"""
Application configuration using Pydantic Settings.
"""

import logging
import sys
from decimal import Decimal
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import ClaimPolicy, SettlementPolicy


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Ledger
    CREDIT_ALLOWANCE: Decimal = Decimal("100")
    SETTLEMENT_POLICY: SettlementPolicy = SettlementPolicy.FULL_RESET
    CLAIM_POLICY: ClaimPolicy = ClaimPolicy.EXACT
    SETTLEMENT_REFERENCE_PATTERN: str = r"^0x[0-9a-fA-F]{1,64}$"

    # Payouts
    PAYOUT_SIMULATION_DELAY_SECONDS: float = 0.0

    # Security
    JWT_SECRET: str = "change_me_in_production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_HOURS: int = 168

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    CORS_ORIGINS: List[str] = ["*"]
    SEED_DEMO_DATA: bool = True

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Install one stream handler on the package logger; safe to call repeatedly."""
    logger = logging.getLogger("credit_ledger")
    logger.setLevel((level or settings.LOG_LEVEL).upper())
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
