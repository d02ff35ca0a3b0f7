"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import Optional

from .currency import Currency, resolve_rounding


class LedgerConfig(BaseSettings):
    """Loan ledger configuration"""

    # Database configuration
    database_url: str = "memory"  # "memory" or sqlite:///path/to/ledger.db

    # Currency configuration
    base_currency: str = "MWK"
    rounding_mode: str = "ROUND_HALF_UP"  # ROUND_HALF_UP, ROUND_HALF_EVEN, ROUND_FLOOR, ROUND_DOWN

    # Business rules configuration
    overpayment_tolerance: str = "0.10"  # 10% over total outstanding
    max_conflict_retries: int = 3

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "LOAN_LEDGER_"
        env_file = ".env"
        case_sensitive = False

    @property
    def currency(self) -> Currency:
        """Base currency as an enum member"""
        return Currency[self.base_currency.upper()]

    @property
    def rounding(self) -> str:
        """Decimal rounding constant for computed amounts"""
        return resolve_rounding(self.rounding_mode)

    @property
    def tolerance(self) -> Decimal:
        """Overpayment tolerance as a Decimal fraction"""
        value = Decimal(self.overpayment_tolerance)
        if value < 0:
            raise ValueError("overpayment_tolerance cannot be negative")
        return value


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
