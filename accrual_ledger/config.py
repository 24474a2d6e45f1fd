"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AccrualLedgerConfig(BaseSettings):
    """Accrual ledger configuration"""

    model_config = SettingsConfigDict(
        env_prefix="ACCRUAL_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Storage configuration
    storage_backend: str = "memory"  # memory or sqlite
    database_path: str = "accrual_ledger.db"

    # Ledger configuration
    ledger_address: str = "accrual-ledger"
    initial_global_rate: int = 5 * 10 ** 10  # Per-second rate, scaled by 1e18
    rate_direction: str = "decrease_only"  # decrease_only or increase_only
    repin_rate_on_mint: bool = True  # Every mint re-pins the account to the global rate

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Feature flags
    enable_audit_logging: bool = True

    @field_validator("storage_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("memory", "sqlite"):
            raise ValueError("storage_backend must be 'memory' or 'sqlite'")
        return value

    @field_validator("rate_direction")
    @classmethod
    def _check_direction(cls, value: str) -> str:
        value = value.lower()
        if value not in ("decrease_only", "increase_only"):
            raise ValueError("rate_direction must be 'decrease_only' or 'increase_only'")
        return value

    @field_validator("initial_global_rate")
    @classmethod
    def _check_rate(cls, value: int) -> int:
        if value < 0:
            raise ValueError("initial_global_rate must not be negative")
        return value


_config: Optional[AccrualLedgerConfig] = None


def get_config() -> AccrualLedgerConfig:
    """Get configuration instance, loading it on first use"""
    global _config
    if _config is None:
        _config = AccrualLedgerConfig()
    return _config


def reload_config() -> AccrualLedgerConfig:
    """Reload configuration from environment"""
    global _config
    _config = AccrualLedgerConfig()
    return _config
