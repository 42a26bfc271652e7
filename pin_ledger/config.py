"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerConfig(BaseSettings):
    """PIN ledger configuration"""
    
    # Storage configuration
    database_url: str = "memory://"  # memory:// or sqlite:///path/to/ledger.db
    
    # Account numbering
    account_number_prefix: str = Field("901", pattern=r"^\d{3}$")
    account_number_max_attempts: int = Field(100, ge=1)
    
    # PIN hashing (scrypt cost parameters)
    pin_hash_n: int = 16384
    pin_hash_r: int = 8
    pin_hash_p: int = 1
    
    # Logging configuration
    log_level: str = Field("INFO", pattern=r"(?i)^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = Field("json", pattern=r"^(json|text)$")
    
    model_config = SettingsConfigDict(
        env_prefix="PIN_LEDGER_",
        env_file=".env",
        case_sensitive=False
    )


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
