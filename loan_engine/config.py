"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LoanEngineConfig(BaseSettings):
    """Loan engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LOAN_ENGINE_",
        env_file=".env",
        case_sensitive=False,
    )

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "loans.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    default_currency: str = "CLP"
    max_installments: int = 360
    max_interest_rate: str = "100"  # per-annum percentage

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = LoanEngineConfig()


def get_config() -> LoanEngineConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LoanEngineConfig:
    """Reload configuration from environment"""
    global config
    config = LoanEngineConfig()
    return config
