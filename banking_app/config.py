"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class BankingConfig(BaseSettings):
    """Banking service configuration"""
    
    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "banking.db"  # ":memory:" for a throwaway SQLite database
    lock_timeout_seconds: Optional[float] = 10.0  # None waits forever
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_prefix: str = "/api/v1"
    api_reload: bool = False
    
    # Logging configuration
    log_level: str = "INFO"
    
    # Business rules configuration
    default_currency: str = "USD"
    default_page_size: int = 10
    max_page_size: int = 100
    max_loan_term_months: int = 480
    
    class Config:
        env_prefix = "BANKING_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = BankingConfig()


def get_config() -> BankingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BankingConfig:
    """Reload configuration from environment"""
    global config
    config = BankingConfig()
    return config
