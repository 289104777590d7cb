"""
Configuration management for the ProfitFirst dashboard
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "ProfitFirst Dashboard"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"

    # Database (cache entries + product cost reference data)
    database_url: str = "sqlite:///./profitfirst.db"

    # Freshness cache
    cache_backend: str = "database"  # "database" or "memory"
    dashboard_cache_ttl_minutes: int = 15
    failed_source_ttl_minutes: int = 5  # how long a recorded source failure is reused
    cache_purge_days: int = 7
    cache_purge_hour: int = 3  # IST hour for the daily purge job

    # Date windows
    default_range_days: int = 30
    fallback_window_days: int = 7

    # Per-source timeouts (seconds), applied around each fetch
    order_source_timeout_seconds: float = 30.0
    ad_source_timeout_seconds: float = 10.0
    logistics_source_timeout_seconds: float = 10.0

    # Retry policy for source clients
    source_retry_max_attempts: int = 3
    source_retry_base_delay: float = 2.0
    source_retry_max_delay: float = 30.0

    # Shopify
    shopify_api_version: str = "2025-07"
    shopify_page_size: int = 250
    shopify_bulk_threshold_days: int = 14
    shopify_bulk_max_poll_seconds: float = 120.0

    # Meta Ads
    meta_api_version: str = "v23.0"
    meta_api_base_url: str = "https://graph.facebook.com"

    # Shiprocket
    shiprocket_base_url: str = "https://apiv2.shiprocket.in/v1/external"
    shiprocket_page_size: int = 100

    # Degradation policy: raise when no order data is obtainable at all
    dashboard_fail_on_order_outage: bool = True

    # LLM Configuration (forecast assist)
    anthropic_api_key: Optional[str] = None
    llm_model: str = "claude-sonnet-4-20250514"
    enable_llm_insights: bool = True
    llm_max_tokens: int = 1000
    llm_timeout_seconds: float = 15.0

    # Forecast
    forecast_months: int = 3
    forecast_history_months: int = 2
    forecast_cache_seconds: int = 3600

    # Formatting
    currency_symbol: str = "₹"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
