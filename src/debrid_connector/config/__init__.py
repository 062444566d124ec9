"""Configuration package for the debrid connector."""

from .schema import (
    RetryConfig,
    RateLimitConfig,
    SyncConfiguration,
)

from .settings import (
    DatabaseSettings,
    SupabaseSettings,
    RealDebridSettings,
    HttpClientSettings,
    SyncSettings,
    LoggingSettings,
    AppSettings,
    get_settings
)

__all__ = [
    # Schemas
    "RetryConfig",
    "RateLimitConfig",
    "SyncConfiguration",

    # Settings
    "DatabaseSettings",
    "SupabaseSettings",
    "RealDebridSettings",
    "HttpClientSettings",
    "SyncSettings",
    "LoggingSettings",
    "AppSettings",
    "get_settings"
]
