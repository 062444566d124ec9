"""Application configuration settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .schema import RateLimitConfig, RetryConfig, SyncConfiguration


class DatabaseSettings(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    url: str = "sqlite:///./data/debrid_connector.db"
    echo: bool = False


class SupabaseSettings(BaseSettings):
    """Supabase configuration."""

    model_config = SettingsConfigDict(env_prefix="CONNECTOR_SUPABASE_")

    url: str = ""
    anon_key: str = ""
    service_role_key: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.url and (self.service_role_key or self.anon_key))


class RealDebridSettings(BaseSettings):
    """Real-Debrid API and OAuth device flow configuration."""

    model_config = SettingsConfigDict(env_prefix="REALDEBRID_")

    client_id: str = "X245A4XAIBGVM"
    api_base_url: str = "https://api.real-debrid.com/rest/1.0"
    oauth_base_url: str = "https://api.real-debrid.com/oauth/v2"
    scope: str = "unrestrict torrents downloads user"
    grant_type: str = "http://oauth.net/grant_type/device/1.0"
    polling_interval_seconds: float = 5.0
    max_polling_attempts: int = 120
    device_code_expires_in: int = 1800
    user_agent: str = "debrid-connector/1.0"

    @property
    def device_code_url(self) -> str:
        return f"{self.oauth_base_url}/device/code"

    @property
    def credentials_url(self) -> str:
        return f"{self.oauth_base_url}/device/credentials"

    @property
    def token_url(self) -> str:
        return f"{self.oauth_base_url}/token"


class HttpClientSettings(BaseSettings):
    """Timeouts, retries and rate limits for outbound calls."""

    model_config = SettingsConfigDict(env_prefix="HTTP_")

    timeout_seconds: float = 10.0
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    backoff_factor: float = 2.0
    jitter: bool = True
    requests_per_window: int = 250
    window_seconds: float = 60.0
    burst_size: int = 10
    token_expiry_threshold_seconds: float = 60.0

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            base_delay=self.base_delay_seconds,
            max_delay=self.max_delay_seconds,
            backoff_factor=self.backoff_factor,
            jitter=self.jitter,
        )

    def rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            requests_per_window=self.requests_per_window,
            window_seconds=self.window_seconds,
            burst_size=self.burst_size,
        )


class SyncSettings(BaseSettings):
    """Default sync job configuration."""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    auto_sync: bool = False
    interval_minutes: int = 30
    batch_size: int = 100
    enable_duplicate_detection: bool = True
    timeout_ms: int = 300_000
    max_retries: int = 3
    batch_pause_seconds: float = 0.075

    def to_configuration(self) -> SyncConfiguration:
        return SyncConfiguration(
            auto_sync=self.auto_sync,
            sync_interval_minutes=self.interval_minutes,
            batch_size=self.batch_size,
            enable_duplicate_detection=self.enable_duplicate_detection,
            sync_timeout_ms=self.timeout_ms,
            max_retries=self.max_retries,
        )


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = "INFO"
    format: str = "json"
    file_path: Optional[str] = "./logs/debrid_connector.log"


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    name: str = "Debrid Connector"
    version: str = "1.0.0"
    environment: str = "development"

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    supabase: SupabaseSettings = Field(default_factory=SupabaseSettings)
    realdebrid: RealDebridSettings = Field(default_factory=RealDebridSettings)
    http: HttpClientSettings = Field(default_factory=HttpClientSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Get application settings."""
    return AppSettings()
