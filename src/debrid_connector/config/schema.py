"""Configuration schema definitions for HTTP resilience and sync jobs."""

from typing import Any, Dict

from pydantic import BaseModel, Field, field_validator


# Bounds enforced on job configuration
MIN_SYNC_INTERVAL_MINUTES = 5
MIN_BATCH_SIZE = 25
MAX_BATCH_SIZE = 500
MIN_SYNC_TIMEOUT_MS = 30_000
MIN_MAX_RETRIES = 0
MAX_MAX_RETRIES = 10


class RetryConfig(BaseModel):
    """Retry and backoff policy for outbound API calls."""

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay: float = Field(default=1.0, gt=0, description="Initial backoff in seconds")
    max_delay: float = Field(default=10.0, gt=0, description="Upper bound for any backoff")
    backoff_factor: float = Field(default=2.0, ge=1, description="Exponential growth factor")
    jitter: bool = Field(default=True, description="Scale delays by a uniform factor in [0.5, 1.0]")


class RateLimitConfig(BaseModel):
    """Token bucket sizing."""

    requests_per_window: int = Field(default=250, gt=0)
    window_seconds: float = Field(default=60.0, gt=0)
    burst_size: int = Field(default=10, gt=0)

    @property
    def seconds_per_token(self) -> float:
        return self.window_seconds / self.requests_per_window

    @property
    def tokens_per_ms(self) -> float:
        return self.requests_per_window / (self.window_seconds * 1000)


class SyncConfiguration(BaseModel):
    """Job control configuration for the sync engine.

    Out-of-range numbers are clamped into their allowed range instead of
    being rejected, so a partially valid update still applies.
    """

    auto_sync: bool = False
    sync_interval_minutes: int = 30
    batch_size: int = 100
    enable_duplicate_detection: bool = True
    sync_timeout_ms: int = 300_000
    max_retries: int = 3

    @field_validator("sync_interval_minutes")
    @classmethod
    def clamp_interval(cls, v: int) -> int:
        return max(MIN_SYNC_INTERVAL_MINUTES, v)

    @field_validator("batch_size")
    @classmethod
    def clamp_batch_size(cls, v: int) -> int:
        return min(MAX_BATCH_SIZE, max(MIN_BATCH_SIZE, v))

    @field_validator("sync_timeout_ms")
    @classmethod
    def clamp_timeout(cls, v: int) -> int:
        return max(MIN_SYNC_TIMEOUT_MS, v)

    @field_validator("max_retries")
    @classmethod
    def clamp_retries(cls, v: int) -> int:
        return min(MAX_MAX_RETRIES, max(MIN_MAX_RETRIES, v))

    @classmethod
    def sanitize(cls, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Drop unknown keys and values of the wrong type from a change set."""
        sanitized: Dict[str, Any] = {}
        for name, value in (changes or {}).items():
            field = cls.model_fields.get(name)
            if field is None or value is None:
                continue
            if field.annotation is bool:
                if isinstance(value, bool):
                    sanitized[name] = value
            elif isinstance(value, (int, float)) and not isinstance(value, bool):
                sanitized[name] = int(value)
        return sanitized

    def merge(self, changes: Dict[str, Any]) -> "SyncConfiguration":
        """Return a new configuration with the valid part of ``changes`` applied."""
        return SyncConfiguration(**{**self.model_dump(), **self.sanitize(changes)})
