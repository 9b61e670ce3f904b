"""
Panel Cache Configuration

Configuration management with environment variable support.
Implements secure defaults and validation for all settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import List
from functools import lru_cache
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Cache settings with validation and secure defaults."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Environment settings
    ENVIRONMENT: str = Field(
        default="development", description="Application environment"
    )
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_JSON: bool = Field(
        default=True, description="Render log records as JSON instead of console text"
    )

    # Cache core configuration
    CACHE_STORE: str = Field(
        default="memory", description="Backing store driver (memory or redis)"
    )
    CACHE_KEY_PREFIX: str = Field(
        default="admin_panel", description="Prefix shared by every derived cache key"
    )
    CACHE_DEFAULT_TTL: int = Field(
        default=3600, description="Default TTL in seconds when a caller passes none"
    )
    METRIC_CACHE_TTL: int = Field(
        default=300, description="Default TTL in seconds for dashboard metrics"
    )
    BADGE_CACHE_TTL: int = Field(
        default=300, description="Default TTL in seconds for menu badges"
    )
    MENU_AUTH_CACHE_TTL: int = Field(
        default=300, description="Default TTL in seconds for menu authorization results"
    )
    CACHE_STORE_TIMEOUT: float = Field(
        default=2.0,
        gt=0,
        le=60,
        description="Upper bound in seconds for a single backing store call",
    )

    CACHE_KEY_INDEX_MAX_KEYS: int = Field(
        default=10000,
        ge=1,
        description="Keys remembered per process for pattern invalidation fallback",
    )
    CACHE_MEMORY_MAX_ENTRIES: int = Field(
        default=10000,
        ge=1,
        description="Entries held by the in-memory store before the oldest are evicted",
    )

    # Cache warming
    CACHE_WARM_CONCURRENCY: int = Field(
        default=4, ge=1, le=64, description="Parallel computations per warming pass"
    )
    CACHE_WARM_TIMEZONES: str = Field(
        default="UTC", description="Timezones to warm (comma-separated)"
    )

    # Performance analysis thresholds
    CACHE_HIT_RATIO_WARNING: float = Field(
        default=0.5, ge=0, le=1, description="Hit ratio below which a warning is issued"
    )
    CACHE_MEMORY_WARNING_BYTES: int = Field(
        default=100 * 1024 * 1024,
        ge=0,
        description="Cache memory above which a warning is issued",
    )

    # Redis configuration
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )
    REDIS_MAX_CONNECTIONS: int = Field(
        default=10, ge=1, le=50, description="Redis connection pool size"
    )
    REDIS_CONNECTION_TIMEOUT: float = Field(
        default=5.0, gt=0, le=60, description="Redis connect timeout in seconds"
    )
    REDIS_OPERATION_TIMEOUT: float = Field(
        default=2.0, gt=0, le=60, description="Redis socket timeout in seconds"
    )

    # Circuit breaker settings
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = Field(
        default=5, ge=1, le=20, description="Circuit breaker failure threshold"
    )
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT: int = Field(
        default=60,
        ge=1,
        le=300,
        description="Circuit breaker recovery timeout in seconds",
    )

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment value."""
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()

    @field_validator("CACHE_STORE")
    @classmethod
    def validate_cache_store(cls, v):
        """Validate cache store driver."""
        allowed = ["memory", "redis"]
        if v.lower() not in allowed:
            raise ValueError(f"CACHE_STORE must be one of: {allowed}")
        return v.lower()

    @field_validator("CACHE_KEY_PREFIX")
    @classmethod
    def validate_key_prefix(cls, v):
        """Validate cache key prefix."""
        if not v or ":" in v or any(char.isspace() for char in v):
            raise ValueError(
                "CACHE_KEY_PREFIX must be non-empty without ':' or whitespace"
            )
        return v

    @property
    def warm_timezones_list(self) -> List[str]:
        """Get warming timezones as list."""
        timezones = [
            timezone.strip()
            for timezone in self.CACHE_WARM_TIMEZONES.split(",")
            if timezone.strip()
        ]
        return timezones or ["UTC"]

    def ttl_for(self, namespace) -> int:
        """Default TTL in seconds for a cache namespace."""
        value = getattr(namespace, "value", namespace)
        if value == "metric":
            return self.METRIC_CACHE_TTL
        elif value == "badge":
            return self.BADGE_CACHE_TTL
        elif value == "menu_auth":
            return self.MENU_AUTH_CACHE_TTL
        return self.CACHE_DEFAULT_TTL


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Create global settings instance
settings = get_settings()
