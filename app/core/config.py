"""Core configuration management using Pydantic settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator, field_validator
from typing import Optional, List


# Valid log levels
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

# Hard upper bound the IEX batch endpoint accepts per request
UPSTREAM_MAX_BATCH_SIZE = 100


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./quotes.db"

    # Redis (optional; the response cache falls back to memory without it)
    redis_url: Optional[str] = None

    # Market data API keys
    iex_cloud_api_key: Optional[str] = None
    alpha_vantage_api_key: Optional[str] = None
    iex_base_url: str = "https://cloud.iexapis.com/stable"
    alpha_vantage_base_url: str = "https://www.alphavantage.co/query"

    # Real-time updates
    update_interval_seconds: int = 30
    max_subscriptions_per_client: int = 50
    batch_size: int = 10
    batch_delay_seconds: float = 0.1
    send_timeout_seconds: float = 5.0

    # Upstream timeouts (seconds)
    single_quote_timeout_seconds: float = 10.0
    batch_quote_timeout_seconds: float = 15.0

    # Caching
    snapshot_max_age_seconds: int = 300  # Stored quotes younger than this serve initial data
    quote_cache_ttl_seconds: int = 15

    # Logging
    log_level: str = "INFO"

    # JWT verification for the authenticate message
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"

    # API Configuration
    backend_port: int = 8000

    # Rate limiting
    rate_limit_force_update: str = "30/minute"  # Force-update calls per client

    # CORS Configuration
    cors_origins: str = "http://localhost:3000"  # Comma-separated list of allowed origins

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        upper_v = v.upper()
        if upper_v not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}")
        return upper_v

    @field_validator('batch_size')
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        """Batch size must fit the upstream batch endpoint."""
        if not 1 <= v <= UPSTREAM_MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {UPSTREAM_MAX_BATCH_SIZE}")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string to list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @model_validator(mode='after')
    def validate_config(self) -> 'Settings':
        """Validate configuration after all fields are set."""
        if self.update_interval_seconds <= 0:
            raise ValueError("update_interval_seconds must be positive")
        if self.max_subscriptions_per_client <= 0:
            raise ValueError("max_subscriptions_per_client must be positive")
        # Validate JWT secret strength
        if self.jwt_secret is not None and len(self.jwt_secret) < 32:
            raise ValueError("JWT secret must be at least 32 characters for security")
        return self


# Global settings instance
settings = Settings()
