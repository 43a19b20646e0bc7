from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Main configuration for SpendSync.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """
    APP_NAME: str = "SpendSync"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    TESTING: bool = False
    CORS_ORIGINS: list[str] = []
    FRONTEND_URL: str = "http://localhost:5173"

    @model_validator(mode="after")
    def validate_security_config(self) -> "Settings":
        """Refuse to start a production deployment with unsafe key material."""
        if self.TESTING or self.DEBUG:
            return self

        if not self.ENCRYPTION_KEY or len(self.ENCRYPTION_KEY) < 32:
            raise ValueError("ENCRYPTION_KEY must be at least 32 characters in production.")
        if not self.KDF_SALT:
            raise ValueError("KDF_SALT must be set in production.")
        if self.DB_SSL_MODE not in ("require", "verify-ca", "verify-full"):
            raise ValueError(
                f"DB_SSL_MODE must be 'require', 'verify-ca', or 'verify-full' in production. Current: {self.DB_SSL_MODE}"
            )
        return self

    # Database
    DATABASE_URL: str
    DB_SSL_MODE: str = "require"  # Options: disable, require, verify-ca, verify-full
    DB_SSL_CA_CERT_PATH: Optional[str] = None
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Encryption & Secret Rotation
    ENCRYPTION_KEY: Optional[str] = None
    LEGACY_ENCRYPTION_KEYS: list[str] = []
    KDF_SALT: str = ""
    KDF_ITERATIONS: int = 100000

    # Cache (Redis for production, in-memory for dev)
    REDIS_URL: Optional[str] = None
    SYNC_CACHE_TTL_SECONDS: int = 3600

    # Rate limiting
    RATELIMIT_ENABLED: bool = True
    SYNC_RATE_LIMIT: str = "10/minute"

    # AWS (the principal that performs AssumeRole for automated connections)
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_DEFAULT_REGION: str = "us-east-1"
    AWS_ENDPOINT_URL: Optional[str] = None  # LocalStack / moto
    AWS_ROLE_SESSION_DURATION_SECONDS: int = 3600
    AWS_ROLE_SESSION_PREFIX: str = "spendsync-sync"

    # Invoice-style provider APIs
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Anomaly baselines
    ANOMALY_WINDOW_DAYS: int = 30
    ANOMALY_MIN_DATA_POINTS: int = 7
    ANOMALY_RECOMPUTE_DAYS: int = 7
    ANOMALY_DEFAULT_THRESHOLD: float = 20.0
    ANOMALY_ESCALATION_THRESHOLD: float = 50.0
    ANOMALY_RESULT_LIMIT: int = 50

    # Forecasting
    FORECAST_HISTORY_DAYS: int = 365
    FORECAST_MIN_DATA_POINTS: int = 14
    FORECAST_MAX_MONTHS: int = 12
    FORECAST_DEFAULT_MONTHS: int = 6

    # Scheduler (UTC)
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_HOUR: int = 2
    SCHEDULER_MINUTE: int = 0

    # SMTP Email (anomaly alerts)
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: str = "alerts@spendsync.io"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True
    )


@lru_cache
def get_settings():
    """Returns a singleton instance of the application settings."""
    return Settings()
