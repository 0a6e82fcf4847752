"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Environment
    environment: str = "development"

    # Redis (token cache)
    redis_url: Optional[str] = None
    redis_socket_timeout: float = 2.0  # Seconds; bounded store calls

    # Database (check-in records)
    database_url: Optional[str] = None

    # QR Tokens
    qr_encryption_key: Optional[str] = None
    qr_key_salt: str = "salt"
    qr_expiration_seconds: int = 60  # Default token lifetime
    qr_used_ttl_seconds: int = 3600  # Consumed marker outlives the token
    base_url: str = "http://localhost:8000"

    # Event configuration provider (JSON file with event geofences)
    events_file: Optional[str] = None

    # Housekeeping
    cleanup_interval_minutes: int = 15

    # Circuit Breaker Configuration
    circuit_breaker_fail_max: int = 5  # Consecutive failures before opening circuit
    circuit_breaker_reset_timeout: int = 30  # Seconds before auto-recovery attempt

    # Sentry Error Tracking
    sentry_dsn: Optional[str] = None
    sentry_environment: Optional[str] = None  # Defaults to environment setting

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
