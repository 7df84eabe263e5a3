"""
Kudos Core Configuration Module
Handles configuration management for the application
"""
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PLACEHOLDER_SECRETS = ("your-secret-key", "change-this")
MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Kudos"
    app_version: str = "1.0.0"
    environment: str = Field(default="development")
    debug: bool = False
    base_url: str = "http://localhost:8000"

    # API Settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Security
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    session_lifetime_hours: int = 24 * 7
    session_cookie_name: str = "session"
    max_sessions_per_user: int = 5
    security_headers_enabled: bool = True

    # Session binding tolerance
    ip_subnet_octets: int = 3
    allow_loopback_aliases: bool = True
    match_browser_major_version: bool = True

    # Suspicious activity detection
    suspicious_event_threshold: int = 3
    suspicious_window_minutes: int = 60
    suspicious_ip_ttl_hours: int = 24

    # Session registry cleanup
    session_cleanup_enabled: bool = True
    session_cleanup_interval_seconds: int = 5 * 60
    memory_check_interval_seconds: int = 30 * 60
    max_security_events: int = 1000
    event_retention_days: int = 7
    max_sessions_threshold: int = 10000
    max_events_threshold: int = 5000
    max_suspicious_ips_threshold: int = 1000
    aggressive_inactive_minutes: int = 60
    aggressive_retention_hours: int = 6

    # Rate Limiting
    rate_limit_enabled: bool = True
    rate_limit_max_requests: int = 5
    rate_limit_window_ms: int = 60000
    rate_limit_skip_successful: bool = True
    rate_limit_cleanup_probability: float = 0.1
    redis_url: Optional[str] = None

    # Users
    users_file: Path = Path("data/users.json")
    users_cache_ttl_seconds: int = 300
    password_hash_rounds: int = 3
    password_hash_memory_kib: int = 65536

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_structured: bool = True

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, value: str) -> str:
        if len(value) < MIN_SECRET_LENGTH:
            raise ValueError(
                f"JWT_SECRET must be at least {MIN_SECRET_LENGTH} characters long"
            )
        lowered = value.lower()
        for placeholder in PLACEHOLDER_SECRETS:
            if placeholder in lowered:
                raise ValueError("JWT_SECRET must not use a placeholder value")
        return value

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, value: str) -> str:
        value = value.lower()
        if value not in ("development", "production", "test"):
            raise ValueError(
                "ENVIRONMENT must be one of development, production, test"
            )
        return value

    @field_validator("rate_limit_cleanup_probability")
    @classmethod
    def validate_probability(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("RATE_LIMIT_CLEANUP_PROBABILITY must be between 0 and 1")
        return value

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def session_lifetime(self) -> timedelta:
        return timedelta(hours=self.session_lifetime_hours)

    def get_jwt_config(self) -> Dict[str, Any]:
        """Get JWT configuration"""
        return {
            "secret": self.jwt_secret,
            "algorithm": self.jwt_algorithm,
        }


@lru_cache()
def get_settings() -> Settings:
    """Get settings instance"""
    return Settings()
