"""
Application configuration using Pydantic Settings
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "AgriTenant Admin"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # API
    API_V1_PREFIX: str = "/api/v1"
    ALLOWED_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Database
    DATABASE_URL: str = "sqlite:///./agritenant.db"

    # JWT
    JWT_SECRET_KEY: str = "jwt-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_REFRESH_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7  # 7 days

    # Tenant
    TENANT_HEADER: str = "X-Tenant-ID"
    PLATFORM_DOMAIN: str = "kisanshakti.app"
    MARKETING_HOSTS: list[str] = [
        "kisanshakti.app",
        "www.kisanshakti.app",
        "localhost",
        "127.0.0.1",
    ]
    TENANT_CACHE_TTL_SECONDS: float = 300.0
    TENANT_SELECTION_FILE: str = ".agritenant/selection.json"

    # Outbound requests
    CORRELATION_HEADER: str = "X-Correlation-ID"
    API_VERSION_HEADER: str = "X-API-Version"
    API_VERSION: str = "v1"
    FUNCTIONS_BASE_URL: str = "http://localhost:54321/functions/v1"
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    REQUEST_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_JITTER_RATIO: float = 0.1
    RATE_LIMIT_WINDOW_SECONDS: float = 60.0
    RATE_LIMIT_MAX_REQUESTS: int = 1000
    SIGN_IN_PATH: str = "/auth"

    # Security monitoring
    SUSPICIOUS_ACTIVITY_WINDOW_SECONDS: float = 300.0
    SUSPICIOUS_ACTIVITY_THRESHOLD: int = 10
    SUSPICIOUS_ACTIVITY_BLOCK: bool = False
    SUSPICIOUS_ACTIVITY_BLOCK_SECONDS: float = 900.0

    # Session
    SESSION_CHANGE_DEBOUNCE_SECONDS: float = 0.1

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
