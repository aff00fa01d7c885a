"""
Application configuration using Pydantic Settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/database.sqlite"

    # Redis (rate limiting)
    REDIS_URL: str = "redis://localhost:6379"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3001

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    # Storage
    UPLOAD_DIR: str = "./data/uploads"
    UPLOAD_URL_PREFIX: str = "/uploads"
    MAX_UPLOAD_BYTES: int = 500 * 1024 * 1024
    UPLOAD_CHUNK_BYTES: int = 1024 * 1024
    UPLOAD_CLIENT_TIMEOUT_SECONDS: float = 15 * 60

    # Security
    JWT_SECRET: str = "change_me_in_production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_HOURS: int = 24
    ALLOW_INSECURE_SECRETS: bool = False
    AUTH_RATE_LIMIT_PER_MINUTE: int = 20

    # Bootstrap
    AUTO_CREATE_DB_SCHEMA: bool = True
    SEED_SITE_SETTINGS: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()


def validate_security_settings() -> None:
    """Fail fast when insecure default secrets are still configured."""
    if settings.ALLOW_INSECURE_SECRETS:
        return
    insecure_values = {
        "",
        "change_me_in_production",
        "your-secret-key",
    }
    jwt_secret = (settings.JWT_SECRET or "").strip()
    if jwt_secret in insecure_values or len(jwt_secret) < 24:
        raise ValueError("JWT_SECRET is insecure. Configure a strong non-default secret (>=24 chars).")
