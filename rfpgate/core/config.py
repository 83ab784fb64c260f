"""
Application configuration with environment variables.
"""
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field, field_validator
from typing import Optional, List


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "RFP Gate"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "your-secret-key-change-in-production"

    # Database
    POSTGRES_USER: str = "rfpgate"
    POSTGRES_PASSWORD: str = "rfpgate"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "rfpgate"
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)

    # Redis (notification queue + decision cache)
    REDIS_URL: str = "redis://redis:6379/0"

    # JWT Settings
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Demo seeding - MUST be false in production
    SEED_DEMO: bool = False

    # =========================================
    # Access control
    # =========================================

    # Seconds an Allow decision may be served from Redis. 0 disables caching.
    ACCESS_CACHE_TTL_SECONDS: int = 0

    # Write a "signed" audit entry when an NDA is first signed.
    # Off by default: only countersign/reject are audited.
    AUDIT_INITIAL_SIGNATURE: bool = False

    # Notifications: "queue" (RQ worker) or "log"
    NOTIFICATION_BACKEND: str = "queue"
    NOTIFICATION_QUEUE: str = "default"

    # Document storage (signed URLs only, no storage I/O here)
    STORAGE_BASE_URL: str = "http://localhost:9000/rfp-documents"
    SIGNED_URL_EXPIRE_SECONDS: int = 300

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        data = info.data
        user = data.get("POSTGRES_USER", "rfpgate")
        password = data.get("POSTGRES_PASSWORD", "rfpgate")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "rfpgate")

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Reject weak SECRET_KEY in production, warn in development."""
        weak_keys = {
            "your-secret-key-change-in-production",
            "change-me-in-production",
            "secret",
            "changeme",
        }
        is_weak = v in weak_keys or len(v) < 32
        if is_weak:
            debug = info.data.get("DEBUG", False)
            if not debug:
                raise ValueError(
                    "SECRET_KEY is weak or default. "
                    "Generate a strong key with: openssl rand -hex 32"
                )
            import warnings
            warnings.warn(
                "SECRET_KEY is weak or default! Set a strong key before deploying.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator('SEED_DEMO')
    @classmethod
    def validate_seed_demo(cls, v: bool, info) -> bool:
        """Prevent demo seeding in production."""
        if v and not info.data.get("DEBUG", False):
            raise ValueError(
                "SEED_DEMO=true is not allowed when DEBUG=false. "
                "Demo seeding creates predictable users and NDAs."
            )
        return v

    @field_validator('NOTIFICATION_BACKEND')
    @classmethod
    def validate_notification_backend(cls, v: str) -> str:
        if v not in ("queue", "log"):
            raise ValueError("NOTIFICATION_BACKEND must be 'queue' or 'log'")
        return v

    @field_validator('ACCESS_CACHE_TTL_SECONDS', 'SIGNED_URL_EXPIRE_SECONDS')
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v


settings = Settings()
