from __future__ import annotations
"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Atelier application settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "Atelier"
    DEBUG: bool = False
    USE_MOCK_API: bool = False
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # --- Database (MySQL 8.0+) ---
    DB_HOST: str = "127.0.0.1"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = ""
    DB_NAME: str = "atelier"
    DATABASE_URL_OVERRIDE: str = ""  # e.g. sqlite+aiosqlite:///./atelier.db

    @property
    def DATABASE_URL(self) -> str:
        """Async connection string; asyncmy driver unless overridden."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        encoded_password = quote_plus(self.DB_PASSWORD)
        return (
            f"mysql+asyncmy://{self.DB_USER}:{encoded_password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            "?charset=utf8mb4"
        )

    # --- Redis ---
    REDIS_URL: str = "redis://localhost:6379/0"

    # --- Public URLs ---
    APP_BASE_URL: str = "http://localhost:8000"
    MEDIA_BASE_URL: str = "http://localhost:8000/media"

    # --- Generation Service ---
    GENERATION_SERVICE_URL: str = "http://localhost:5678/webhook/generate-image"
    GENERATION_SERVICE_API_KEY: str = ""
    GENERATION_TIMEOUT: int = 300
    DEFAULT_MODELS: str = "seedream,nano-banana"  # comma-separated aliases
    INGEST_CALLBACKS_INLINE: bool = False

    # --- Blob Store ---
    BLOB_BACKEND: str = "local"  # local | supabase
    MEDIA_VOLUME: str = "media_volume"
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    BUCKET_CHARACTERS: str = "bible-characters-uploads"
    BUCKET_LOCATIONS: str = "bible-locations-uploads"
    BUCKET_PROPS: str = "bible-props-uploads"
    BUCKET_SCENES: str = "scene-images"

    # --- Result persistence ---
    DOWNLOAD_TIMEOUT: float = 60.0
    MIN_IMAGE_BYTES: int = 1000
    PERSIST_MAX_ATTEMPTS: int = 3
    PERSIST_INITIAL_DELAY: float = 2.0
    PERSIST_BACKOFF_BASE: float = 2.0

    # --- Batch concurrency ---
    BATCH_MAX_CONCURRENT: int = 1
    BATCH_TASK_TIMEOUT: float = 120.0
    BATCH_COOLDOWN: float = 0.5

    # --- Stuck-job recovery ---
    STUCK_MAX_AGE_MINUTES: int = 5
    SWEEP_INTERVAL_MINUTES: int = 5

    @property
    def default_models(self) -> list[str]:
        return [m.strip() for m in self.DEFAULT_MODELS.split(",") if m.strip()]

    @property
    def WEBHOOK_URL(self) -> str:
        return f"{self.APP_BASE_URL.rstrip('/')}/api/webhooks/generation"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
