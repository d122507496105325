from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Storage Configuration
    # "file" keeps the chat document in a local JSON file,
    # "database" keeps it in a single row of a SQL table
    STORAGE_BACKEND: Literal["file", "database"] = "file"
    CHAT_FILE_PATH: str = "data/chat.json"
    DATABASE_URL: str = "sqlite:///./data/chat.db"
    STORAGE_KEY: str = "chat:messages"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Polling client
    POLL_INTERVAL_SECONDS: float = 2.0
    CHAT_API_URL: str = "http://localhost:8000"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
