"""Application configuration loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_database: str = Field(default="sample_mflix", alias="MONGODB_DATABASE")
    mongodb_server_selection_timeout_ms: int = Field(default=5000)
    mongodb_socket_timeout_ms: int = Field(default=30000)
    mongodb_max_time_ms: int = Field(default=15000)
    voyage_api_key: str | None = Field(default=None, alias="VOYAGE_API_KEY")
    voyage_base_url: str = Field(default="https://api.voyageai.com/v1")
    voyage_model: str = Field(default="voyage-3-large")
    voyage_output_dimension: int = Field(default=2048)
    voyage_timeout: float = Field(default=10.0)
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    verify_database_on_startup: bool = Field(default=True, alias="VERIFY_DATABASE_ON_STARTUP")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()
