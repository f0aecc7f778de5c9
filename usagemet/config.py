"""Runtime settings, read from ``USAGEMET_*`` environment variables or ``.env``."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="USAGEMET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = "sqlite:///usagemet.db"
    # Serve from an in-memory store instead of the database.
    demo_mode: bool = False

    scan_page_size: int = 500
    ingestion_max_workers: int = 4
    ingestion_max_pending: int = 1000

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
