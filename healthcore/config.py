"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Variables are prefixed with ``HEALTHCORE_`` (e.g. ``HEALTHCORE_DATABASE_URL``).
    """

    # --- App ---
    app_name: str = "healthcore"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Database ---
    database_url: str = "postgresql://localhost:5432/healthcore"
    db_pool_min_size: int = 2
    db_pool_max_size: int = 20
    db_command_timeout: float = 30.0

    # --- Canonicalization ---
    canonicalization_page_size: int = 1000  # rows read per round-trip
    canonicalization_update_batch_size: int = 500  # ids per bulk UPDATE

    # --- Query / export ---
    search_result_limit: int = 50
    export_max_chunk_size: int = 2000

    # --- Metric registry ---
    registry_path: str | None = None  # None = bundled metric_registry.yaml

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_prefix="HEALTHCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
