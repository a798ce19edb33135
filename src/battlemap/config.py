"""Runtime configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Generator settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="BATTLEMAP_", env_file=".env", env_file_encoding="utf-8")

    # Pipeline
    max_stage_attempts: int = 3
    retry_backoff_seconds: float = 0.0
    verify_determinism: bool = False

    # Defaults for generated maps
    default_cell_size: float = 5.0
    default_seed: str = "42"

    # Logging
    log_level: str = "info"


settings = Settings()
