from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Storage
    database_url: str = Field(default="sqlite:///data/lessons.db")

    # Config file override (defaults to config/config.yaml)
    config_path: Path | None = None

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "DEDUP_"
        extra = "ignore"


settings = Settings()
