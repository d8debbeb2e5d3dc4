from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration read from ``BOARDLINE_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="BOARDLINE_", env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./boardline.db"
    isolation_level: str = "REPEATABLE READ"

    log_level: str = "INFO"
    log_json: bool = True

    side_effect_workers: int = 4
    verify_invariants: bool = True

    api_version: str = "1.0.0"

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("side_effect_workers")
    @classmethod
    def _positive_workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("side_effect_workers must be >= 1")
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    return Settings()
