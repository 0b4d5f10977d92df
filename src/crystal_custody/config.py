"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting has the wrong type, the app fails fast with a
clear error message.

Protocol constants (stability period, extension cap, phase bounds) are NOT
settings; they live in domain/rules.py so every deployment agrees on them.

Usage:
    from crystal_custody.config import get_settings
    settings = get_settings()
    print(settings.custody_account)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Crystal Custody engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://custody:custody_dev"
        "@localhost:5432/crystal_custody"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Custody identities ---
    # The engine's own principal: energy held in custody sits in this account.
    custody_account: str = "custody-engine"
    # Privileged override role across all records.
    supervisor_identity: str = "custody-supervisor"

    # --- Block-height clock ---
    chain_genesis_unix: int = 1_700_000_000
    block_interval_seconds: int = 600

    # --- Unit of work ---
    unit_of_work_attempts: int = 3

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_sqlite(self) -> bool:
        """SQLite does not accept pool sizing arguments."""
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
