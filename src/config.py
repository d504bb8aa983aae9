"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Memory service configuration. All values come from environment variables."""

    # Retention
    retention_window: int = Field(default=5, ge=1)
    admin_recent_limit: int = Field(default=10, ge=1)

    # Durable keyed store (embedded sorted KV on aiosqlite)
    keyed_store_enabled: bool = Field(default=True)
    keyed_store_path: Path = Field(default=Path("data/memory_kv.db"))

    # Durable relational store
    relational_store_enabled: bool = Field(default=True)
    database_path: Path = Field(default=Path("data/memory.db"))

    # Turso (hosted libSQL): when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Operator HTTP surface
    admin_host: str = Field(default="0.0.0.0")
    admin_port: int = Field(default=8000)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def describe_tiers(self) -> list[str]:
        """Names of the durable tiers this configuration enables, most preferred first."""
        tiers = []
        if self.keyed_store_enabled:
            tiers.append("keyed")
        if self.relational_store_enabled:
            tiers.append("turso" if self.turso_database_url else "relational")
        return tiers


settings = Settings()
