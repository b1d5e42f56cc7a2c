from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .constraint import DEFAULT_CONFIG_PATH, ENV_PREFIX
from .doc_converter.config import AppConfig, load_config


class Settings(BaseSettings):
    """Application runtime settings sourced from environment variables."""

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, env_file=".env", extra="ignore")

    config_path: Path = DEFAULT_CONFIG_PATH
    enable_local_api: bool | None = None
    workspace_dir: Path | None = None
    office_executable: str | None = None


def apply_settings(config: AppConfig, settings: Settings) -> AppConfig:
    """Overlay environment overrides onto a loaded configuration."""

    if settings.enable_local_api is not None:
        config.runtime.enable_local_api = settings.enable_local_api
    if settings.workspace_dir is not None:
        config.runtime.workspace_dir = settings.workspace_dir
    if settings.office_executable:
        config.office.executable = settings.office_executable
    return config


def load_app_config(settings: Settings | None = None) -> AppConfig:
    settings = settings or get_settings()
    return apply_settings(load_config(settings.config_path), settings)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "apply_settings", "get_settings", "load_app_config"]
