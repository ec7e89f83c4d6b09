"""Configuration management for the Autoplan scheduling service."""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel

from src.engine.errors import PreferencesError
from src.engine.preferences import SchedulingPreferences, load_preferences


class AppConfig(BaseModel):
    """Application configuration."""
    preferences_path: str = "config/preferences.yaml"
    host: str = "0.0.0.0"
    port: int = 5220
    log_level: str = "INFO"


def load_preferences_file(config_path: str | None = None) -> SchedulingPreferences:
    """Load scheduling preferences from a YAML file.

    Raises:
        PreferencesError: if the file is missing or its contents are malformed
    """
    if config_path is None:
        config_path = os.getenv("SCHEDULING_PREFERENCES_PATH", "config/preferences.yaml")

    path = Path(config_path)
    if not path.exists():
        raise PreferencesError(f"Preferences file not found: {config_path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise PreferencesError(f"Invalid YAML in {config_path}: {e}") from e

    return load_preferences(data)


def load_app_config() -> AppConfig:
    """Load application configuration from environment variables."""
    return AppConfig(
        preferences_path=os.getenv("SCHEDULING_PREFERENCES_PATH", "config/preferences.yaml"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "5220")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
