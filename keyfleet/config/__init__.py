"""Configuration package for runtime settings and startup validation."""

from .logging_config import config_configure_logging
from .settings import (
    AppSettings,
    DeploySettings,
    SettingsLoadError,
    config_load_deploy_settings,
    config_load_settings,
)

__all__ = [
    "AppSettings",
    "DeploySettings",
    "SettingsLoadError",
    "config_configure_logging",
    "config_load_deploy_settings",
    "config_load_settings",
]
