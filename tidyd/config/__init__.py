"""Configuration module for tidyd."""

from .settings import (
    Config,
    GeneralConfig,
    IPCConfig,
    WatchConfig,
    default_config_path,
)

__all__ = [
    "Config",
    "GeneralConfig",
    "IPCConfig",
    "WatchConfig",
    "default_config_path",
]
