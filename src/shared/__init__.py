# Shared utilities package
from .config import Config, Settings, get_config, get_settings, init_config
from .connections import ConnectionManager

__all__ = [
    "Config",
    "Settings",
    "get_config",
    "get_settings",
    "init_config",
    "ConnectionManager",
]
