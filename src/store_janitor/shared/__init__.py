# Shared utilities package
from .config import Config, Settings, get_config, get_settings, init_config
from .errors import (
    ConfigurationError,
    ItemOperationError,
    JanitorError,
    StoreConnectionError,
)

__all__ = [
    "Config",
    "Settings",
    "get_config",
    "get_settings",
    "init_config",
    "JanitorError",
    "StoreConnectionError",
    "ItemOperationError",
    "ConfigurationError",
]
