from .loader import load_config
from .models import (
    ArborConfig,
    CacheConfig,
    PluginsConfig,
    StoreConfig,
)

__all__ = [
    "ArborConfig",
    "CacheConfig",
    "PluginsConfig",
    "StoreConfig",
    "load_config",
]
