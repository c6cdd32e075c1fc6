"""Dynamic plugin discovery and loading."""

from arbor_core.plugins.loader import PluginLoader, PluginNotFoundError, create_store

__all__ = ["PluginLoader", "PluginNotFoundError", "create_store"]
