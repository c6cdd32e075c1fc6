"""Node store discovery and loading via entry points."""

from __future__ import annotations

import importlib.metadata
from typing import TYPE_CHECKING

from arbor_core.interfaces.store import NodeStore

if TYPE_CHECKING:
    from arbor_core.config.models import ArborConfig


class PluginNotFoundError(Exception):
    """Raised when a requested plugin cannot be found."""

    def __init__(self, plugin_type: str, name: str | None = None):
        self.plugin_type = plugin_type
        self.name = name
        msg = f"No {plugin_type} plugin found"
        if name:
            msg += f" with name '{name}'"
        super().__init__(msg)


class PluginLoader:
    """Discovers and loads node stores via entry points or config."""

    GROUPS = {
        "store": "arbor.plugins.store",
    }

    # Lite defaults keyed by store.provider (lazy import paths)
    LITE_DEFAULTS = {
        "memory": ("arbor_lite.store.memory_store", "InMemoryNodeStore"),
        "sqlite": ("arbor_lite.store.sqlite_store", "SQLiteNodeStore"),
    }

    def __init__(self, config: ArborConfig):
        self._config = config

    def discover(self) -> dict[str, list[str]]:
        """Scan entry_points for registered plugins. Returns {type: [name, ...]}."""
        result: dict[str, list[str]] = {}
        for plugin_type, group in self.GROUPS.items():
            eps = importlib.metadata.entry_points(group=group)
            result[plugin_type] = [ep.name for ep in eps]
        return result

    def _load_from_entry_point(self, plugin_type: str, name: str) -> object | None:
        group = self.GROUPS[plugin_type]
        eps = importlib.metadata.entry_points(group=group)
        for ep in eps:
            if ep.name == name:
                return ep.load()
        return None

    def _load_lite_default(self, provider: str) -> object | None:
        if provider not in self.LITE_DEFAULTS:
            return None
        module_path, class_name = self.LITE_DEFAULTS[provider]
        try:
            module = __import__(module_path, fromlist=[class_name])
            return getattr(module, class_name)
        except (ImportError, AttributeError):
            return None

    def load_store(self, name: str | None = None) -> type:
        """Fallback chain: name/config > entry_points > Lite default for store.provider."""
        resolved = name if name is not None else self._config.plugins.store
        if resolved is not None:
            plugin_cls = self._load_from_entry_point("store", resolved)
            if plugin_cls is not None:
                return plugin_cls
            # Name was explicit but not found -- don't fallback silently
            raise PluginNotFoundError("store", resolved)

        plugin_cls = self._load_lite_default(self._config.store.provider)
        if plugin_cls is None:
            raise PluginNotFoundError("store", self._config.store.provider)
        return plugin_cls


def create_store(config: ArborConfig, name: str | None = None) -> NodeStore:
    """Instantiate the configured node store through its ``from_config`` hook."""
    plugin_cls = PluginLoader(config).load_store(name)
    return plugin_cls.from_config(config.store)
