"""Gateway plugin system public API exports."""

from push_dispatch.plugins.discovery import (
    PluginMetadata,
    get_plugin,
    get_registered_plugins,
    register_plugin,
)
from push_dispatch.plugins.loader import (
    GatewayLoader,
    PluginLoaderError,
)

__all__ = [
    "GatewayLoader",
    "PluginMetadata",
    "PluginLoaderError",
    "get_plugin",
    "get_registered_plugins",
    "register_plugin",
]
