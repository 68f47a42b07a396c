"""Gateway plugin loader.

Resolves a gateway plugin by identifier, validates its configuration file
against the plugin's Pydantic model, imports the factory entrypoint lazily,
and checks that the result implements the DeliveryGateway Protocol.
"""

from __future__ import annotations

import importlib
import inspect
import logging
from pathlib import Path
from types import ModuleType
from typing import cast

from pydantic import BaseModel

from push_dispatch.core.config import load_provider_config
from push_dispatch.plugins.discovery import PluginMetadata, get_plugin
from push_dispatch.types import DeliveryGateway
from push_dispatch.utils.sanitization import sanitize_exception

__all__ = ["GatewayLoader", "PluginLoaderError"]

logger = logging.getLogger(__name__)

_DEFAULT_FACTORY = "create_gateway"


class PluginLoaderError(Exception):
    """Raised when a gateway plugin cannot be loaded or validated."""

    def __init__(self, message: str, *, metadata: PluginMetadata | None = None) -> None:
        super().__init__(message)
        self.metadata: PluginMetadata | None = metadata


class GatewayLoader:
    """Loader that turns a plugin identifier and config file into a gateway."""

    def __init__(self, *, logger_obj: logging.Logger | None = None) -> None:
        self._logger: logging.Logger = logger_obj or logger

    def load(self, identifier: str, config_path: Path) -> DeliveryGateway:
        """Build the gateway provided by plugin ``identifier``.

        Args:
            identifier: Gateway plugin identifier (package name under plugins/)
            config_path: Path to the plugin configuration YAML file

        Returns:
            Gateway instance implementing DeliveryGateway

        Raises:
            PluginLoaderError: If the plugin is unknown or its factory fails
            ConfigurationError: If the plugin configuration is invalid
        """
        metadata = get_plugin(identifier)
        if metadata is None:
            msg = f"Unknown gateway plugin: {identifier!r}"
            raise PluginLoaderError(msg)

        config = load_provider_config(config_path, metadata.config_model, provider_name=metadata.name)
        gateway = self.create(metadata, config)
        self._logger.info(
            "Gateway plugin loaded",
            extra={"plugin_identifier": identifier, "plugin_version": metadata.version},
        )
        return gateway

    def create(self, metadata: PluginMetadata, config: BaseModel) -> DeliveryGateway:
        """Invoke the plugin factory with an already validated configuration."""
        module_name, attr_path = self._resolve_entrypoint(metadata)
        try:
            module = importlib.import_module(module_name)
        except Exception as exc:
            msg = (
                f"Unable to import gateway module '{module_name}' for plugin "
                f"'{metadata.identifier}': {sanitize_exception(exc)}"
            )
            raise PluginLoaderError(msg, metadata=metadata) from exc

        try:
            factory = self._resolve_attribute(module, attr_path)
        except AttributeError as exc:
            msg = (
                f"Entrypoint attribute '{attr_path}' not found in module '{module_name}' "
                f"for plugin '{metadata.identifier}'"
            )
            raise PluginLoaderError(msg, metadata=metadata) from exc

        if not callable(factory) or inspect.iscoroutinefunction(factory):
            msg = f"Entrypoint for plugin '{metadata.identifier}' is not a synchronous factory"
            raise PluginLoaderError(msg, metadata=metadata)

        try:
            candidate = cast(object, factory(config))
        except Exception as exc:
            msg = f"Gateway factory failed for plugin '{metadata.identifier}': {sanitize_exception(exc)}"
            raise PluginLoaderError(msg, metadata=metadata) from exc

        if not isinstance(candidate, DeliveryGateway):
            msg = (
                "Gateway factory did not return a DeliveryGateway instance "
                f"(plugin='{metadata.identifier}', object={type(candidate).__name__})"
            )
            raise PluginLoaderError(msg, metadata=metadata)
        return candidate

    @staticmethod
    def _resolve_entrypoint(metadata: PluginMetadata) -> tuple[str, str]:
        entrypoint = metadata.entrypoint
        if entrypoint:
            module_name, attr_path = (
                entrypoint.split(":", maxsplit=1) if ":" in entrypoint else (entrypoint, _DEFAULT_FACTORY)
            )
        else:
            module_name = f"{metadata.package}.gateway"
            attr_path = _DEFAULT_FACTORY

        module_name = module_name.strip()
        attr_path = attr_path.strip()
        if not module_name or not attr_path:
            msg = (
                f"Invalid entrypoint definition for plugin '{metadata.identifier}': "
                f"entrypoint={metadata.entrypoint!r}"
            )
            raise PluginLoaderError(msg, metadata=metadata)
        return module_name, attr_path

    @staticmethod
    def _resolve_attribute(module: ModuleType, attr_path: str) -> object:
        target: object = module
        for part in attr_path.split("."):
            target = cast(object, getattr(target, part))
        return target
