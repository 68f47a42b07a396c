"""Test module imports and package structure."""

from __future__ import annotations

import importlib
from types import ModuleType

import pytest

MODULES = [
    "push_dispatch",
    "push_dispatch.__main__",
    "push_dispatch.exceptions",
    "push_dispatch.core.batching",
    "push_dispatch.core.builder",
    "push_dispatch.core.config",
    "push_dispatch.core.dispatcher",
    "push_dispatch.core.registry",
    "push_dispatch.core.retry",
    "push_dispatch.core.service",
    "push_dispatch.core.sqlite_registry",
    "push_dispatch.core.throttle",
    "push_dispatch.plugins",
    "push_dispatch.plugins.discovery",
    "push_dispatch.plugins.loader",
    "push_dispatch.plugins.fcm",
    "push_dispatch.plugins.fcm.config",
    "push_dispatch.plugins.fcm.converter",
    "push_dispatch.plugins.fcm.gateway",
    "push_dispatch.types",
    "push_dispatch.types.aliases",
    "push_dispatch.types.models",
    "push_dispatch.types.protocols",
    "push_dispatch.utils",
    "push_dispatch.utils.logging",
    "push_dispatch.utils.sanitization",
]

PACKAGES_WITH_EXPORTS = [
    "push_dispatch",
    "push_dispatch.plugins",
    "push_dispatch.types",
    "push_dispatch.utils",
]


class TestImports:
    """Every module imports cleanly, which also rules out circular imports."""

    @pytest.mark.parametrize("module_name", MODULES)
    def test_module_imports(self, module_name: str) -> None:
        module = importlib.import_module(module_name)

        assert isinstance(module, ModuleType)
        assert module.__name__ == module_name

    @pytest.mark.parametrize("module_name", MODULES)
    def test_module_has_docstring(self, module_name: str) -> None:
        module = importlib.import_module(module_name)

        assert module.__doc__ is not None, f"Module {module_name} should have a docstring"
        assert module.__doc__.strip()


class TestPackageExports:
    @pytest.mark.parametrize("package_name", PACKAGES_WITH_EXPORTS)
    def test_all_names_resolve(self, package_name: str) -> None:
        package = importlib.import_module(package_name)
        exported = getattr(package, "__all__", None)

        assert isinstance(exported, list), f"Package {package_name} should define __all__"
        missing = [name for name in exported if not hasattr(package, name)]
        assert missing == []

    def test_main_is_exported(self) -> None:
        from push_dispatch import main

        assert callable(main)

    def test_fcm_plugin_registers_on_import(self) -> None:
        from push_dispatch.plugins import get_plugin

        _ = importlib.import_module("push_dispatch.plugins.fcm")
        metadata = get_plugin("fcm")

        assert metadata is not None
        assert metadata.entrypoint == "push_dispatch.plugins.fcm.gateway:create_gateway"
