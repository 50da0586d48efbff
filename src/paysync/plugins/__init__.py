"""Connector plugins and the provider registry."""

from .base import BasePlugin, Plugin
from .registry import (
    PluginSpec,
    create_plugin,
    get_plugin_spec,
    list_providers,
    register_plugin,
    unregister_plugin,
)
from .wrapper import PluginWrapper, translate_error

__all__ = [
    "BasePlugin",
    "Plugin",
    "PluginSpec",
    "PluginWrapper",
    "create_plugin",
    "get_plugin_spec",
    "list_providers",
    "register_plugin",
    "translate_error",
    "unregister_plugin",
]

# Built-in providers register themselves on import
from . import dummypay  # noqa: E402,F401
