"""Provider registry: provider name to plugin factory and page size."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from paysync.errors import InvalidArgumentError

from .base import Plugin
from .wrapper import PluginWrapper

logger = logging.getLogger(__name__)

PluginFactory = Callable[[str, dict[str, Any]], Plugin]


@dataclass(frozen=True)
class PluginSpec:
    """Registered provider.

    Attributes:
        provider: Provider name used in connector ids
        factory: Builds a plugin from a connector name and its config
        page_size: Page size requested from the provider, None for the default
    """

    provider: str
    factory: PluginFactory
    page_size: int | None = None


_registry: dict[str, PluginSpec] = {}


def register_plugin(
    provider: str, factory: PluginFactory, page_size: int | None = None
) -> None:
    """Register a provider; a later registration replaces an earlier one."""
    provider = provider.lower()
    if provider in _registry:
        logger.debug(f"Replacing registered plugin for provider {provider}")
    _registry[provider] = PluginSpec(provider=provider, factory=factory, page_size=page_size)


def get_plugin_spec(provider: str) -> PluginSpec:
    """Look up a provider.

    Raises:
        InvalidArgumentError: If no plugin is registered for the provider
    """
    try:
        return _registry[provider.lower()]
    except KeyError:
        raise InvalidArgumentError(
            f"no plugin registered for provider {provider!r}", reason="UNKNOWN_PROVIDER"
        ) from None


def create_plugin(provider: str, name: str, config: dict[str, Any]) -> PluginWrapper:
    """Instantiate the provider's plugin, wrapped for logging and error translation."""
    spec = get_plugin_spec(provider)
    wrapper = PluginWrapper.build(spec.provider, lambda: spec.factory(name, config))
    return wrapper


def list_providers() -> list[str]:
    return sorted(_registry)


def unregister_plugin(provider: str) -> None:
    _registry.pop(provider.lower(), None)
