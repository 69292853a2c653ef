"""Provider factory: maps ProviderMode to a concrete adapter."""

from __future__ import annotations

from collections.abc import Callable

from resource_orchestrator.config.models import PlatformConfig, ProviderMode
from resource_orchestrator.orchestrator.errors import ConfigurationError
from resource_orchestrator.providers.base import ProviderAdapter
from resource_orchestrator.providers.memory import InMemoryProvider
from resource_orchestrator.providers.retry import RetryingProvider


def _memory(platform: PlatformConfig) -> ProviderAdapter:
    return InMemoryProvider(platform.provider.memory)


def _azure(platform: PlatformConfig) -> ProviderAdapter:
    from resource_orchestrator.providers.azure import AzureServiceBusProvider

    if platform.provider.azure is None:
        msg = "azure config is required when provider mode is 'azure'"
        raise ConfigurationError(msg)
    try:
        import azure.identity  # noqa: F401
        import azure.mgmt.resource  # noqa: F401
        import azure.mgmt.servicebus  # noqa: F401
    except ImportError as exc:
        msg = (
            "Azure SDK packages are not installed; "
            "install with `pip install resource-orchestrator[azure]`"
        )
        raise ConfigurationError(msg) from exc
    return AzureServiceBusProvider(platform.provider.azure)


_PROVIDER_REGISTRY: dict[ProviderMode, Callable[[PlatformConfig], ProviderAdapter]] = {
    ProviderMode.MEMORY: _memory,
    ProviderMode.AZURE: _azure,
}


def create_provider(platform: PlatformConfig) -> ProviderAdapter:
    """Create the configured provider, wrapped in the retry layer if enabled.

    Adding a provider = one adapter class + one entry in ``_PROVIDER_REGISTRY``.
    """
    build = _PROVIDER_REGISTRY.get(platform.provider.mode)
    if build is None:
        msg = f"Unknown provider mode: {platform.provider.mode}"
        raise ConfigurationError(msg)
    provider = build(platform)
    if platform.retry.enabled:
        return RetryingProvider(provider, platform.retry)
    return provider
