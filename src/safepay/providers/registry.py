"""Provider registry: name -> adapter instance, plus the runtime rotation switch.

Two things decide whether a provider takes part in rate shopping: the
adapter's own ``enabled`` flag (credentials configured) and the registry's
runtime switch, which the health monitor and operators flip.
"""

import logging
from typing import TYPE_CHECKING, Optional

from safepay.providers.base import ProviderNotFoundError, SwapProvider

if TYPE_CHECKING:
    from safepay.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of swap providers keyed by provider name.

    Usage:
        registry = ProviderRegistry()
        registry.initialize_defaults()
        for provider in registry.get_enabled():
            ...
    """

    def __init__(self) -> None:
        # dict preserves registration order, which is also tie-break order
        self._providers: dict[str, SwapProvider] = {}
        self._disabled: dict[str, str] = {}
        self.initialized = False

    def register(self, provider: SwapProvider) -> None:
        """Register a provider, replacing any existing one with the same name."""
        if provider.name in self._providers:
            logger.info(f"Replacing registered provider: {provider.name}")
        self._providers[provider.name] = provider
        logger.debug(f"Registered provider: {provider.name} (enabled={provider.enabled})")

    def unregister(self, name: str) -> bool:
        """Remove a provider. Returns True if it was registered."""
        self._disabled.pop(name, None)
        removed = self._providers.pop(name, None)
        if removed:
            logger.info(f"Unregistered provider: {name}")
        return removed is not None

    def get(self, name: str) -> Optional[SwapProvider]:
        return self._providers.get(name)

    def require(self, name: str) -> SwapProvider:
        """Get a provider or raise ProviderNotFoundError."""
        provider = self._providers.get(name)
        if provider is None:
            logger.warning(f"Unknown provider '{name}'. Available: {self.names}")
            raise ProviderNotFoundError(name)
        return provider

    def get_all(self) -> list[SwapProvider]:
        return list(self._providers.values())

    def get_enabled(self) -> list[SwapProvider]:
        """Snapshot of providers eligible for rate shopping, in registration order.

        The returned list is a copy; later registry changes don't affect it.
        """
        return [
            provider
            for name, provider in self._providers.items()
            if provider.enabled and name not in self._disabled
        ]

    def has(self, name: str) -> bool:
        return name in self._providers

    @property
    def names(self) -> list[str]:
        return list(self._providers)

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    # ----------------------
    # Runtime rotation
    # ----------------------

    def disable(self, name: str, reason: str = "Manually disabled") -> None:
        """Take a provider out of rotation without unregistering it."""
        self.require(name)
        self._disabled[name] = reason
        logger.warning(f"Provider {name} removed from rotation: {reason}")

    def enable(self, name: str) -> None:
        """Return a provider to rotation."""
        self.require(name)
        if self._disabled.pop(name, None) is not None:
            logger.info(f"Provider {name} returned to rotation")

    def is_enabled(self, name: str) -> bool:
        """Check if a provider is registered, configured and in rotation."""
        provider = self._providers.get(name)
        return provider is not None and provider.enabled and name not in self._disabled

    def disabled_reason(self, name: str) -> Optional[str]:
        return self._disabled.get(name)

    # ----------------------
    # Defaults
    # ----------------------

    def initialize_defaults(self, settings: Optional["Settings"] = None) -> None:
        """Register the default adapter set once. Later calls are no-ops."""
        if self.initialized:
            return

        from safepay.providers.factory import create_default_providers

        for provider in create_default_providers(settings):
            self.register(provider)
        self.initialized = True

        enabled = [p.name for p in self.get_enabled()]
        logger.info(f"Provider registry initialized: {len(self)} registered, enabled: {enabled}")
