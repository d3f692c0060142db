"""Factory for creating swap providers and the objects that coordinate them.

Every adapter is built from settings. Adapters whose required credentials are
missing are still created, just disabled, so they show up in listings and
health reports.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional

from safepay.config import Settings, get_settings
from safepay.providers.base import SwapProvider
from safepay.providers.health import HealthThresholds, ProviderHealthMonitor
from safepay.providers.rate_shopper import RateShopper
from safepay.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


def create_exolix_provider(settings: Optional[Settings] = None) -> SwapProvider:
    """Create Exolix provider. Works without an API key."""
    from safepay.providers.exolix import ExolixProvider

    settings = settings or get_settings()
    return ExolixProvider(settings.provider_config("exolix"))


def create_fixedfloat_provider(settings: Optional[Settings] = None) -> SwapProvider:
    """Create FixedFloat provider. An API key only raises rate limits."""
    from safepay.providers.fixedfloat import FixedFloatProvider

    settings = settings or get_settings()
    return FixedFloatProvider(settings.provider_config("fixedfloat"))


def create_changenow_provider(settings: Optional[Settings] = None) -> SwapProvider:
    """Create ChangeNOW provider (needs CHANGENOW_API_KEY)."""
    from safepay.providers.changenow import ChangeNowProvider

    settings = settings or get_settings()
    return ChangeNowProvider(settings.provider_config("changenow"))


def create_simpleswap_provider(settings: Optional[Settings] = None) -> SwapProvider:
    """Create SimpleSwap provider (needs SIMPLESWAP_API_KEY)."""
    from safepay.providers.simpleswap import SimpleSwapProvider

    settings = settings or get_settings()
    return SimpleSwapProvider(settings.provider_config("simpleswap"))


def create_stealthex_provider(settings: Optional[Settings] = None) -> SwapProvider:
    """Create StealthEX provider (needs STEALTHEX_API_KEY)."""
    from safepay.providers.stealthex import StealthExProvider

    settings = settings or get_settings()
    return StealthExProvider(settings.provider_config("stealthex"))


def create_changelly_provider(settings: Optional[Settings] = None) -> SwapProvider:
    """Create Changelly provider (needs CHANGELLY_API_KEY and CHANGELLY_API_SECRET)."""
    from safepay.providers.changelly import ChangellyProvider

    settings = settings or get_settings()
    return ChangellyProvider(settings.provider_config("changelly"))


PROVIDER_FACTORIES: dict[str, Callable[[Optional[Settings]], SwapProvider]] = {
    "exolix": create_exolix_provider,
    "fixedfloat": create_fixedfloat_provider,
    "changenow": create_changenow_provider,
    "simpleswap": create_simpleswap_provider,
    "stealthex": create_stealthex_provider,
    "changelly": create_changelly_provider,
}


def create_default_providers(settings: Optional[Settings] = None) -> list[SwapProvider]:
    """Build the adapters named in ``enabled_providers``, in that order."""
    settings = settings or get_settings()
    providers = []

    for name in settings.provider_names:
        factory = PROVIDER_FACTORIES.get(name)
        if factory is None:
            logger.warning(f"Unknown provider in ENABLED_PROVIDERS: {name}")
            continue
        provider = factory(settings)
        if not provider.enabled:
            logger.info(f"{provider.display_name} registered but disabled: API credentials not configured")
        providers.append(provider)

    return providers


def create_default_registry(settings: Optional[Settings] = None) -> ProviderRegistry:
    """Create a registry populated with the default adapters."""
    registry = ProviderRegistry()
    registry.initialize_defaults(settings)
    return registry


@dataclass
class ProviderContext:
    """Everything a caller needs to shop rates and watch provider health."""

    settings: Settings
    registry: ProviderRegistry
    health: ProviderHealthMonitor
    rate_shopper: RateShopper


def create_provider_context(
    settings: Optional[Settings] = None,
    initialize: bool = True,
) -> ProviderContext:
    """Build an isolated registry, health monitor and rate shopper.

    Args:
        settings: Settings to build from (defaults to get_settings())
        initialize: Register the default adapters; False gives an empty registry
    """
    settings = settings or get_settings()
    registry = ProviderRegistry()
    if initialize:
        registry.initialize_defaults(settings)

    health = ProviderHealthMonitor(registry, HealthThresholds.from_settings(settings))
    rate_shopper = RateShopper(registry, health)
    return ProviderContext(settings=settings, registry=registry, health=health, rate_shopper=rate_shopper)


@lru_cache
def get_provider_context() -> ProviderContext:
    """Get the cached process-wide provider context."""
    return create_provider_context()
