"""Swap provider adapters, registry, rate shopping and health monitoring."""

from safepay.providers.base import (
    CoinListing,
    CoinListSource,
    NoProvidersAvailableError,
    OrderStatus,
    ProviderAPIError,
    ProviderConfig,
    ProviderError,
    ProviderNotFoundError,
    ProviderTimeoutError,
    SupportedCoin,
    SwapDetails,
    SwapProvider,
    SwapQuote,
    SwapStatus,
    normalize_status,
)
from safepay.providers.factory import (
    ProviderContext,
    create_default_registry,
    create_provider_context,
    get_provider_context,
)
from safepay.providers.health import (
    HealthCheckResult,
    HealthThresholds,
    OverallHealth,
    ProviderHealth,
    ProviderHealthMonitor,
)
from safepay.providers.rate_shopper import FailedProvider, RateShopper, RateShopResult
from safepay.providers.registry import ProviderRegistry

__all__ = [
    "CoinListing",
    "CoinListSource",
    "FailedProvider",
    "HealthCheckResult",
    "HealthThresholds",
    "NoProvidersAvailableError",
    "OrderStatus",
    "OverallHealth",
    "ProviderAPIError",
    "ProviderConfig",
    "ProviderContext",
    "ProviderError",
    "ProviderHealth",
    "ProviderHealthMonitor",
    "ProviderNotFoundError",
    "ProviderRegistry",
    "ProviderTimeoutError",
    "RateShopResult",
    "RateShopper",
    "SupportedCoin",
    "SwapDetails",
    "SwapProvider",
    "SwapQuote",
    "SwapStatus",
    "create_default_registry",
    "create_provider_context",
    "get_provider_context",
    "normalize_status",
]
