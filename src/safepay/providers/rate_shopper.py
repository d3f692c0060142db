"""Rate shopping across swap providers.

Fans a fixed-receive quote request out to every enabled provider at once and
picks the quote that asks the customer for the smallest deposit.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from safepay.providers.base import (
    CoinListing,
    NoProvidersAvailableError,
    SupportedCoin,
    SwapDetails,
    SwapProvider,
    SwapQuote,
    SwapStatus,
)
from safepay.providers.health import ProviderHealthMonitor
from safepay.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

NO_QUOTE = "No quote available"


@dataclass
class FailedProvider:
    """A provider that produced no quote, and why."""

    provider: str
    error: str

    def to_dict(self) -> dict:
        return {"provider": self.provider, "error": self.error}


@dataclass
class RateShopResult:
    """Best quote plus everything else the fan-out produced."""

    best_quote: SwapQuote
    all_quotes: list[SwapQuote] = field(default_factory=list)
    failed_providers: list[FailedProvider] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "best_quote": self.best_quote.to_dict(),
            "all_quotes": [q.to_dict() for q in self.all_quotes],
            "failed_providers": [f.to_dict() for f in self.failed_providers],
        }


class RateShopper:
    """Finds the cheapest fixed-receive quote and dispatches swap operations."""

    def __init__(
        self,
        registry: ProviderRegistry,
        health: Optional[ProviderHealthMonitor] = None,
    ):
        self.registry = registry
        self.health = health

    async def _tracked(self, provider: SwapProvider, operation):
        if self.health is None:
            return await operation
        return await self.health.track(provider.name, operation)

    async def _quote_from(
        self,
        provider: SwapProvider,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
    ) -> tuple[str, Optional[SwapQuote], Optional[str]]:
        """Get one provider's quote. Never raises: faults come back as messages."""
        try:
            quote = await self._tracked(
                provider,
                provider.get_quote(from_currency, from_network, to_currency, to_network, withdraw_amount),
            )
        except Exception as e:
            error_msg = str(e) or type(e).__name__
            logger.warning(f"{provider.name} quote failed: {type(e).__name__}: {error_msg}")
            return provider.name, None, error_msg

        if quote is None:
            logger.debug(f"{provider.name} returned no quote for {from_currency}->{to_currency}")
            return provider.name, None, NO_QUOTE

        logger.info(
            f"Quote from {provider.name}: {quote.deposit_amount} {quote.deposit_currency} -> "
            f"{quote.withdraw_amount} {quote.withdraw_currency}"
        )
        return provider.name, quote, None

    async def get_best_quote(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
    ) -> Optional[RateShopResult]:
        """
        Query every enabled provider concurrently and pick the lowest deposit.

        Returns:
            RateShopResult, or None if no provider produced a quote

        Raises:
            NoProvidersAvailableError: if no provider is enabled
        """
        providers = self.registry.get_enabled()
        if not providers:
            raise NoProvidersAvailableError()

        logger.info(
            f"Rate shopping {withdraw_amount} {to_currency}/{to_network} "
            f"from {from_currency}/{from_network} across {len(providers)} provider(s)"
        )

        outcomes = await asyncio.gather(
            *(
                self._quote_from(p, from_currency, from_network, to_currency, to_network, withdraw_amount)
                for p in providers
            )
        )

        quotes: list[SwapQuote] = []
        failed: list[FailedProvider] = []
        for name, quote, error in outcomes:
            if quote is not None:
                quotes.append(quote)
            else:
                failed.append(FailedProvider(name, error or NO_QUOTE))

        if not quotes:
            logger.error(
                f"No quotes available for {from_currency}->{to_currency}. "
                f"Errors: {'; '.join(f'{f.provider}: {f.error}' for f in failed)}"
            )
            return None

        # min() keeps the first of equal deposits, i.e. registration order
        best = min(quotes, key=lambda q: q.deposit_amount)
        logger.info(
            f"Selected best quote: {best.provider} - {best.deposit_amount} {best.deposit_currency} "
            f"({len(quotes)} quote(s), {len(failed)} without)"
        )
        return RateShopResult(best_quote=best, all_quotes=quotes, failed_providers=failed)

    async def create_swap(
        self,
        provider_name: str,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
        withdraw_address: str,
        withdraw_memo: Optional[str] = None,
    ) -> SwapDetails:
        """Create a swap with a specific provider. Errors propagate."""
        provider = self.registry.require(provider_name)
        logger.info(
            f"Creating swap with {provider_name}: {withdraw_amount} {to_currency}/{to_network} "
            f"to {withdraw_address}"
        )
        return await self._tracked(
            provider,
            provider.create_swap(
                from_currency,
                from_network,
                to_currency,
                to_network,
                withdraw_amount,
                withdraw_address,
                withdraw_memo,
            ),
        )

    async def get_swap_status(self, provider_name: str, swap_id: str) -> SwapStatus:
        """Poll a swap at the provider that created it. Errors propagate."""
        provider = self.registry.require(provider_name)
        return await self._tracked(provider, provider.get_swap_status(swap_id))

    async def get_all_supported_coins(self) -> list[SupportedCoin]:
        """Union of coins across enabled providers, networks merged per coin code."""
        providers = self.registry.get_enabled()

        async def _fetch(provider: SwapProvider) -> Optional[CoinListing]:
            try:
                return await provider.fetch_supported_coins()
            except Exception as e:
                logger.warning(f"{provider.name} coin listing failed: {e}")
                return None

        listings = await asyncio.gather(*(_fetch(p) for p in providers))

        merged: dict[str, SupportedCoin] = {}
        for listing in listings:
            if listing is None:
                continue
            if listing.is_fallback:
                logger.info(f"{listing.provider} served its fallback coin list")
            for coin in listing.coins:
                code = coin.code.upper()
                existing = merged.get(code)
                if existing is None:
                    merged[code] = SupportedCoin(code, coin.name, list(dict.fromkeys(coin.networks)), coin.icon)
                    continue
                for network in coin.networks:
                    if network not in existing.networks:
                        existing.networks.append(network)
                if existing.icon is None and coin.icon:
                    existing.icon = coin.icon

        return list(merged.values())
