"""Pytest configuration and fixtures."""

import asyncio
import os
from decimal import Decimal
from typing import Optional

import pytest

# Set test environment before settings are loaded
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"
for _key in (
    "EXOLIX_API_KEY",
    "FIXEDFLOAT_API_KEY",
    "CHANGENOW_API_KEY",
    "SIMPLESWAP_API_KEY",
    "STEALTHEX_API_KEY",
    "CHANGELLY_API_KEY",
    "CHANGELLY_API_SECRET",
):
    os.environ[_key] = ""

from safepay.providers.base import (
    OrderStatus,
    ProviderConfig,
    SupportedCoin,
    SwapDetails,
    SwapProvider,
    SwapQuote,
    SwapStatus,
    default_expiry,
    normalize_status,
)
from safepay.providers.health import ProviderHealthMonitor
from safepay.providers.rate_shopper import RateShopper
from safepay.providers.registry import ProviderRegistry

FAKE_STATUS_MAP = {
    "waiting": OrderStatus.AWAITING_DEPOSIT,
    "finished": OrderStatus.COMPLETED,
}


class FakeProvider(SwapProvider):
    """In-memory provider with scripted answers."""

    def __init__(
        self,
        name: str,
        deposit: Optional[str] = None,
        error: Optional[Exception] = None,
        delay: float = 0,
        coins: Optional[list[SupportedCoin]] = None,
        coin_error: Optional[Exception] = None,
        enabled: bool = True,
        status: str = "waiting",
    ):
        super().__init__(ProviderConfig(timeout=5))
        self._name = name
        self.deposit = Decimal(deposit) if deposit is not None else None
        self.error = error
        self.delay = delay
        self.coins = coins if coins is not None else [SupportedCoin("BTC", "Bitcoin", ["BTC"])]
        self.coin_error = coin_error
        self._enabled = enabled
        self.status = status
        self.quote_calls = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def display_name(self) -> str:
        return self._name.title()

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def _fetch_coins(self) -> list[SupportedCoin]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.coin_error:
            raise self.coin_error
        return list(self.coins)

    def _fallback_coins(self) -> list[SupportedCoin]:
        return [SupportedCoin("BTC", "Bitcoin", ["BTC"])]

    async def get_quote(
        self, from_currency, from_network, to_currency, to_network, withdraw_amount
    ) -> Optional[SwapQuote]:
        self.quote_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        if self.deposit is None:
            return None
        return self._build_quote(
            from_currency,
            from_network,
            to_currency,
            to_network,
            withdraw_amount=withdraw_amount,
            deposit_amount=self.deposit,
        )

    async def create_swap(
        self,
        from_currency,
        from_network,
        to_currency,
        to_network,
        withdraw_amount,
        withdraw_address,
        withdraw_memo=None,
    ) -> SwapDetails:
        if self.error:
            raise self.error
        return SwapDetails(
            provider=self.name,
            swap_id=f"{self.name}-1",
            deposit_address="bc1qdeposit",
            deposit_amount=self.deposit or Decimal("0"),
            deposit_currency=from_currency,
            deposit_network=from_network,
            withdraw_amount=withdraw_amount,
            withdraw_address=withdraw_address,
            withdraw_memo=withdraw_memo,
            expires_at=default_expiry(),
        )

    async def get_swap_status(self, swap_id: str) -> SwapStatus:
        if self.error:
            raise self.error
        return SwapStatus(
            provider=self.name,
            swap_id=swap_id,
            status=self.status,
            normalized_status=normalize_status(self.status, FAKE_STATUS_MAP),
        )


@pytest.fixture
def make_provider():
    """Factory for scripted fake providers."""
    return FakeProvider


@pytest.fixture
def registry() -> ProviderRegistry:
    """Empty provider registry."""
    return ProviderRegistry()


@pytest.fixture
def health(registry) -> ProviderHealthMonitor:
    """Health monitor bound to the test registry."""
    return ProviderHealthMonitor(registry)


@pytest.fixture
def shopper(registry, health) -> RateShopper:
    """Rate shopper with health tracking."""
    return RateShopper(registry, health)
