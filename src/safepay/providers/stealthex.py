"""StealthEX swap provider (API v2, Bearer key required)."""

import logging
from decimal import Decimal
from typing import Any, Optional

from safepay.providers.base import (
    OrderStatus,
    ProviderAPIError,
    ProviderError,
    SupportedCoin,
    SwapDetails,
    SwapProvider,
    SwapQuote,
    SwapStatus,
    default_expiry,
    normalize_status,
    parse_timestamp,
    to_decimal,
)

logger = logging.getLogger(__name__)

STEALTHEX_API_URL = "https://api.stealthex.io/api/v2"

NETWORK_MAP = {
    "ERC20": "ethereum",
    "TRC20": "tron",
    "BSC": "bsc",
    "POLYGON": "polygon",
    "SOL": "mainnet",
    "ARB": "arbitrum",
    "AVAX": "avalanche",
    "OP": "optimism",
}
REVERSE_NETWORK_MAP = {
    "ethereum": "ERC20",
    "tron": "TRC20",
    "bsc": "BSC",
    "polygon": "POLYGON",
    "arbitrum": "ARB",
    "avalanche": "AVAX",
    "optimism": "OP",
    "mainnet": "MAINNET",
}

# Coins that live on their own chain; always addressed as ``mainnet``
MAINNET_SYMBOLS = {"BTC", "ETH", "LTC", "XRP", "DOGE", "SOL", "ADA", "DOT"}

STATUS_MAP = {
    "waiting": OrderStatus.AWAITING_DEPOSIT,
    "confirming": OrderStatus.CONFIRMING,
    "exchanging": OrderStatus.EXCHANGING,
    "sending": OrderStatus.SENDING,
    "finished": OrderStatus.COMPLETED,
    "failed": OrderStatus.FAILED,
    "refunded": OrderStatus.REFUNDED,
    "expired": OrderStatus.EXPIRED,
}

FALLBACK_COINS = [
    ("BTC", "Bitcoin", ["MAINNET"]),
    ("ETH", "Ethereum", ["MAINNET"]),
    ("LTC", "Litecoin", ["MAINNET"]),
    ("USDT", "Tether", ["ERC20", "TRC20"]),
    ("USDC", "USD Coin", ["ERC20"]),
]


def normalize_network(currency: str, network: str) -> str:
    """StealthEX network name for a canonical (currency, network) pair."""
    currency = currency.upper()
    upper = network.upper()
    if upper in ("MAINNET", currency) or currency in MAINNET_SYMBOLS:
        return "mainnet"
    return NETWORK_MAP.get(upper, network.lower())


def build_route(from_currency: str, from_network: str, to_currency: str, to_network: str) -> dict:
    return {
        "from": {
            "symbol": from_currency.lower(),
            "network": normalize_network(from_currency, from_network),
        },
        "to": {
            "symbol": to_currency.lower(),
            "network": normalize_network(to_currency, to_network),
        },
    }


class StealthExProvider(SwapProvider):
    """StealthEX fixed-rate exchange with reversed estimation."""

    requires_api_key = True

    @property
    def name(self) -> str:
        return "stealthex"

    @property
    def display_name(self) -> str:
        return "StealthEX"

    def _headers(self) -> dict:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _estimate(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
    ) -> Any:
        body = {
            "route": build_route(from_currency, from_network, to_currency, to_network),
            "amount": str(withdraw_amount),
            "estimation": "reversed",
            "rate": "fixed",
        }
        return await self._request_json("POST", f"{STEALTHEX_API_URL}/estimate", json=body)

    async def _range(
        self, from_currency: str, from_network: str, to_currency: str, to_network: str
    ) -> tuple[Optional[Decimal], Optional[Decimal]]:
        body = {
            "route": build_route(from_currency, from_network, to_currency, to_network),
            "estimation": "reversed",
            "rate": "fixed",
        }
        try:
            data = await self._request_json("POST", f"{STEALTHEX_API_URL}/range", json=body)
        except ProviderError as e:
            # Bounds are informational; the estimate already priced the pair
            logger.debug(f"StealthEX range lookup failed: {e}")
            return None, None
        if not isinstance(data, dict):
            return None, None
        return to_decimal(data.get("min_amount")), to_decimal(data.get("max_amount"))

    async def _fetch_coins(self) -> list[SupportedCoin]:
        data = await self._request_json(
            "GET", f"{STEALTHEX_API_URL}/currencies", params={"limit": 250, "offset": 0}
        )
        if not isinstance(data, list):
            raise ProviderError("StealthEX returned unexpected format", self.name)

        coins: dict[str, SupportedCoin] = {}
        for item in data:
            code = (item.get("symbol") or "").upper()
            if not code:
                continue
            raw_net = (item.get("network") or "mainnet").lower()
            network = REVERSE_NETWORK_MAP.get(raw_net, raw_net.upper())
            coin = coins.setdefault(code, SupportedCoin(code, item.get("name") or code, [], item.get("icon_url")))
            if network not in coin.networks:
                coin.networks.append(network)
        return list(coins.values())

    def _fallback_coins(self) -> list[SupportedCoin]:
        return [SupportedCoin(code, name, list(nets)) for code, name, nets in FALLBACK_COINS]

    async def get_quote(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
    ) -> Optional[SwapQuote]:
        try:
            estimate = await self._estimate(
                from_currency, from_network, to_currency, to_network, withdraw_amount
            )
        except ProviderAPIError as e:
            if e.is_rejection:
                logger.debug(f"StealthEX rejected {from_currency}->{to_currency}: {e.body}")
                return None
            raise

        if not isinstance(estimate, dict):
            return None
        deposit = to_decimal(estimate.get("estimated_amount"))
        if not deposit or deposit <= 0:
            return None

        min_amount, max_amount = await self._range(from_currency, from_network, to_currency, to_network)

        return self._build_quote(
            from_currency,
            from_network,
            to_currency,
            to_network,
            withdraw_amount=withdraw_amount,
            deposit_amount=deposit,
            min_amount=min_amount,
            max_amount=max_amount,
            estimated_minutes=15,
        )

    async def create_swap(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
        withdraw_address: str,
        withdraw_memo: Optional[str] = None,
    ) -> SwapDetails:
        estimate = await self._estimate(
            from_currency, from_network, to_currency, to_network, withdraw_amount
        )
        rate_id = None
        if isinstance(estimate, dict):
            rate_id = (estimate.get("rate") or {}).get("id")
        if not rate_id:
            raise ProviderError("StealthEX create swap failed: missing rate ID", self.name)

        body = {
            "route": build_route(from_currency, from_network, to_currency, to_network),
            "amount": str(withdraw_amount),
            "estimation": "reversed",
            "rate": "fixed",
            "rate_id": rate_id,
            "address": withdraw_address,
        }
        if withdraw_memo:
            body["extra_id"] = withdraw_memo

        data = await self._request_json("POST", f"{STEALTHEX_API_URL}/exchange", json=body)

        if not isinstance(data, dict):
            raise ProviderError("StealthEX create swap failed: unexpected response", self.name)
        deposit = data.get("deposit") or {}
        withdrawal = data.get("withdrawal") or {}
        if not data.get("id") or not deposit.get("address"):
            raise ProviderError("StealthEX create swap failed: missing deposit address", self.name)

        logger.info(f"StealthEX swap created: {data['id']}")

        return SwapDetails(
            provider=self.name,
            swap_id=str(data["id"]),
            deposit_address=deposit["address"],
            deposit_memo=deposit.get("extra_id") or None,
            deposit_amount=to_decimal(deposit.get("expected_amount")) or Decimal("0"),
            deposit_currency=from_currency.upper(),
            deposit_network=from_network,
            withdraw_amount=to_decimal(withdrawal.get("expected_amount")) or withdraw_amount,
            withdraw_address=withdraw_address,
            withdraw_memo=withdraw_memo,
            expires_at=parse_timestamp(data.get("expires_at")) or default_expiry(),
        )

    async def get_swap_status(self, swap_id: str) -> SwapStatus:
        data = await self._request_json("GET", f"{STEALTHEX_API_URL}/exchange/{swap_id}")
        if not isinstance(data, dict) or not data.get("status"):
            raise ProviderError("StealthEX status check failed: missing status", self.name)

        raw = data["status"]
        return SwapStatus(
            provider=self.name,
            swap_id=swap_id,
            status=raw,
            normalized_status=normalize_status(raw, STATUS_MAP),
            deposit_tx_hash=(data.get("deposit") or {}).get("tx_hash") or None,
            withdraw_tx_hash=(data.get("withdrawal") or {}).get("tx_hash") or None,
        )
