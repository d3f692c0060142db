"""ChangeNOW swap provider (API v2, key required)."""

import logging
from decimal import Decimal
from typing import Optional

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

CHANGENOW_API_URL = "https://api.changenow.io/v2"

NETWORK_MAP = {
    "ERC20": "eth",
    "TRC20": "trx",
    "BSC": "bsc",
    "POLYGON": "matic",
    "SOL": "sol",
    "ARB": "arbitrum",
    "AVAX": "avaxc",
    "OP": "optimism",
}
REVERSE_NETWORK_MAP = {v: k for k, v in NETWORK_MAP.items()}

STATUS_MAP = {
    "new": OrderStatus.AWAITING_DEPOSIT,
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
    ("BTC", "Bitcoin", ["BTC"]),
    ("ETH", "Ethereum", ["ERC20"]),
    ("LTC", "Litecoin", ["LTC"]),
    ("USDT", "Tether", ["ERC20", "TRC20", "BSC", "POLYGON"]),
    ("USDC", "USD Coin", ["ERC20", "POLYGON", "ARB"]),
]


def split_ticker(currency: str, network: str) -> tuple[str, str]:
    """ChangeNOW v2 addresses a coin as (ticker, network)."""
    return currency.lower(), NETWORK_MAP.get(network, network.lower())


class ChangeNowProvider(SwapProvider):
    """ChangeNOW fixed-rate flow using reverse (fixed receive) estimates."""

    requires_api_key = True

    @property
    def name(self) -> str:
        return "changenow"

    @property
    def display_name(self) -> str:
        return "ChangeNOW"

    def _headers(self) -> dict:
        headers = super()._headers()
        if self.api_key:
            headers["x-changenow-api-key"] = self.api_key
        return headers

    def _pair(
        self, from_currency: str, from_network: str, to_currency: str, to_network: str
    ) -> dict:
        from_ticker, from_net = split_ticker(from_currency, from_network)
        to_ticker, to_net = split_ticker(to_currency, to_network)
        return {
            "fromCurrency": from_ticker,
            "fromNetwork": from_net,
            "toCurrency": to_ticker,
            "toNetwork": to_net,
            "flow": "fixed-rate",
            "type": "reverse",
        }

    async def _fetch_coins(self) -> list[SupportedCoin]:
        data = await self._request_json(
            "GET", f"{CHANGENOW_API_URL}/exchange/currencies", params={"active": "true"}
        )
        if not isinstance(data, list):
            raise ProviderError("ChangeNOW returned unexpected format", self.name)

        coins: dict[str, SupportedCoin] = {}
        for item in data:
            code = (item.get("ticker") or item.get("legacyTicker") or "").upper()
            if not code:
                continue
            raw_net = (item.get("network") or "").lower()
            network = REVERSE_NETWORK_MAP.get(raw_net, raw_net.upper() or "MAINNET")
            coin = coins.setdefault(code, SupportedCoin(code, item.get("name") or code, [], item.get("image")))
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
        params = self._pair(from_currency, from_network, to_currency, to_network)
        params["toAmount"] = str(withdraw_amount)

        try:
            data = await self._request_json(
                "GET", f"{CHANGENOW_API_URL}/exchange/estimated-amount", params=params
            )
        except ProviderAPIError as e:
            if e.is_rejection:
                logger.debug(f"ChangeNOW rejected {from_currency}->{to_currency}: {e.body}")
                return None
            raise

        if not isinstance(data, dict) or data.get("error"):
            return None
        deposit = to_decimal(data.get("fromAmount"))
        if not deposit or deposit <= 0:
            return None

        return self._build_quote(
            from_currency,
            from_network,
            to_currency,
            to_network,
            withdraw_amount=withdraw_amount,
            deposit_amount=deposit,
            min_amount=to_decimal(data.get("minAmount")),
            max_amount=to_decimal(data.get("maxAmount")) or None,
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
        body = self._pair(from_currency, from_network, to_currency, to_network)
        body.update({"toAmount": str(withdraw_amount), "address": withdraw_address})
        if withdraw_memo:
            body["extraId"] = withdraw_memo

        data = await self._request_json("POST", f"{CHANGENOW_API_URL}/exchange", json=body)

        if not isinstance(data, dict) or not data.get("id") or not data.get("payinAddress"):
            message = data.get("message") if isinstance(data, dict) else None
            raise ProviderError(f"ChangeNOW create swap failed: {message or 'Unknown error'}", self.name)

        logger.info(f"ChangeNOW swap created: {data['id']}")

        deposit = to_decimal(data.get("fromAmount")) or to_decimal(data.get("expectedAmountFrom"))
        withdraw = to_decimal(data.get("toAmount")) or to_decimal(data.get("expectedAmountTo"))
        return SwapDetails(
            provider=self.name,
            swap_id=str(data["id"]),
            deposit_address=data["payinAddress"],
            deposit_memo=data.get("payinExtraId") or None,
            deposit_amount=deposit or Decimal("0"),
            deposit_currency=from_currency.upper(),
            deposit_network=from_network,
            withdraw_amount=withdraw or withdraw_amount,
            withdraw_address=withdraw_address,
            withdraw_memo=withdraw_memo,
            expires_at=parse_timestamp(data.get("validUntil")) or default_expiry(),
        )

    async def get_swap_status(self, swap_id: str) -> SwapStatus:
        data = await self._request_json(
            "GET", f"{CHANGENOW_API_URL}/exchange/by-id", params={"id": swap_id}
        )
        if not isinstance(data, dict) or data.get("error"):
            message = data.get("message") if isinstance(data, dict) else None
            raise ProviderError(f"ChangeNOW status check failed: {message or 'Unknown error'}", self.name)

        raw = data.get("status") or "unknown"
        return SwapStatus(
            provider=self.name,
            swap_id=swap_id,
            status=raw,
            normalized_status=normalize_status(raw, STATUS_MAP),
            deposit_tx_hash=data.get("payinHash"),
            withdraw_tx_hash=data.get("payoutHash"),
        )
