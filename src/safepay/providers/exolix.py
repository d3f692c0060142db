"""Exolix swap provider.

Public API, no authentication required. An API key, if configured, is sent
in the Authorization header for higher rate limits.
"""

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
    to_decimal,
    to_int,
)

logger = logging.getLogger(__name__)

EXOLIX_API_URL = "https://exolix.com/api/v2"

# Canonical network -> Exolix network
NETWORK_MAP = {
    "ERC20": "ETH",
    "TRC20": "TRX",
    "BSC": "BSC",
    "POLYGON": "MATIC",
    "SOL": "SOL",
    "ARB": "ARBITRUM",
    "AVAX": "AVAX",
    "OP": "OPTIMISM",
}
REVERSE_NETWORK_MAP = {v: k for k, v in NETWORK_MAP.items()}

STATUS_MAP = {
    "wait": OrderStatus.AWAITING_DEPOSIT,
    "confirmation": OrderStatus.CONFIRMING,
    "confirmed": OrderStatus.CONFIRMING,
    "exchanging": OrderStatus.EXCHANGING,
    "sending": OrderStatus.SENDING,
    "success": OrderStatus.COMPLETED,
    "overdue": OrderStatus.EXPIRED,
    "refund": OrderStatus.REFUNDED,
}

FALLBACK_COINS = [
    ("BTC", "Bitcoin", "BTC"),
    ("ETH", "Ethereum", "ERC20"),
    ("LTC", "Litecoin", "LTC"),
    ("XRP", "Ripple", "XRP"),
    ("DOGE", "Dogecoin", "DOGE"),
    ("SOL", "Solana", "SOL"),
    ("TRX", "Tron", "TRC20"),
    ("BNB", "BNB", "BSC"),
    ("MATIC", "Polygon", "POLYGON"),
    ("AVAX", "Avalanche", "AVAX"),
    ("ADA", "Cardano", "ADA"),
    ("DOT", "Polkadot", "DOT"),
    ("LINK", "Chainlink", "ERC20"),
]


class ExolixProvider(SwapProvider):
    """Exolix fixed-rate exchange with fixed withdrawal amounts."""

    requires_api_key = False

    @property
    def name(self) -> str:
        return "exolix"

    @property
    def display_name(self) -> str:
        return "Exolix"

    def _headers(self) -> dict:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = self.api_key
        return headers

    def _pair_params(
        self, from_currency: str, from_network: str, to_currency: str, to_network: str
    ) -> dict:
        return {
            "coinFrom": from_currency.upper(),
            "networkFrom": NETWORK_MAP.get(from_network, from_network),
            "coinTo": to_currency.upper(),
            "networkTo": NETWORK_MAP.get(to_network, to_network),
        }

    async def _fetch_coins(self) -> list[SupportedCoin]:
        data = await self._request_json("GET", f"{EXOLIX_API_URL}/currencies")

        if isinstance(data, dict):
            data = data.get("data") or data.get("currencies") or []
        if not isinstance(data, list):
            raise ProviderError(f"Exolix returned unexpected format: {type(data).__name__}", self.name)

        coins = []
        for item in data:
            code = item.get("code") or item.get("symbol")
            if not code:
                continue
            networks = []
            for net in item.get("networks") or []:
                raw = net.get("network") or net.get("name")
                if not raw:
                    continue
                canonical = REVERSE_NETWORK_MAP.get(raw, raw)
                if canonical not in networks:
                    networks.append(canonical)
            coins.append(
                SupportedCoin(
                    code=code.upper(),
                    name=item.get("name") or code,
                    networks=networks or ["MAINNET"],
                    icon=item.get("icon") or item.get("image"),
                )
            )
        return coins

    def _fallback_coins(self) -> list[SupportedCoin]:
        return [SupportedCoin(code, name, [net]) for code, name, net in FALLBACK_COINS]

    async def get_quote(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
    ) -> Optional[SwapQuote]:
        params = self._pair_params(from_currency, from_network, to_currency, to_network)
        params.update(
            {
                "amount": str(withdraw_amount),
                "rateType": "fixed",
                "withdrawalType": "fixed",
            }
        )

        try:
            data = await self._request_json("GET", f"{EXOLIX_API_URL}/rate", params=params)
        except ProviderAPIError as e:
            if e.is_rejection:
                logger.debug(f"Exolix rejected {from_currency}->{to_currency}: {e.body}")
                return None
            raise

        if not isinstance(data, dict) or data.get("error"):
            return None

        deposit = to_decimal(data.get("fromAmount"))
        if not deposit or deposit <= 0 or not to_decimal(data.get("toAmount")):
            return None

        return self._build_quote(
            from_currency,
            from_network,
            to_currency,
            to_network,
            withdraw_amount=withdraw_amount,
            deposit_amount=deposit,
            rate=to_decimal(data.get("rate")),
            min_amount=to_decimal(data.get("minAmount")),
            max_amount=to_decimal(data.get("maxAmount")) or None,
            estimated_minutes=10,
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
        body = self._pair_params(from_currency, from_network, to_currency, to_network)
        body.update(
            {
                "amount": str(withdraw_amount),
                "withdrawalType": "fixed",
                "withdrawalAddress": withdraw_address,
                "rateType": "fixed",
            }
        )
        if withdraw_memo:
            body["withdrawalExtraId"] = withdraw_memo

        data = await self._request_json("POST", f"{EXOLIX_API_URL}/transactions", json=body)

        if not isinstance(data, dict) or data.get("error"):
            message = data.get("message") if isinstance(data, dict) else None
            raise ProviderError(f"Exolix create swap failed: {message or 'Unknown error'}", self.name)
        if not data.get("id") or not data.get("depositAddress"):
            raise ProviderError("Exolix create swap failed: missing id or deposit address", self.name)

        logger.info(f"Exolix swap created: {data['id']}")

        return SwapDetails(
            provider=self.name,
            swap_id=str(data["id"]),
            deposit_address=data["depositAddress"],
            deposit_memo=data.get("depositExtraId") or None,
            deposit_amount=to_decimal(data.get("amountFrom")) or Decimal("0"),
            deposit_currency=from_currency.upper(),
            deposit_network=from_network,
            withdraw_amount=to_decimal(data.get("amountTo")) or withdraw_amount,
            withdraw_address=withdraw_address,
            withdraw_memo=withdraw_memo,
            expires_at=default_expiry(),
        )

    async def get_swap_status(self, swap_id: str) -> SwapStatus:
        data = await self._request_json("GET", f"{EXOLIX_API_URL}/transactions/{swap_id}")

        if not isinstance(data, dict) or data.get("error"):
            message = data.get("message") if isinstance(data, dict) else None
            raise ProviderError(f"Exolix status check failed: {message or 'Unknown error'}", self.name)

        raw = data.get("status") or "unknown"
        return SwapStatus(
            provider=self.name,
            swap_id=swap_id,
            status=raw,
            normalized_status=normalize_status(raw, STATUS_MAP),
            deposit_tx_hash=data.get("hashIn"),
            withdraw_tx_hash=data.get("hashOut"),
            deposit_confirmations=to_int(data.get("confirmations")),
            required_confirmations=to_int(data.get("confirmationsNeeded")),
        )
