"""Changelly swap provider.

Changelly speaks JSON-RPC 2.0 over a single endpoint. Every request body is
signed with HMAC-SHA512 using the API secret, so both key and secret are
required for the adapter to be enabled.
"""

import hashlib
import hmac
import json
import logging
import time
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
    to_decimal,
)

logger = logging.getLogger(__name__)

CHANGELLY_API_URL = "https://api.changelly.com/v2"

NETWORK_MAP = {
    "ERC20": "ethereum",
    "TRC20": "tron",
    "BSC": "bsc",
    "POLYGON": "polygon",
    "SOL": "solana",
    "ARB": "arbitrum",
    "AVAX": "avalanche",
    "OP": "optimism",
}
REVERSE_NETWORK_MAP = {
    "ethereum": "ERC20",
    "tron": "TRC20",
    "binance_smart_chain": "BSC",
    "bsc": "BSC",
    "polygon": "POLYGON",
    "solana": "SOL",
    "arbitrum": "ARB",
    "avalanche": "AVAX",
    "avaxc": "AVAX",
    "optimism": "OP",
}

# Stablecoin ticker suffix per Changelly network
TOKEN_SUFFIXES = {
    "ethereum": "erc20",
    "tron": "trc20",
    "bsc": "bep20",
    "polygon": "polygon",
}
MULTICHAIN_TOKENS = {"usdt", "usdc", "dai"}

STATUS_MAP = {
    "new": OrderStatus.AWAITING_DEPOSIT,
    "waiting": OrderStatus.AWAITING_DEPOSIT,
    "confirming": OrderStatus.CONFIRMING,
    "exchanging": OrderStatus.EXCHANGING,
    "sending": OrderStatus.SENDING,
    "finished": OrderStatus.COMPLETED,
    "failed": OrderStatus.FAILED,
    "refunded": OrderStatus.REFUNDED,
    "overdue": OrderStatus.EXPIRED,
    "hold": OrderStatus.PENDING,
}

FALLBACK_COINS = [
    ("BTC", "Bitcoin", ["BTC"]),
    ("ETH", "Ethereum", ["ERC20"]),
    ("LTC", "Litecoin", ["LTC"]),
    ("USDT", "Tether", ["ERC20", "TRC20"]),
    ("USDC", "USD Coin", ["ERC20"]),
]


def build_ticker(currency: str, network: str) -> str:
    """Changelly ticker, e.g. ``btc`` or ``usdttrc20``."""
    ticker = currency.lower()
    mapped = NETWORK_MAP.get(network, network.lower())
    if ticker in MULTICHAIN_TOKENS and mapped in TOKEN_SUFFIXES:
        return f"{ticker}{TOKEN_SUFFIXES[mapped]}"
    return ticker


def sign_payload(secret: str, payload: bytes) -> str:
    """HMAC-SHA512 hex digest of the raw request body."""
    return hmac.new(secret.encode(), payload, hashlib.sha512).hexdigest()


class ChangellyProvider(SwapProvider):
    """Changelly fixed-rate exchange via getFixRateForAmount / createFixTransaction."""

    requires_api_key = True

    def __init__(self, config=None, transport=None):
        super().__init__(config, transport)
        self.api_secret = self.config.api_secret

    @property
    def name(self) -> str:
        return "changelly"

    @property
    def display_name(self) -> str:
        return "Changelly"

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.api_secret)

    async def _rpc(self, method: str, params: Optional[dict] = None) -> Any:
        """Call a JSON-RPC method and return its ``result``.

        Raises:
            ProviderAPIError: HTTP error or JSON-RPC error object (status_code None)
        """
        payload = json.dumps(
            {
                "jsonrpc": "2.0",
                "id": str(int(time.time() * 1000)),
                "method": method,
                "params": params or {},
            }
        ).encode()
        headers = {
            "Content-Type": "application/json",
            "api-key": self.api_key or "",
            "sign": sign_payload(self.api_secret or "", payload),
        }

        response = await self._send("POST", CHANGELLY_API_URL, content=payload, headers=headers)
        self._raise_for_status(response)
        data = self._json(response)

        if not isinstance(data, dict):
            raise ProviderError("Changelly returned unexpected format", self.name)
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderAPIError(
                f"Changelly API error: {message}", provider=self.name, status_code=None, body=message
            )
        return data.get("result")

    async def _fix_rate(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
    ) -> Optional[dict]:
        result = await self._rpc(
            "getFixRateForAmount",
            {
                "from": build_ticker(from_currency, from_network),
                "to": build_ticker(to_currency, to_network),
                "amountTo": str(withdraw_amount),
            },
        )
        if isinstance(result, list):
            result = result[0] if result else None
        return result if isinstance(result, dict) else None

    async def _fetch_coins(self) -> list[SupportedCoin]:
        result = await self._rpc("getCurrenciesFull")
        if not isinstance(result, list):
            raise ProviderError("Changelly returned unexpected format", self.name)

        coins: dict[str, SupportedCoin] = {}
        for item in result:
            if not item.get("enabled"):
                continue
            # Ticker is fused with the network for tokens (usdterc20); group by display name
            code = (item.get("name") or item.get("ticker") or "").upper()
            if not code:
                continue
            raw_net = (item.get("blockchain") or "").lower()
            network = REVERSE_NETWORK_MAP.get(raw_net, raw_net.upper() or "MAINNET")
            coin = coins.setdefault(
                code, SupportedCoin(code, item.get("fullName") or code, [], item.get("image"))
            )
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
            rate = await self._fix_rate(
                from_currency, from_network, to_currency, to_network, withdraw_amount
            )
        except ProviderAPIError as e:
            if e.status_code is None or e.is_rejection:
                logger.debug(f"Changelly rejected {from_currency}->{to_currency}: {e}")
                return None
            raise

        if not rate:
            return None
        deposit = to_decimal(rate.get("amountFrom"))
        if not deposit or deposit <= 0:
            return None

        return self._build_quote(
            from_currency,
            from_network,
            to_currency,
            to_network,
            withdraw_amount=withdraw_amount,
            deposit_amount=deposit,
            min_amount=to_decimal(rate.get("minFrom")),
            max_amount=to_decimal(rate.get("maxFrom")) or None,
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
        rate = await self._fix_rate(from_currency, from_network, to_currency, to_network, withdraw_amount)
        if not rate or not rate.get("id"):
            raise ProviderError("Changelly create swap failed: no fixed rate id", self.name)

        params = {
            "from": build_ticker(from_currency, from_network),
            "to": build_ticker(to_currency, to_network),
            "address": withdraw_address,
            "amountTo": str(withdraw_amount),
            "rateId": rate["id"],
        }
        if withdraw_memo:
            params["extraId"] = withdraw_memo

        result = await self._rpc("createFixTransaction", params)
        if not isinstance(result, dict) or not result.get("id") or not result.get("payinAddress"):
            raise ProviderError("Changelly create swap failed: missing id or deposit address", self.name)

        logger.info(f"Changelly swap created: {result['id']}")

        return SwapDetails(
            provider=self.name,
            swap_id=str(result["id"]),
            deposit_address=result["payinAddress"],
            deposit_memo=result.get("payinExtraId") or None,
            deposit_amount=to_decimal(result.get("amountExpectedFrom")) or Decimal("0"),
            deposit_currency=from_currency.upper(),
            deposit_network=from_network,
            withdraw_amount=to_decimal(result.get("amountExpectedTo")) or withdraw_amount,
            withdraw_address=withdraw_address,
            withdraw_memo=withdraw_memo,
            expires_at=default_expiry(),
        )

    async def get_swap_status(self, swap_id: str) -> SwapStatus:
        result = await self._rpc("getStatus", {"id": swap_id})
        raw = None
        if isinstance(result, str):
            raw = result
        elif isinstance(result, dict):
            raw = result.get("status")
        if not raw:
            raise ProviderError("Changelly status check failed: missing status", self.name)

        # Hashes live on the full transaction record
        details: dict = {}
        try:
            transactions = await self._rpc("getTransactions", {"id": swap_id})
            if isinstance(transactions, list) and transactions and isinstance(transactions[0], dict):
                details = transactions[0]
        except ProviderError as e:
            logger.debug(f"Changelly transaction details unavailable for {swap_id}: {e}")

        return SwapStatus(
            provider=self.name,
            swap_id=swap_id,
            status=raw,
            normalized_status=normalize_status(raw, STATUS_MAP),
            deposit_tx_hash=details.get("payinHash"),
            withdraw_tx_hash=details.get("payoutHash"),
        )
