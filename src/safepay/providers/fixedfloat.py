"""FixedFloat swap provider.

FixedFloat reports errors in the response body: every reply carries a
``code`` field and anything other than 0 is a failure, even on HTTP 200.
"""

import logging
from datetime import datetime, timedelta, timezone
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
    to_int,
)

logger = logging.getLogger(__name__)

FIXEDFLOAT_API_URL = "https://ff.io/api/v2"

NETWORK_MAP = {
    "ERC20": "ERC20",
    "TRC20": "TRC20",
    "BSC": "BEP20",
    "POLYGON": "POLYGON",
    "SOL": "SOL",
    "ARB": "ARBITRUM",
    "AVAX": "AVAXC",
    "OP": "OPTIMISM",
}
REVERSE_NETWORK_MAP = {v: k for k, v in NETWORK_MAP.items()}

# Chains whose coin ticker already identifies the network
NATIVE_CHAINS = {"BTC", "LTC", "DOGE", "XRP", "XLM", "ADA", "DOT", "XMR", "BCH", "MAINNET"}

STATUS_MAP = {
    "new": OrderStatus.AWAITING_DEPOSIT,
    "pending": OrderStatus.CONFIRMING,
    "exchange": OrderStatus.EXCHANGING,
    "withdraw": OrderStatus.SENDING,
    "done": OrderStatus.COMPLETED,
    "expired": OrderStatus.EXPIRED,
    "emergency": OrderStatus.FAILED,
}

FALLBACK_COINS = [
    ("BTC", "Bitcoin", ["BTC"]),
    ("ETH", "Ethereum", ["ERC20"]),
    ("LTC", "Litecoin", ["LTC"]),
    ("USDT", "Tether", ["ERC20", "TRC20", "BSC", "POLYGON"]),
    ("USDC", "USD Coin", ["ERC20", "POLYGON", "SOL"]),
    ("XMR", "Monero", ["XMR"]),
]


def build_currency_code(currency: str, network: str) -> str:
    """FixedFloat ccy code: ticker plus network suffix (``USDTTRC20``), or bare ticker."""
    currency = currency.upper()
    mapped = NETWORK_MAP.get(network, network)
    if not mapped or mapped.upper() in NATIVE_CHAINS or mapped.upper() == currency:
        return currency
    return f"{currency}{mapped}"


def _tx_of(side: Any) -> dict:
    tx = side.get("tx") if isinstance(side, dict) else None
    return tx if isinstance(tx, dict) else {}


class FixedFloatProvider(SwapProvider):
    """FixedFloat exchange with direction=to for fixed receive amounts."""

    requires_api_key = False

    @property
    def name(self) -> str:
        return "fixedfloat"

    @property
    def display_name(self) -> str:
        return "FixedFloat"

    def _headers(self) -> dict:
        headers = super()._headers()
        if self.api_key:
            headers["X-API-KEY"] = self.api_key
        return headers

    async def _call(self, endpoint: str, body: Optional[dict] = None) -> Any:
        """POST to FixedFloat and unwrap ``data``, raising on non-zero ``code``."""
        payload = await self._request_json("POST", f"{FIXEDFLOAT_API_URL}{endpoint}", json=body or {})
        if not isinstance(payload, dict):
            raise ProviderError("FixedFloat returned unexpected format", self.name)

        code = payload.get("code")
        if code is not None and code != 0:
            message = payload.get("msg") or payload.get("error") or "Unknown error"
            raise ProviderAPIError(
                f"FixedFloat API error: {message}",
                provider=self.name,
                status_code=None,
                body=str(message),
            )
        return payload.get("data")

    async def _fetch_coins(self) -> list[SupportedCoin]:
        data = await self._call("/ccies")

        if isinstance(data, dict):
            items = [dict(info, code=info.get("code") or key) for key, info in data.items()]
        else:
            items = data or []

        coins: dict[str, SupportedCoin] = {}
        for item in items:
            # Only coins FixedFloat can send out are useful for settlement
            if not item.get("recv"):
                continue
            code = (item.get("coin") or item.get("code") or "").upper()
            if not code:
                continue
            raw_net = item.get("network") or "MAINNET"
            network = REVERSE_NETWORK_MAP.get(raw_net, raw_net)
            coin = coins.setdefault(code, SupportedCoin(code, item.get("name") or code, [], item.get("logo")))
            if network not in coin.networks:
                coin.networks.append(network)
        return list(coins.values())

    def _fallback_coins(self) -> list[SupportedCoin]:
        return [SupportedCoin(code, name, list(nets)) for code, name, nets in FALLBACK_COINS]

    def _order_body(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
    ) -> dict:
        return {
            "fromCcy": build_currency_code(from_currency, from_network),
            "toCcy": build_currency_code(to_currency, to_network),
            "amount": str(withdraw_amount),
            "direction": "to",
            "type": "fixed",
        }

    async def get_quote(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
    ) -> Optional[SwapQuote]:
        body = self._order_body(from_currency, from_network, to_currency, to_network, withdraw_amount)

        try:
            data = await self._call("/price", body)
        except ProviderAPIError as e:
            # Body-level errors are pair/amount rejections; HTTP 5xx still raises
            if e.status_code is None or e.is_rejection:
                logger.debug(f"FixedFloat rejected {body['fromCcy']}->{body['toCcy']}: {e}")
                return None
            raise

        if not isinstance(data, dict):
            return None
        from_side = data.get("from") or {}
        deposit = to_decimal(from_side.get("amount"))
        if not deposit or deposit <= 0:
            return None

        return self._build_quote(
            from_currency,
            from_network,
            to_currency,
            to_network,
            withdraw_amount=withdraw_amount,
            deposit_amount=deposit,
            min_amount=to_decimal(from_side.get("min")),
            max_amount=to_decimal(from_side.get("max")) or None,
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
        body = self._order_body(from_currency, from_network, to_currency, to_network, withdraw_amount)
        body["toAddress"] = withdraw_address
        if withdraw_memo:
            body["toMemo"] = withdraw_memo

        data = await self._call("/create", body)

        if not isinstance(data, dict):
            raise ProviderError("FixedFloat create swap failed: unexpected response", self.name)
        from_side = data.get("from") or {}
        to_side = data.get("to") or {}
        if not isinstance(from_side, dict) or not isinstance(to_side, dict):
            raise ProviderError("FixedFloat create swap failed: unexpected response", self.name)
        if not data.get("id") or not from_side.get("address"):
            raise ProviderError("FixedFloat create swap failed: missing id or deposit address", self.name)

        seconds_left = to_int((data.get("time") or {}).get("left"))
        if seconds_left:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=seconds_left)
        else:
            expires_at = default_expiry()

        logger.info(f"FixedFloat swap created: {data['id']}")

        return SwapDetails(
            provider=self.name,
            swap_id=str(data["id"]),
            deposit_address=from_side["address"],
            deposit_memo=from_side.get("tag") or None,
            deposit_amount=to_decimal(from_side.get("amount")) or Decimal("0"),
            deposit_currency=from_currency.upper(),
            deposit_network=from_network,
            withdraw_amount=to_decimal(to_side.get("amount")) or withdraw_amount,
            withdraw_address=withdraw_address,
            withdraw_memo=withdraw_memo,
            expires_at=expires_at,
        )

    async def get_swap_status(self, swap_id: str) -> SwapStatus:
        data = await self._call("/order", {"id": swap_id, "token": ""})
        if not isinstance(data, dict):
            raise ProviderError("FixedFloat status check failed: empty response", self.name)

        deposit_tx = _tx_of(data.get("from"))
        withdraw_tx = _tx_of(data.get("to"))
        raw = data.get("status") or "UNKNOWN"

        return SwapStatus(
            provider=self.name,
            swap_id=swap_id,
            status=raw,
            normalized_status=normalize_status(raw, STATUS_MAP),
            deposit_tx_hash=deposit_tx.get("id"),
            withdraw_tx_hash=withdraw_tx.get("id"),
            deposit_confirmations=to_int(deposit_tx.get("confirmations")),
            required_confirmations=to_int(deposit_tx.get("requiredConfirmations")),
        )
