"""SimpleSwap swap provider.

SimpleSwap only estimates forward (send X, receive ?). Fixed-receive quotes
are solved for: probe the pair's rate at the range minimum, derive the
deposit for the requested withdrawal, then confirm with a second forward
estimate and scale the deposit up if the confirmation falls short.
"""

import logging
from decimal import ROUND_UP, Decimal
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

SIMPLESWAP_API_URL = "https://api.simpleswap.io"

NETWORK_MAP = {
    "ERC20": "eth",
    "TRC20": "trx",
    "BSC": "bsc",
    "POLYGON": "matic",
    "SOL": "sol",
    "ARB": "arbitrum",
    "AVAX": "avax",
    "OP": "optimism",
}
REVERSE_NETWORK_MAP = {v: k for k, v in NETWORK_MAP.items()}

# Tokens SimpleSwap lists per chain as ``<symbol>_<network>`` (ERC20 is bare)
MULTICHAIN_TOKENS = {"usdt", "usdc", "dai"}

DEPOSIT_PRECISION = Decimal("0.00000001")
DEFAULT_PROBE_AMOUNT = Decimal("1")

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
    ("BTC", "Bitcoin", ["BTC"]),
    ("ETH", "Ethereum", ["ERC20"]),
    ("LTC", "Litecoin", ["LTC"]),
    ("USDT", "Tether", ["ERC20", "TRC20", "BSC"]),
    ("USDC", "USD Coin", ["ERC20", "POLYGON"]),
]


def build_symbol(currency: str, network: str) -> str:
    """SimpleSwap symbol, e.g. ``btc``, ``usdt`` (ERC20) or ``usdt_trx``."""
    symbol = currency.lower()
    mapped = NETWORK_MAP.get(network, network.lower())
    if symbol in MULTICHAIN_TOKENS and mapped != "eth":
        return f"{symbol}_{mapped}"
    return symbol


def _ceil(amount: Decimal) -> Decimal:
    return amount.quantize(DEPOSIT_PRECISION, rounding=ROUND_UP)


class SimpleSwapProvider(SwapProvider):
    """SimpleSwap fixed-rate exchange with solved deposit amounts."""

    requires_api_key = True

    @property
    def name(self) -> str:
        return "simpleswap"

    @property
    def display_name(self) -> str:
        return "SimpleSwap"

    async def _get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        query = dict(params or {})
        query["api_key"] = self.api_key or ""
        return await self._request_json("GET", f"{SIMPLESWAP_API_URL}{endpoint}", params=query)

    async def _fetch_coins(self) -> list[SupportedCoin]:
        data = await self._get("/get_all_currencies")
        if not isinstance(data, list):
            raise ProviderError("SimpleSwap returned unexpected format", self.name)

        coins: dict[str, SupportedCoin] = {}
        for item in data:
            symbol = (item.get("symbol") or "").lower()
            if not symbol:
                continue
            code, _, suffix = symbol.partition("_")
            raw_net = (item.get("network") or suffix or "").lower()
            network = REVERSE_NETWORK_MAP.get(raw_net, raw_net.upper() or "MAINNET")
            coin = coins.setdefault(
                code.upper(), SupportedCoin(code.upper(), item.get("name") or code.upper(), [], item.get("image"))
            )
            if network not in coin.networks:
                coin.networks.append(network)
        return list(coins.values())

    def _fallback_coins(self) -> list[SupportedCoin]:
        return [SupportedCoin(code, name, list(nets)) for code, name, nets in FALLBACK_COINS]

    async def _estimate(self, symbol_from: str, symbol_to: str, amount: Decimal) -> Optional[Decimal]:
        """Forward estimate: how much ``symbol_to`` a deposit of ``amount`` yields."""
        data = await self._get(
            "/get_estimated",
            {
                "fixed": "true",
                "currency_from": symbol_from,
                "currency_to": symbol_to,
                "amount": str(amount),
            },
        )
        if isinstance(data, dict):
            data = data.get("estimated_amount")
        return to_decimal(data)

    async def _solve_deposit(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
    ) -> Optional[tuple[Decimal, Optional[Decimal], Optional[Decimal]]]:
        """Find the deposit that yields at least ``withdraw_amount``.

        Returns (deposit, min, max) or None if the pair or amount is rejected.
        """
        symbol_from = build_symbol(from_currency, from_network)
        symbol_to = build_symbol(to_currency, to_network)

        ranges = await self._get(
            "/get_ranges",
            {"fixed": "true", "currency_from": symbol_from, "currency_to": symbol_to},
        )
        if not isinstance(ranges, dict):
            return None
        min_amount = to_decimal(ranges.get("min"))
        max_amount = to_decimal(ranges.get("max"))

        probe = min_amount if min_amount and min_amount > 0 else DEFAULT_PROBE_AMOUNT
        probe_out = await self._estimate(symbol_from, symbol_to, probe)
        if not probe_out or probe_out <= 0:
            return None

        deposit = _ceil(withdraw_amount * probe / probe_out)

        confirmed = await self._estimate(symbol_from, symbol_to, deposit)
        if not confirmed or confirmed <= 0:
            return None
        if confirmed < withdraw_amount:
            logger.debug(
                f"SimpleSwap estimate short ({confirmed} < {withdraw_amount}), scaling deposit up"
            )
            deposit = _ceil(deposit * withdraw_amount / confirmed)

        if min_amount and deposit < min_amount:
            return None
        if max_amount and deposit > max_amount:
            return None
        return deposit, min_amount, max_amount

    async def get_quote(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
    ) -> Optional[SwapQuote]:
        try:
            solved = await self._solve_deposit(
                from_currency, from_network, to_currency, to_network, withdraw_amount
            )
        except ProviderAPIError as e:
            if e.is_rejection:
                logger.debug(f"SimpleSwap rejected {from_currency}->{to_currency}: {e.body}")
                return None
            raise

        if solved is None:
            return None
        deposit, min_amount, max_amount = solved

        return self._build_quote(
            from_currency,
            from_network,
            to_currency,
            to_network,
            withdraw_amount=withdraw_amount,
            deposit_amount=deposit,
            min_amount=min_amount,
            max_amount=max_amount,
            estimated_minutes=20,
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
        solved = await self._solve_deposit(
            from_currency, from_network, to_currency, to_network, withdraw_amount
        )
        if solved is None:
            raise ProviderError(
                f"SimpleSwap create swap failed: no rate for {withdraw_amount} {to_currency.upper()}",
                self.name,
            )
        deposit = solved[0]

        body = {
            "fixed": True,
            "currency_from": build_symbol(from_currency, from_network),
            "currency_to": build_symbol(to_currency, to_network),
            "amount": str(deposit),
            "address_to": withdraw_address,
        }
        if withdraw_memo:
            body["extra_id_to"] = withdraw_memo

        response = await self._send(
            "POST",
            f"{SIMPLESWAP_API_URL}/create_exchange",
            params={"api_key": self.api_key or ""},
            json=body,
            headers=self._headers(),
        )
        self._raise_for_status(response)
        data = self._json(response)

        if not isinstance(data, dict) or not data.get("id") or not data.get("address_from"):
            message = data.get("message") if isinstance(data, dict) else None
            raise ProviderError(f"SimpleSwap create swap failed: {message or 'Unknown error'}", self.name)

        logger.info(f"SimpleSwap swap created: {data['id']} (deposit {deposit})")

        return SwapDetails(
            provider=self.name,
            swap_id=str(data["id"]),
            deposit_address=data["address_from"],
            deposit_memo=data.get("extra_id_from") or None,
            deposit_amount=to_decimal(data.get("amount_from")) or deposit,
            deposit_currency=from_currency.upper(),
            deposit_network=from_network,
            withdraw_amount=to_decimal(data.get("amount_to")) or withdraw_amount,
            withdraw_address=withdraw_address,
            withdraw_memo=withdraw_memo,
            expires_at=default_expiry(),
        )

    async def get_swap_status(self, swap_id: str) -> SwapStatus:
        data = await self._get("/get_exchange", {"id": swap_id})
        if not isinstance(data, dict) or data.get("error"):
            message = data.get("message") if isinstance(data, dict) else None
            raise ProviderError(f"SimpleSwap status check failed: {message or 'Unknown error'}", self.name)

        raw = data.get("status") or "unknown"
        return SwapStatus(
            provider=self.name,
            swap_id=swap_id,
            status=raw,
            normalized_status=normalize_status(raw, STATUS_MAP),
            deposit_tx_hash=data.get("tx_from"),
            withdraw_tx_hash=data.get("tx_to"),
        )
