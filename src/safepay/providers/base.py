"""Abstract swap provider interface and shared data model.

Every exchange service is wrapped by a SwapProvider subclass that translates
the uniform operations (list coins, quote, create swap, poll status) into the
vendor's own HTTP API and vocabulary.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_SWAP_EXPIRY_MINUTES = 30

# Nominal receive amount used when probing pair support
PAIR_CHECK_AMOUNT = Decimal("100")


class OrderStatus(str, Enum):
    """Normalized swap status shared by all providers."""

    PENDING = "pending"
    AWAITING_DEPOSIT = "awaiting_deposit"
    CONFIRMING = "confirming"
    EXCHANGING = "exchanging"
    SENDING = "sending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    REFUNDED = "refunded"


FINAL_STATUSES = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.FAILED, OrderStatus.EXPIRED, OrderStatus.REFUNDED}
)


class CoinListSource(str, Enum):
    """Where a coin listing came from."""

    FETCHED = "fetched"
    FALLBACK = "fallback"


# ======================
# Errors
# ======================


class ProviderError(Exception):
    """Transport-level or unexpected-response failure talking to a provider."""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class ProviderTimeoutError(ProviderError):
    """Provider request exceeded its bounded timeout."""


class ProviderAPIError(ProviderError):
    """Provider answered with an error status or error payload."""

    # Statuses providers use to reject a pair or amount rather than to fail
    REJECTION_STATUSES = (400, 404, 422)

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message, provider)

    @property
    def is_rejection(self) -> bool:
        """Check if the provider refused the request (unsupported pair, amount out of range)."""
        return self.status_code in self.REJECTION_STATUSES


class ProviderNotFoundError(LookupError):
    """Raised when a provider name is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Provider not found: {name}")


class NoProvidersAvailableError(RuntimeError):
    """Raised when rate shopping finds no enabled providers."""

    def __init__(self):
        super().__init__("No providers available")


# ======================
# Data model
# ======================


@dataclass
class ProviderConfig:
    """Runtime configuration handed to an adapter at construction."""

    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT  # seconds
    test_mode: bool = False


@dataclass
class SupportedCoin:
    """A coin a provider can exchange, with the networks it trades on."""

    code: str
    name: str
    networks: list[str] = field(default_factory=list)
    icon: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "networks": list(self.networks),
            "icon": self.icon,
        }


@dataclass
class CoinListing:
    """Result of a coin fetch, tagged with whether it degraded to the fallback list."""

    provider: str
    coins: list[SupportedCoin]
    source: CoinListSource = CoinListSource.FETCHED

    @property
    def is_fallback(self) -> bool:
        return self.source == CoinListSource.FALLBACK


@dataclass(frozen=True)
class SwapQuote:
    """A fixed-receive quote: what the customer must deposit for a fixed withdrawal."""

    provider: str
    deposit_amount: Decimal
    deposit_currency: str
    deposit_network: str
    withdraw_amount: Decimal
    withdraw_currency: str
    withdraw_network: str
    rate: Decimal
    min_amount: Decimal = Decimal("0")
    max_amount: Optional[Decimal] = None  # None = no upper bound reported
    estimated_minutes: int = 15
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "provider": self.provider,
            "deposit_amount": str(self.deposit_amount),
            "deposit_currency": self.deposit_currency,
            "deposit_network": self.deposit_network,
            "withdraw_amount": str(self.withdraw_amount),
            "withdraw_currency": self.withdraw_currency,
            "withdraw_network": self.withdraw_network,
            "rate": str(self.rate),
            "min_amount": str(self.min_amount),
            "max_amount": str(self.max_amount) if self.max_amount is not None else None,
            "estimated_minutes": self.estimated_minutes,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class SwapDetails:
    """A created exchange. swap_id is the durable handle for status polling."""

    provider: str
    swap_id: str
    deposit_address: str
    deposit_amount: Decimal
    deposit_currency: str
    deposit_network: str
    withdraw_amount: Decimal
    withdraw_address: str
    expires_at: datetime
    deposit_memo: Optional[str] = None  # For XRP, XLM, etc.
    withdraw_memo: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "provider": self.provider,
            "swap_id": self.swap_id,
            "deposit_address": self.deposit_address,
            "deposit_memo": self.deposit_memo,
            "deposit_amount": str(self.deposit_amount),
            "deposit_currency": self.deposit_currency,
            "deposit_network": self.deposit_network,
            "withdraw_amount": str(self.withdraw_amount),
            "withdraw_address": self.withdraw_address,
            "withdraw_memo": self.withdraw_memo,
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass
class SwapStatus:
    """One poll of a swap's progress at a provider."""

    provider: str
    swap_id: str
    status: str  # raw provider status
    normalized_status: OrderStatus
    deposit_tx_hash: Optional[str] = None
    withdraw_tx_hash: Optional[str] = None
    deposit_confirmations: Optional[int] = None
    required_confirmations: Optional[int] = None

    @property
    def is_final(self) -> bool:
        """Check if the swap reached a terminal state."""
        return self.normalized_status in FINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "swap_id": self.swap_id,
            "status": self.status,
            "normalized_status": self.normalized_status.value,
            "deposit_tx_hash": self.deposit_tx_hash,
            "withdraw_tx_hash": self.withdraw_tx_hash,
            "deposit_confirmations": self.deposit_confirmations,
            "required_confirmations": self.required_confirmations,
        }


# ======================
# Helpers
# ======================


def normalize_status(raw: Optional[str], table: Mapping[str, OrderStatus]) -> OrderStatus:
    """Map a raw provider status onto OrderStatus.

    Lookup is case-insensitive. Unknown or missing statuses map to PENDING.
    """
    if not raw:
        return OrderStatus.PENDING
    return table.get(str(raw).strip().lower(), OrderStatus.PENDING)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a provider amount (str, int, float) into a Decimal, or None."""
    if value is None or value == "":
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def to_int(value: Any) -> Optional[int]:
    """Parse an optional integer field."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def default_expiry(minutes: int = DEFAULT_SWAP_EXPIRY_MINUTES) -> datetime:
    """Expiration timestamp for providers that don't report one."""
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or unix timestamp from a provider response."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ======================
# Provider interface
# ======================


class SwapProvider(ABC):
    """Abstract base class for swap providers.

    Subclasses own their vendor's network naming and status vocabulary;
    nothing vendor-specific belongs in this class.
    """

    # Providers that are unusable without credentials set this to True
    requires_api_key: bool = False

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize provider.

        Args:
            config: API credentials, timeout and test mode
            transport: Optional httpx transport (used to stub HTTP in tests)
        """
        self.config = config or ProviderConfig()
        self.api_key = self.config.api_key
        self.timeout = self.config.timeout or DEFAULT_TIMEOUT
        self.test_mode = self.config.test_mode
        self._transport = transport

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier."""
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable provider name."""
        pass

    @property
    def enabled(self) -> bool:
        """Whether required credentials are configured."""
        return bool(self.api_key) or not self.requires_api_key

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} enabled={self.enabled}>"

    # ----------------------
    # HTTP
    # ----------------------

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        """Perform one HTTP request bounded by the provider timeout.

        The whole exchange is cancelled when the timeout elapses, regardless
        of what the remote side does.

        Raises:
            ProviderTimeoutError: timeout elapsed
            ProviderError: connection or protocol failure
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await asyncio.wait_for(
                    client.request(
                        method,
                        url,
                        params=params,
                        json=json,
                        content=content,
                        headers=headers,
                    ),
                    timeout=self.timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ProviderTimeoutError(
                f"{self.display_name} API request timeout", self.name
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                f"{self.display_name} request failed: {type(e).__name__}: {e}", self.name
            ) from e

    def _json(self, response: httpx.Response) -> Any:
        """Decode a JSON body or raise ProviderError on garbage."""
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.display_name} returned invalid JSON (HTTP {response.status_code})",
                self.name,
            ) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Raise ProviderAPIError for non-2xx responses."""
        if response.is_success:
            return
        body = response.text[:500]
        raise ProviderAPIError(
            f"{self.display_name} API error: {response.status_code} - {body}",
            provider=self.name,
            status_code=response.status_code,
            body=body,
        )

    def _headers(self) -> dict:
        """Default request headers; adapters add their auth header here."""
        return {"Content-Type": "application/json", "Accept": "application/json"}

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict] = None,
        json: Any = None,
    ) -> Any:
        """Send a request with default headers and return the decoded 2xx body."""
        response = await self._send(method, url, params=params, json=json, headers=self._headers())
        self._raise_for_status(response)
        return self._json(response)

    # ----------------------
    # Coins
    # ----------------------

    async def get_supported_coins(self) -> list[SupportedCoin]:
        """Get supported coins, degrading to a fallback list on failure."""
        listing = await self.fetch_supported_coins()
        return listing.coins

    async def fetch_supported_coins(self) -> CoinListing:
        """Fetch the provider's coin list, tagged with its source.

        Coin listing is advisory, so any failure falls back to a small
        hardcoded list instead of propagating.
        """
        try:
            coins = await self._fetch_coins()
        except Exception as e:
            logger.warning(f"{self.display_name} getSupportedCoins failed, using fallback: {e}")
            return CoinListing(self.name, self._fallback_coins(), CoinListSource.FALLBACK)

        if not coins:
            logger.warning(f"{self.display_name} returned no coins, using fallback")
            return CoinListing(self.name, self._fallback_coins(), CoinListSource.FALLBACK)

        return CoinListing(self.name, coins, CoinListSource.FETCHED)

    @abstractmethod
    async def _fetch_coins(self) -> list[SupportedCoin]:
        """Fetch and normalize the provider's currency list. May raise."""
        pass

    @abstractmethod
    def _fallback_coins(self) -> list[SupportedCoin]:
        """Hardcoded coins returned when the currency list can't be fetched."""
        pass

    # ----------------------
    # Swaps
    # ----------------------

    async def is_pair_supported(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
    ) -> bool:
        """Check pair support by attempting a quote for a nominal amount."""
        try:
            quote = await self.get_quote(
                from_currency, from_network, to_currency, to_network, PAIR_CHECK_AMOUNT
            )
        except ProviderError as e:
            logger.debug(f"{self.display_name} pair check failed: {e}")
            return False
        return quote is not None

    @abstractmethod
    async def get_quote(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
    ) -> Optional[SwapQuote]:
        """
        Get a fixed-receive quote.

        Args:
            from_currency: Currency the customer sends (e.g., "BTC")
            from_network: Network of the sent currency
            to_currency: Currency the merchant receives (e.g., "USDC")
            to_network: Network of the received currency (e.g., "POLYGON")
            withdraw_amount: Exact amount the merchant must receive

        Returns:
            Quote with the deposit the customer needs to send, or None if the
            provider doesn't support the pair or amount

        Raises:
            ProviderError: on transport failures
        """
        pass

    @abstractmethod
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
        """
        Create a fixed-receive exchange.

        Args:
            withdraw_address: Merchant's receiving address
            withdraw_memo: Optional memo/tag for the receiving address

        Returns:
            Swap details including the deposit address

        Raises:
            ProviderError: on any failure; there is no fallback
        """
        pass

    @abstractmethod
    async def get_swap_status(self, swap_id: str) -> SwapStatus:
        """
        Get the current status of a swap.

        Raises:
            ProviderError: on transport failures
        """
        pass

    # ----------------------
    # Shared construction
    # ----------------------

    def _build_quote(
        self,
        from_currency: str,
        from_network: str,
        to_currency: str,
        to_network: str,
        withdraw_amount: Decimal,
        deposit_amount: Decimal,
        rate: Optional[Decimal] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        estimated_minutes: int = 15,
    ) -> SwapQuote:
        """Assemble a quote; withdraw_amount is always the requested fixed amount."""
        if rate is None or rate <= 0:
            rate = withdraw_amount / deposit_amount
        return SwapQuote(
            provider=self.name,
            deposit_amount=deposit_amount,
            deposit_currency=from_currency.upper(),
            deposit_network=from_network,
            withdraw_amount=withdraw_amount,
            withdraw_currency=to_currency.upper(),
            withdraw_network=to_network,
            rate=rate,
            min_amount=min_amount if min_amount is not None else Decimal("0"),
            max_amount=max_amount,
            estimated_minutes=estimated_minutes,
        )
