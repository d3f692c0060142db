"""Tests for the swap provider adapters.

HTTP is stubbed with httpx.MockTransport so every adapter runs its real
request building and response parsing.
"""

import asyncio
import hashlib
import hmac
import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from safepay.providers.base import (
    OrderStatus,
    ProviderAPIError,
    ProviderConfig,
    ProviderError,
    ProviderTimeoutError,
    SwapQuote,
    normalize_status,
)
from safepay.providers.changelly import ChangellyProvider, build_ticker
from safepay.providers.changenow import ChangeNowProvider
from safepay.providers.exolix import ExolixProvider
from safepay.providers.exolix import STATUS_MAP as EXOLIX_STATUS_MAP
from safepay.providers.fixedfloat import FixedFloatProvider, build_currency_code
from safepay.providers.simpleswap import SimpleSwapProvider, build_symbol
from safepay.providers.stealthex import StealthExProvider

PAIR = ("BTC", "BTC", "USDT", "POLYGON")
AMOUNT = Decimal("100")


def make(provider_cls, handler, **config):
    """Build an adapter whose HTTP goes to ``handler``."""
    return provider_cls(ProviderConfig(**config), transport=httpx.MockTransport(handler))


def body_of(request: httpx.Request) -> dict:
    return json.loads(request.content)


class TestNormalizeStatus:
    """Tests for status normalization."""

    def test_known_status_case_insensitive(self):
        """Test lookup ignores case."""
        assert normalize_status("SUCCESS", EXOLIX_STATUS_MAP) == OrderStatus.COMPLETED
        assert normalize_status("wait", EXOLIX_STATUS_MAP) == OrderStatus.AWAITING_DEPOSIT

    def test_unknown_status_is_pending(self):
        """Test unrecognized statuses map to pending."""
        assert normalize_status("teleporting", EXOLIX_STATUS_MAP) == OrderStatus.PENDING
        assert normalize_status(None, EXOLIX_STATUS_MAP) == OrderStatus.PENDING
        assert normalize_status("", EXOLIX_STATUS_MAP) == OrderStatus.PENDING


class TestSharedBehaviour:
    """Tests for behaviour every adapter gets from the base class."""

    @pytest.mark.asyncio
    async def test_timeout_is_enforced_locally(self):
        """Test a hanging provider is cut off by the adapter timeout."""

        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={})

        provider = make(ExolixProvider, handler, timeout=0.05)

        with pytest.raises(ProviderTimeoutError, match="timeout"):
            await provider.get_quote(*PAIR, AMOUNT)

    @pytest.mark.asyncio
    async def test_httpx_timeout_mapped(self):
        """Test httpx timeouts become ProviderTimeoutError."""

        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        provider = make(ExolixProvider, handler)

        with pytest.raises(ProviderTimeoutError) as exc_info:
            await provider.get_quote(*PAIR, AMOUNT)
        assert str(exc_info.value) == "Exolix API request timeout"
        assert exc_info.value.provider == "exolix"

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self):
        """Test transport failures become ProviderError."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = make(ExolixProvider, handler)

        with pytest.raises(ProviderError) as exc_info:
            await provider.get_quote(*PAIR, AMOUNT)
        assert not isinstance(exc_info.value, ProviderTimeoutError)

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        """Test a 5xx is a fault, not a missing quote."""
        provider = make(ExolixProvider, lambda request: httpx.Response(500, text="upstream down"))

        with pytest.raises(ProviderAPIError) as exc_info:
            await provider.get_quote(*PAIR, AMOUNT)
        assert exc_info.value.status_code == 500
        assert exc_info.value.is_rejection is False

    @pytest.mark.asyncio
    async def test_coin_fetch_failure_falls_back(self):
        """Test a failed coin fetch returns the fallback list."""
        provider = make(ExolixProvider, lambda request: httpx.Response(503))

        listing = await provider.fetch_supported_coins()
        coins = await provider.get_supported_coins()

        assert listing.is_fallback is True
        assert len(coins) > 0
        assert "BTC" in [c.code for c in coins]

    @pytest.mark.asyncio
    async def test_pair_supported_via_quote(self):
        """Test pair support is a nominal quote."""

        def handler(request):
            assert request.url.params["amount"] == "100"
            return httpx.Response(200, json={"fromAmount": "0.002", "toAmount": "100"})

        provider = make(ExolixProvider, handler)

        assert await provider.is_pair_supported(*PAIR) is True

    @pytest.mark.asyncio
    async def test_pair_unsupported_on_fault(self):
        """Test faults during the pair check give False."""
        provider = make(ExolixProvider, lambda request: httpx.Response(500))

        assert await provider.is_pair_supported(*PAIR) is False

    def test_quote_is_immutable(self):
        """Test quotes are frozen snapshots."""
        quote = SwapQuote(
            provider="exolix",
            deposit_amount=Decimal("0.002"),
            deposit_currency="BTC",
            deposit_network="BTC",
            withdraw_amount=AMOUNT,
            withdraw_currency="USDT",
            withdraw_network="POLYGON",
            rate=Decimal("50000"),
        )

        with pytest.raises(AttributeError):
            quote.deposit_amount = Decimal("1")
        assert quote.to_dict()["max_amount"] is None


class TestExolix:
    """Tests for the Exolix adapter."""

    @pytest.mark.asyncio
    async def test_quote_is_fixed_receive(self):
        """Test the quote request asks for a fixed withdrawal."""
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(
                200,
                json={
                    "fromAmount": 0.00205,
                    "toAmount": 99.9,
                    "rate": 48780.5,
                    "minAmount": 0.0001,
                    "maxAmount": 5,
                },
            )

        provider = make(ExolixProvider, handler)
        quote = await provider.get_quote(*PAIR, AMOUNT)

        assert seen["withdrawalType"] == "fixed"
        assert seen["rateType"] == "fixed"
        assert seen["networkTo"] == "MATIC"
        assert quote.provider == "exolix"
        assert quote.withdraw_amount == Decimal("100")
        assert quote.deposit_amount == Decimal("0.00205")
        assert quote.min_amount == Decimal("0.0001")
        assert quote.max_amount == Decimal("5")
        assert quote.withdraw_network == "POLYGON"

    @pytest.mark.asyncio
    async def test_rejection_returns_none(self):
        """Test a 4xx pair rejection gives no quote."""
        provider = make(ExolixProvider, lambda request: httpx.Response(400, json={"message": "Pair not available"}))

        assert await provider.get_quote(*PAIR, AMOUNT) is None

    @pytest.mark.asyncio
    async def test_missing_amount_returns_none(self):
        """Test a 2xx without amounts gives no quote."""
        provider = make(ExolixProvider, lambda request: httpx.Response(200, json={"message": "amount too low"}))

        assert await provider.get_quote(*PAIR, AMOUNT) is None

    @pytest.mark.asyncio
    async def test_key_sent_when_configured(self):
        """Test the optional API key goes in the Authorization header."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"fromAmount": "0.002", "toAmount": "100"})

        await make(ExolixProvider, handler, api_key="ex-key").get_quote(*PAIR, AMOUNT)

        assert seen["auth"] == "ex-key"

    @pytest.mark.asyncio
    async def test_create_swap(self):
        """Test creating a fixed-withdrawal transaction."""

        def handler(request):
            assert request.method == "POST"
            body = body_of(request)
            assert body["withdrawalType"] == "fixed"
            assert body["withdrawalAddress"] == "0xmerchant"
            assert body["withdrawalExtraId"] == "memo-1"
            return httpx.Response(
                200,
                json={
                    "id": "ex123",
                    "depositAddress": "bc1qdeposit",
                    "amountFrom": "0.00205",
                    "amountTo": "100",
                },
            )

        provider = make(ExolixProvider, handler)
        details = await provider.create_swap(*PAIR, AMOUNT, "0xmerchant", "memo-1")

        assert details.swap_id == "ex123"
        assert details.deposit_address == "bc1qdeposit"
        assert details.deposit_amount == Decimal("0.00205")
        assert details.withdraw_amount == Decimal("100")
        assert details.expires_at > datetime.now(timezone.utc)

    @pytest.mark.asyncio
    async def test_create_swap_missing_address_raises(self):
        """Test a 2xx without a deposit address is a failure."""
        provider = make(ExolixProvider, lambda request: httpx.Response(200, json={"id": "ex123"}))

        with pytest.raises(ProviderError, match="deposit address"):
            await provider.create_swap(*PAIR, AMOUNT, "0xmerchant")

    @pytest.mark.asyncio
    async def test_create_swap_rejection_raises(self):
        """Test create_swap never swallows a rejection."""
        provider = make(ExolixProvider, lambda request: httpx.Response(400, text="bad address"))

        with pytest.raises(ProviderAPIError):
            await provider.create_swap(*PAIR, AMOUNT, "bogus")

    @pytest.mark.asyncio
    async def test_status_known_and_unknown(self):
        """Test status normalization, including unknown states."""
        statuses = iter(["success", "teleporting"])

        def handler(request):
            return httpx.Response(
                200, json={"status": next(statuses), "hashIn": "0xin", "confirmations": "2"}
            )

        provider = make(ExolixProvider, handler)

        done = await provider.get_swap_status("ex123")
        odd = await provider.get_swap_status("ex123")

        assert done.normalized_status == OrderStatus.COMPLETED
        assert done.is_final is True
        assert done.deposit_tx_hash == "0xin"
        assert done.deposit_confirmations == 2
        assert odd.status == "teleporting"
        assert odd.normalized_status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_coins_parsed(self):
        """Test currency list parsing with network translation."""
        payload = {
            "data": [
                {"code": "USDT", "name": "Tether", "networks": [{"network": "ETH"}, {"network": "TRX"}]},
                {"code": "BTC", "name": "Bitcoin", "networks": [{"network": "BTC"}]},
            ]
        }
        provider = make(ExolixProvider, lambda request: httpx.Response(200, json=payload))

        listing = await provider.fetch_supported_coins()

        assert listing.is_fallback is False
        assert listing.coins[0].networks == ["ERC20", "TRC20"]
        assert listing.coins[1].networks == ["BTC"]


class TestFixedFloat:
    """Tests for the FixedFloat adapter."""

    def test_currency_codes(self):
        """Test ccy codes fuse ticker and network for tokens only."""
        assert build_currency_code("usdt", "TRC20") == "USDTTRC20"
        assert build_currency_code("USDT", "BSC") == "USDTBEP20"
        assert build_currency_code("BTC", "BTC") == "BTC"

    @pytest.mark.asyncio
    async def test_quote_direction_to(self):
        """Test the price request fixes the receive side."""
        seen = {}

        def handler(request):
            seen.update(body_of(request))
            return httpx.Response(
                200,
                json={"code": 0, "data": {"from": {"amount": "0.00201", "min": "0.0005", "max": "2"}}},
            )

        quote = await make(FixedFloatProvider, handler).get_quote(*PAIR, AMOUNT)

        assert seen["direction"] == "to"
        assert seen["type"] == "fixed"
        assert seen["toCcy"] == "USDTPOLYGON"
        assert quote.withdraw_amount == Decimal("100")
        assert quote.deposit_amount == Decimal("0.00201")
        assert quote.rate == Decimal("100") / Decimal("0.00201")

    @pytest.mark.asyncio
    async def test_nonzero_code_returns_none(self):
        """Test a body-level error is a rejection."""
        provider = make(
            FixedFloatProvider,
            lambda request: httpx.Response(200, json={"code": 301, "msg": "Out of limits"}),
        )

        assert await provider.get_quote(*PAIR, AMOUNT) is None

    @pytest.mark.asyncio
    async def test_nonzero_code_on_create_raises(self):
        """Test a body-level error on create is raised."""
        provider = make(
            FixedFloatProvider,
            lambda request: httpx.Response(200, json={"code": 301, "msg": "Out of limits"}),
        )

        with pytest.raises(ProviderAPIError, match="Out of limits"):
            await provider.create_swap(*PAIR, AMOUNT, "0xmerchant")

    @pytest.mark.asyncio
    async def test_status(self):
        """Test FixedFloat status normalization."""
        provider = make(
            FixedFloatProvider,
            lambda request: httpx.Response(
                200, json={"code": 0, "data": {"status": "EXCHANGE", "from": {"tx": {"id": "0xin"}}}}
            ),
        )

        status = await provider.get_swap_status("ff1")

        assert status.normalized_status == OrderStatus.EXCHANGING
        assert status.deposit_tx_hash == "0xin"

    @pytest.mark.asyncio
    async def test_create_with_non_object_data_raises(self):
        """Test a malformed create response is a ProviderError."""
        provider = make(
            FixedFloatProvider,
            lambda request: httpx.Response(200, json={"code": 0, "data": ["unexpected"]}),
        )

        with pytest.raises(ProviderError, match="unexpected response"):
            await provider.create_swap(*PAIR, AMOUNT, "0xmerchant")

    @pytest.mark.asyncio
    async def test_status_tolerates_malformed_sides(self):
        """Test odd shapes for the order sides don't break status parsing."""
        provider = make(
            FixedFloatProvider,
            lambda request: httpx.Response(
                200, json={"code": 0, "data": {"status": "DONE", "from": ["x"], "to": {"tx": "0xout"}}}
            ),
        )

        status = await provider.get_swap_status("ff1")

        assert status.normalized_status == OrderStatus.COMPLETED
        assert status.deposit_tx_hash is None
        assert status.withdraw_tx_hash is None


class TestChangeNow:
    """Tests for the ChangeNOW adapter."""

    def test_disabled_without_key(self):
        """Test a missing key disables the adapter instead of raising."""
        provider = ChangeNowProvider()

        assert provider.enabled is False
        assert provider.requires_api_key is True
        assert ChangeNowProvider(ProviderConfig(api_key="cn")).enabled is True

    @pytest.mark.asyncio
    async def test_reverse_estimate(self):
        """Test the estimate is requested as a reverse fixed-rate flow."""
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            seen["key"] = request.headers.get("x-changenow-api-key")
            return httpx.Response(200, json={"fromAmount": 0.0021, "toAmount": 100})

        quote = await make(ChangeNowProvider, handler, api_key="cn").get_quote(*PAIR, AMOUNT)

        assert seen["key"] == "cn"
        assert seen["params"]["type"] == "reverse"
        assert seen["params"]["flow"] == "fixed-rate"
        assert seen["params"]["toAmount"] == "100"
        assert seen["params"]["toNetwork"] == "matic"
        assert quote.withdraw_amount == Decimal("100")
        assert quote.deposit_amount == Decimal("0.0021")

    @pytest.mark.asyncio
    async def test_unknown_status_pending(self):
        """Test unknown ChangeNOW states normalize to pending."""
        provider = make(
            ChangeNowProvider,
            lambda request: httpx.Response(200, json={"status": "verifying"}),
            api_key="cn",
        )

        status = await provider.get_swap_status("cn1")

        assert status.normalized_status == OrderStatus.PENDING


class TestSimpleSwap:
    """Tests for SimpleSwap's solved fixed-receive quotes."""

    @staticmethod
    def handler(rate_for, created=None):
        def _handler(request):
            path = request.url.path
            if path == "/get_ranges":
                return httpx.Response(200, json={"min": "0.001", "max": "10"})
            if path == "/get_estimated":
                amount = Decimal(request.url.params["amount"])
                return httpx.Response(200, json=str(amount * rate_for(amount)))
            if path == "/create_exchange":
                created.update(body_of(request))
                created["api_key"] = request.url.params.get("api_key")
                return httpx.Response(
                    200,
                    json={"id": "ss1", "address_from": "bc1qdeposit", "amount_to": "100"},
                )
            return httpx.Response(404)

        return _handler

    def test_symbols(self):
        """Test stablecoins off Ethereum get a network suffix."""
        assert build_symbol("USDT", "TRC20") == "usdt_trx"
        assert build_symbol("USDT", "ERC20") == "usdt"
        assert build_symbol("BTC", "BTC") == "btc"

    @pytest.mark.asyncio
    async def test_solves_deposit_for_fixed_receive(self):
        """Test the deposit is derived from a forward rate probe."""
        provider = make(SimpleSwapProvider, self.handler(lambda amount: Decimal("50000")), api_key="ss")

        quote = await provider.get_quote(*PAIR, AMOUNT)

        assert quote.withdraw_amount == Decimal("100")
        assert quote.deposit_amount == Decimal("0.002")
        assert quote.min_amount == Decimal("0.001")
        assert quote.max_amount == Decimal("10")

    @pytest.mark.asyncio
    async def test_scales_up_when_confirmation_short(self):
        """Test a short confirmation estimate raises the deposit."""

        def rate_for(amount):
            return Decimal("50000") if amount < Decimal("0.0015") else Decimal("49000")

        provider = make(SimpleSwapProvider, self.handler(rate_for), api_key="ss")

        quote = await provider.get_quote(*PAIR, AMOUNT)

        # 0.002 only yields 98, so 0.002 * 100 / 98 rounded up
        assert quote.deposit_amount == Decimal("0.00204082")
        assert quote.withdraw_amount == Decimal("100")

    @pytest.mark.asyncio
    async def test_out_of_range_returns_none(self):
        """Test a solved deposit above the range max gives no quote."""
        provider = make(SimpleSwapProvider, self.handler(lambda amount: Decimal("50000")), api_key="ss")

        assert await provider.get_quote(*PAIR, Decimal("1000000")) is None

    @pytest.mark.asyncio
    async def test_create_submits_solved_deposit(self):
        """Test create_exchange sends the deposit, not the receive amount."""
        created = {}
        provider = make(
            SimpleSwapProvider, self.handler(lambda amount: Decimal("50000"), created), api_key="ss"
        )

        details = await provider.create_swap(*PAIR, AMOUNT, "0xmerchant")

        assert Decimal(created["amount"]) == Decimal("0.002")
        assert created["fixed"] is True
        assert created["address_to"] == "0xmerchant"
        assert created["api_key"] == "ss"
        assert details.deposit_amount == Decimal("0.002")
        assert details.withdraw_amount == Decimal("100")


class TestStealthEx:
    """Tests for the StealthEX adapter."""

    @pytest.mark.asyncio
    async def test_reversed_estimate_and_rate_reuse(self):
        """Test quotes use reversed estimation and create reuses the rate id."""
        exchange_bodies = []

        def handler(request):
            assert request.headers["Authorization"] == "Bearer sx"
            path = request.url.path
            if path.endswith("/estimate"):
                body = body_of(request)
                assert body["estimation"] == "reversed"
                assert body["route"]["to"] == {"symbol": "usdt", "network": "polygon"}
                assert body["route"]["from"] == {"symbol": "btc", "network": "mainnet"}
                return httpx.Response(200, json={"estimated_amount": "0.0021", "rate": {"id": "r-1"}})
            if path.endswith("/range"):
                return httpx.Response(500)
            if path.endswith("/exchange"):
                exchange_bodies.append(body_of(request))
                return httpx.Response(
                    200,
                    json={
                        "id": "sx1",
                        "deposit": {"address": "bc1qdeposit", "expected_amount": "0.0021"},
                        "withdrawal": {"expected_amount": "100"},
                    },
                )
            return httpx.Response(404)

        provider = make(StealthExProvider, handler, api_key="sx")

        quote = await provider.get_quote(*PAIR, AMOUNT)
        details = await provider.create_swap(*PAIR, AMOUNT, "0xmerchant")

        assert quote.withdraw_amount == Decimal("100")
        assert quote.deposit_amount == Decimal("0.0021")
        assert quote.max_amount is None
        assert exchange_bodies[0]["rate_id"] == "r-1"
        assert details.swap_id == "sx1"

    @pytest.mark.asyncio
    async def test_create_without_rate_id_raises(self):
        """Test create fails loudly without a rate id."""
        provider = make(
            StealthExProvider,
            lambda request: httpx.Response(200, json={"estimated_amount": "0.0021"}),
            api_key="sx",
        )

        with pytest.raises(ProviderError, match="rate ID"):
            await provider.create_swap(*PAIR, AMOUNT, "0xmerchant")


class TestChangelly:
    """Tests for the Changelly JSON-RPC adapter."""

    def test_needs_key_and_secret(self):
        """Test Changelly is enabled only with both credentials."""
        assert ChangellyProvider(ProviderConfig(api_key="k")).enabled is False
        assert ChangellyProvider(ProviderConfig(api_key="k", api_secret="s")).enabled is True

    def test_tickers(self):
        """Test stablecoin tickers carry the network suffix."""
        assert build_ticker("USDT", "TRC20") == "usdttrc20"
        assert build_ticker("USDT", "BSC") == "usdtbep20"
        assert build_ticker("BTC", "BTC") == "btc"

    @pytest.mark.asyncio
    async def test_signed_fix_rate_quote_and_create(self):
        """Test requests are signed and create reuses the fixed rate id."""
        calls = []

        def handler(request):
            expected = hmac.new(b"secret", request.content, hashlib.sha512).hexdigest()
            assert request.headers["sign"] == expected
            assert request.headers["api-key"] == "key"
            payload = body_of(request)
            calls.append(payload)
            if payload["method"] == "getFixRateForAmount":
                assert payload["params"]["amountTo"] == "100"
                result = [{"id": "rate-1", "amountFrom": "0.0021", "minFrom": "0.001", "maxFrom": "1"}]
            else:
                result = {"id": "cl1", "payinAddress": "bc1qdeposit", "amountExpectedFrom": "0.0021"}
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})

        provider = make(ChangellyProvider, handler, api_key="key", api_secret="secret")

        quote = await provider.get_quote(*PAIR, AMOUNT)
        details = await provider.create_swap(*PAIR, AMOUNT, "0xmerchant")

        assert quote.withdraw_amount == Decimal("100")
        assert quote.deposit_amount == Decimal("0.0021")
        assert calls[-1]["method"] == "createFixTransaction"
        assert calls[-1]["params"]["rateId"] == "rate-1"
        assert details.swap_id == "cl1"
        assert details.withdraw_amount == Decimal("100")

    @pytest.mark.asyncio
    async def test_rpc_error_returns_none(self):
        """Test a JSON-RPC error object is a rejection for quotes."""
        provider = make(
            ChangellyProvider,
            lambda request: httpx.Response(
                200, json={"jsonrpc": "2.0", "error": {"code": -32600, "message": "Invalid amount"}}
            ),
            api_key="key",
            api_secret="secret",
        )

        assert await provider.get_quote(*PAIR, AMOUNT) is None

    @pytest.mark.asyncio
    async def test_status_overdue_is_expired(self):
        """Test Changelly's overdue maps to expired."""

        def handler(request):
            payload = body_of(request)
            if payload["method"] == "getStatus":
                result = "overdue"
            else:
                result = [{"payinHash": "0xin"}]
            return httpx.Response(200, json={"jsonrpc": "2.0", "result": result})

        provider = make(ChangellyProvider, handler, api_key="key", api_secret="secret")

        status = await provider.get_swap_status("cl1")

        assert status.normalized_status == OrderStatus.EXPIRED
        assert status.deposit_tx_hash == "0xin"

    @pytest.mark.asyncio
    async def test_status_with_non_object_result_raises(self):
        """Test a status result of the wrong shape is a ProviderError."""
        provider = make(
            ChangellyProvider,
            lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "result": ["finished"]}),
            api_key="key",
            api_secret="secret",
        )

        with pytest.raises(ProviderError, match="missing status"):
            await provider.get_swap_status("cl1")

    @pytest.mark.asyncio
    async def test_status_ignores_malformed_transactions(self):
        """Test non-object transaction records leave the hashes empty."""

        def handler(request):
            if body_of(request)["method"] == "getStatus":
                result = {"status": "finished"}
            else:
                result = ["0xin"]
            return httpx.Response(200, json={"jsonrpc": "2.0", "result": result})

        provider = make(ChangellyProvider, handler, api_key="key", api_secret="secret")

        status = await provider.get_swap_status("cl1")

        assert status.normalized_status == OrderStatus.COMPLETED
        assert status.deposit_tx_hash is None
