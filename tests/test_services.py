"""
Tests for the endpoint groups.

Tests cover:
- MarketDataService paths, categories, symbol limits and bar validation
- BrokerageService paths and account ID limits
- OrderExecutionService paths and the orders category
- Stream media types
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tradestation.api.brokerage import BrokerageService, join_account_ids
from tradestation.api.market_data import MarketDataService, join_symbols, validate_bar_params
from tradestation.api.order_execution import OrderExecutionService
from tradestation.api.rate_limiter import RateCategory
from tradestation.lib.constants import BROKERAGE_STREAM_MEDIA_TYPE, MARKET_DATA_STREAM_MEDIA_TYPE


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def mock_client():
    client = MagicMock()
    client.get = AsyncMock(return_value={"ok": True})
    client.post = AsyncMock(return_value={"ok": True})
    client.put = AsyncMock(return_value={"ok": True})
    client.delete = AsyncMock(return_value={"ok": True})
    client.open_stream = AsyncMock(return_value="session")
    return client


def opened_request(mock_client):
    return mock_client.open_stream.call_args.args[0]


# =============================================================================
# Helper Tests
# =============================================================================

class TestJoinSymbols:
    """Tests for join_symbols."""

    def test_list_and_string(self):
        assert join_symbols(["MSFT", "AAPL"], 100) == "MSFT,AAPL"
        assert join_symbols("MSFT, AAPL", 100) == "MSFT,AAPL"

    def test_encodes_option_symbols(self):
        assert join_symbols(["MSFT 240119C400"], 100) == "MSFT%20240119C400"

    def test_limits(self):
        assert join_symbols([f"S{i}" for i in range(100)], 100).count(",") == 99

        with pytest.raises(ValueError, match="Maximum of 100"):
            join_symbols([f"S{i}" for i in range(101)], 100)

        with pytest.raises(ValueError, match="At least one"):
            join_symbols([], 100)


class TestValidateBarParams:
    """Tests for validate_bar_params."""

    def test_valid(self):
        validate_bar_params({"unit": "Minute", "interval": "5", "barsback": 100})
        validate_bar_params({"unit": "Daily", "interval": "1", "firstdate": "2024-01-01"})

    @pytest.mark.parametrize("params", [
        {"unit": "Daily", "interval": "5"},
        {"unit": "Minute", "interval": "1441"},
        {"unit": "Minute", "barsback": 57601},
        {"barsback": 10, "firstdate": "2024-01-01"},
        {"lastdate": "2024-01-02", "startdate": "2024-01-01"},
    ])
    def test_invalid(self, params):
        with pytest.raises(ValueError):
            validate_bar_params(params)


class TestJoinAccountIds:
    """Tests for join_account_ids."""

    def test_join(self):
        assert join_account_ids(["123", "456"]) == "123,456"
        assert join_account_ids("123") == "123"

    def test_limits(self):
        with pytest.raises(ValueError):
            join_account_ids([])

        with pytest.raises(ValueError, match="25"):
            join_account_ids([str(i) for i in range(26)])


# =============================================================================
# MarketDataService Tests
# =============================================================================

class TestMarketDataService:
    """Tests for MarketDataService."""

    @pytest.mark.asyncio
    async def test_get_quote_snapshots(self, mock_client):
        service = MarketDataService(mock_client)

        result = await service.get_quote_snapshots(["MSFT", "BTCUSD"])

        assert result == {"ok": True}
        mock_client.get.assert_awaited_once_with(
            "/v3/marketdata/quotes/MSFT,BTCUSD", category=RateCategory.MARKET_DATA
        )

    @pytest.mark.asyncio
    async def test_too_many_symbols_sends_nothing(self, mock_client):
        service = MarketDataService(mock_client)

        with pytest.raises(ValueError):
            await service.get_quote_snapshots([f"S{i}" for i in range(101)])
        with pytest.raises(ValueError):
            await service.stream_quotes([f"S{i}" for i in range(101)], lambda e: None)
        with pytest.raises(ValueError):
            await service.get_symbol_details([f"S{i}" for i in range(51)])

        mock_client.get.assert_not_called()
        mock_client.open_stream.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_bars(self, mock_client):
        service = MarketDataService(mock_client)

        await service.get_bars("MSFT", interval="5", unit="Minute", barsback=10)

        mock_client.get.assert_awaited_once_with(
            "/v3/marketdata/barcharts/MSFT",
            params={"interval": "5", "unit": "Minute", "barsback": 10},
            category=RateCategory.MARKET_DATA,
        )

    @pytest.mark.asyncio
    async def test_get_symbol_details_and_crypto(self, mock_client):
        service = MarketDataService(mock_client)

        await service.get_symbol_details("MSFT")
        await service.get_crypto_symbol_names()

        paths = [call.args[0] for call in mock_client.get.call_args_list]
        assert paths == [
            "/v3/marketdata/symbols/MSFT",
            "/v3/marketdata/symbollists/cryptopairs/symbolnames",
        ]

    @pytest.mark.asyncio
    async def test_stream_quotes(self, mock_client):
        service = MarketDataService(mock_client)
        callback = MagicMock()

        session = await service.stream_quotes(["MSFT"], callback)

        assert session == "session"
        request = opened_request(mock_client)
        assert request.path == "/v3/marketdata/stream/quotes/MSFT"
        assert request.headers == {"Accept": MARKET_DATA_STREAM_MEDIA_TYPE}
        assert request.category is RateCategory.STREAM_OPEN
        assert mock_client.open_stream.call_args.args[1] is callback

    @pytest.mark.asyncio
    async def test_stream_bars(self, mock_client):
        service = MarketDataService(mock_client)

        await service.stream_bars("MSFT", None, unit="Minute", interval="1")

        request = opened_request(mock_client)
        assert request.path == "/v3/marketdata/stream/barcharts/MSFT"
        assert request.params == {"unit": "Minute", "interval": "1"}

    @pytest.mark.asyncio
    async def test_stream_market_depth_quotes(self, mock_client):
        service = MarketDataService(mock_client)

        await service.stream_market_depth_quotes("MSFT", None, max_levels=10)

        request = opened_request(mock_client)
        assert request.path == "/v3/marketdata/stream/marketdepth/quotes/MSFT"
        assert request.params == {"maxlevels": 10}

        with pytest.raises(ValueError):
            await service.stream_market_depth_quotes("MSFT", None, max_levels=0)


# =============================================================================
# BrokerageService Tests
# =============================================================================

class TestBrokerageService:
    """Tests for BrokerageService."""

    @pytest.mark.asyncio
    async def test_rest_paths(self, mock_client):
        service = BrokerageService(mock_client)

        await service.get_accounts()
        await service.get_balances(["123456", "789012"])
        await service.get_positions("123456", symbol="MSFT")
        await service.get_orders("123456")

        calls = mock_client.get.call_args_list
        assert calls[0].args == ("/v3/brokerage/accounts",)
        assert calls[1].args == ("/v3/brokerage/accounts/123456,789012/balances",)
        assert calls[2].args == ("/v3/brokerage/accounts/123456/positions",)
        assert calls[2].kwargs == {"params": {"symbol": "MSFT"}}
        assert calls[3].args == ("/v3/brokerage/accounts/123456/orders",)

    @pytest.mark.asyncio
    async def test_stream_orders(self, mock_client):
        service = BrokerageService(mock_client)

        await service.stream_orders(["123456"], None)

        request = opened_request(mock_client)
        assert request.path == "/v3/brokerage/stream/accounts/123456/orders"
        assert request.headers == {"Accept": BROKERAGE_STREAM_MEDIA_TYPE}
        assert request.category is RateCategory.STREAM_OPEN

    @pytest.mark.asyncio
    async def test_stream_positions_changes(self, mock_client):
        service = BrokerageService(mock_client)

        await service.stream_positions("123456", None, changes=True)
        assert opened_request(mock_client).params == {"changes": "true"}

        await service.stream_positions("123456", None)
        assert opened_request(mock_client).params is None


# =============================================================================
# OrderExecutionService Tests
# =============================================================================

class TestOrderExecutionService:
    """Tests for OrderExecutionService."""

    ORDER = {
        "AccountID": "123456",
        "Symbol": "MSFT",
        "Quantity": "10",
        "OrderType": "Limit",
        "LimitPrice": "400.00",
        "TradeAction": "BUY",
        "TimeInForce": {"Duration": "DAY"},
        "Route": "Intelligent",
    }

    @pytest.mark.asyncio
    async def test_place_and_confirm(self, mock_client):
        service = OrderExecutionService(mock_client)

        await service.place_order(self.ORDER)
        await service.confirm_order(self.ORDER)

        place, confirm = mock_client.post.call_args_list
        assert place.args == ("/v3/orderexecution/orders",)
        assert place.kwargs == {"json": self.ORDER, "category": RateCategory.ORDERS}
        assert confirm.args == ("/v3/orderexecution/orderconfirm",)

    @pytest.mark.asyncio
    async def test_replace_and_cancel(self, mock_client):
        service = OrderExecutionService(mock_client)

        await service.replace_order("ORDER123", {"Quantity": "5"})
        await service.cancel_order("ORDER123")

        mock_client.put.assert_awaited_once_with(
            "/v3/orderexecution/orders/ORDER123",
            json={"Quantity": "5"},
            category=RateCategory.ORDERS,
        )
        mock_client.delete.assert_awaited_once_with(
            "/v3/orderexecution/orders/ORDER123", category=RateCategory.ORDERS
        )

    @pytest.mark.asyncio
    async def test_order_id_required(self, mock_client):
        service = OrderExecutionService(mock_client)

        with pytest.raises(ValueError):
            await service.cancel_order("")

        mock_client.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_routes_and_triggers(self, mock_client):
        service = OrderExecutionService(mock_client)

        await service.get_routes()
        await service.get_activation_triggers()

        assert [c.args[0] for c in mock_client.get.call_args_list] == [
            "/v3/orderexecution/routes",
            "/v3/orderexecution/activationtriggers",
        ]
        assert all(c.kwargs["category"] is RateCategory.ORDERS
                   for c in mock_client.get.call_args_list)
