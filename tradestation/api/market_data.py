"""
Market data endpoints: quotes, bars, symbol details and their streams.
"""

from typing import TYPE_CHECKING, Any, Iterable, Optional, Union
from urllib.parse import quote

from tradestation.api.http import ApiRequest
from tradestation.api.rate_limiter import RateCategory
from tradestation.api.streaming import EventCallback, StreamSession
from tradestation.lib.constants import (
    MARKET_DATA_STREAM_MEDIA_TYPE,
    MAX_INTRADAY_BARS,
    MAX_MINUTE_BAR_INTERVAL,
    MAX_QUOTE_SYMBOLS,
    MAX_SYMBOL_DETAIL_SYMBOLS,
)

if TYPE_CHECKING:
    from tradestation.api.client import TradeStationClient


def join_symbols(symbols: Union[str, Iterable[str]], limit: int) -> str:
    """
    Validate a symbol list and join it for a path segment.

    Args:
        symbols: Comma separated string or iterable of symbols
        limit: Maximum number of symbols the endpoint accepts

    Returns:
        URL-encoded, comma separated symbols

    Raises:
        ValueError: If the list is empty or longer than limit
    """
    if isinstance(symbols, str):
        symbols = symbols.split(",")
    cleaned = [s.strip() for s in symbols if s and s.strip()]

    if not cleaned:
        raise ValueError("At least one symbol is required")
    if len(cleaned) > limit:
        raise ValueError(f"Maximum of {limit} symbols allowed per request")

    return ",".join(quote(s, safe="") for s in cleaned)


def validate_bar_params(params: dict[str, Any]) -> None:
    """Check bar chart parameters before any request is sent."""
    unit = params.get("unit")
    interval = params.get("interval")

    if unit and unit != "Minute" and interval and str(interval) != "1":
        raise ValueError("Interval must be 1 for non-minute bars")

    if unit == "Minute" and interval and int(interval) > MAX_MINUTE_BAR_INTERVAL:
        raise ValueError(f"Maximum interval for minute bars is {MAX_MINUTE_BAR_INTERVAL}")

    if unit == "Minute" and params.get("barsback") and int(params["barsback"]) > MAX_INTRADAY_BARS:
        raise ValueError(f"Maximum of {MAX_INTRADAY_BARS} intraday bars allowed per request")

    if params.get("barsback") and params.get("firstdate"):
        raise ValueError("barsback and firstdate parameters are mutually exclusive")

    if params.get("lastdate") and "startdate" in params:
        raise ValueError("lastdate and startdate parameters are mutually exclusive")


class MarketDataService:
    """Market data endpoint group (rate category: marketdata)."""

    def __init__(self, client: "TradeStationClient"):
        self._client = client

    async def get_quote_snapshots(self, symbols: Union[str, Iterable[str]]) -> Any:
        """Get a quote snapshot for up to 100 symbols."""
        path = f"/v3/marketdata/quotes/{join_symbols(symbols, MAX_QUOTE_SYMBOLS)}"
        return await self._client.get(path, category=RateCategory.MARKET_DATA)

    async def get_bars(self, symbol: str, **params: Any) -> Any:
        """
        Get historical bars.

        Args:
            symbol: Symbol to chart
            **params: interval, unit, barsback, firstdate, lastdate, sessiontemplate

        Raises:
            ValueError: On an invalid parameter combination
        """
        validate_bar_params(params)
        path = f"/v3/marketdata/barcharts/{quote(symbol, safe='')}"
        return await self._client.get(path, params=params or None, category=RateCategory.MARKET_DATA)

    async def get_symbol_details(self, symbols: Union[str, Iterable[str]]) -> Any:
        """Get symbol details for up to 50 symbols."""
        path = f"/v3/marketdata/symbols/{join_symbols(symbols, MAX_SYMBOL_DETAIL_SYMBOLS)}"
        return await self._client.get(path, category=RateCategory.MARKET_DATA)

    async def get_crypto_symbol_names(self) -> Any:
        return await self._client.get(
            "/v3/marketdata/symbollists/cryptopairs/symbolnames",
            category=RateCategory.MARKET_DATA,
        )

    async def stream_quotes(
        self,
        symbols: Union[str, Iterable[str]],
        on_event: Optional[EventCallback] = None,
    ) -> StreamSession:
        """Stream quote changes for up to 100 symbols."""
        path = f"/v3/marketdata/stream/quotes/{join_symbols(symbols, MAX_QUOTE_SYMBOLS)}"
        return await self._open(path, on_event)

    async def stream_bars(
        self,
        symbol: str,
        on_event: Optional[EventCallback] = None,
        **params: Any,
    ) -> StreamSession:
        """Stream bar updates for one symbol."""
        validate_bar_params(params)
        path = f"/v3/marketdata/stream/barcharts/{quote(symbol, safe='')}"
        return await self._open(path, on_event, params)

    async def stream_market_depth_quotes(
        self,
        symbol: str,
        on_event: Optional[EventCallback] = None,
        max_levels: Optional[int] = None,
    ) -> StreamSession:
        """Stream level 2 quotes for one symbol."""
        params = {}
        if max_levels is not None:
            if max_levels <= 0:
                raise ValueError("max_levels must be a positive integer")
            params["maxlevels"] = max_levels
        path = f"/v3/marketdata/stream/marketdepth/quotes/{quote(symbol, safe='')}"
        return await self._open(path, on_event, params)

    async def _open(
        self,
        path: str,
        on_event: Optional[EventCallback],
        params: Optional[dict[str, Any]] = None,
    ) -> StreamSession:
        request = ApiRequest(
            "GET",
            path,
            params=params or None,
            headers={"Accept": MARKET_DATA_STREAM_MEDIA_TYPE},
            category=RateCategory.STREAM_OPEN,
        )
        return await self._client.open_stream(request, on_event)
