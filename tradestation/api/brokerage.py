"""
Brokerage endpoints: accounts, balances, positions, orders and their streams.
"""

from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from tradestation.api.http import ApiRequest
from tradestation.api.rate_limiter import RateCategory
from tradestation.api.streaming import EventCallback, StreamSession
from tradestation.lib.constants import BROKERAGE_STREAM_MEDIA_TYPE, MAX_BROKERAGE_ACCOUNT_IDS

if TYPE_CHECKING:
    from tradestation.api.client import TradeStationClient


def join_account_ids(account_ids: Union[str, Iterable[str]]) -> str:
    """
    Validate and join 1 to 25 account IDs.

    Raises:
        ValueError: If no IDs or more than 25 are given
    """
    if isinstance(account_ids, str):
        account_ids = account_ids.split(",")
    cleaned = [str(a).strip() for a in account_ids if str(a).strip()]

    if not cleaned:
        raise ValueError("At least one account ID is required")
    if len(cleaned) > MAX_BROKERAGE_ACCOUNT_IDS:
        raise ValueError(
            f"Maximum of {MAX_BROKERAGE_ACCOUNT_IDS} account IDs allowed per request"
        )
    return ",".join(cleaned)


class BrokerageService:
    """Brokerage endpoint group."""

    def __init__(self, client: "TradeStationClient"):
        self._client = client

    async def get_accounts(self) -> Any:
        return await self._client.get("/v3/brokerage/accounts")

    async def get_balances(self, account_ids: Union[str, Iterable[str]]) -> Any:
        path = f"/v3/brokerage/accounts/{join_account_ids(account_ids)}/balances"
        return await self._client.get(path)

    async def get_positions(
        self,
        account_ids: Union[str, Iterable[str]],
        symbol: Optional[str] = None,
    ) -> Any:
        """Get positions, optionally filtered by symbol (wildcards allowed)."""
        path = f"/v3/brokerage/accounts/{join_account_ids(account_ids)}/positions"
        params = {"symbol": symbol} if symbol else None
        return await self._client.get(path, params=params)

    async def get_orders(self, account_ids: Union[str, Iterable[str]]) -> Any:
        """Get today's orders and open orders."""
        path = f"/v3/brokerage/accounts/{join_account_ids(account_ids)}/orders"
        return await self._client.get(path)

    async def stream_orders(
        self,
        account_ids: Union[str, Iterable[str]],
        on_event: Optional[EventCallback] = None,
    ) -> StreamSession:
        path = f"/v3/brokerage/stream/accounts/{join_account_ids(account_ids)}/orders"
        return await self._open(path, on_event)

    async def stream_positions(
        self,
        account_ids: Union[str, Iterable[str]],
        on_event: Optional[EventCallback] = None,
        changes: Optional[bool] = None,
    ) -> StreamSession:
        """
        Stream positions.

        With changes=True the stream sends a full snapshot first and then
        only the changed positions.
        """
        path = f"/v3/brokerage/stream/accounts/{join_account_ids(account_ids)}/positions"
        params = {"changes": "true" if changes else "false"} if changes is not None else None
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
            params=params,
            headers={"Accept": BROKERAGE_STREAM_MEDIA_TYPE},
            category=RateCategory.STREAM_OPEN,
        )
        return await self._client.open_stream(request, on_event)
