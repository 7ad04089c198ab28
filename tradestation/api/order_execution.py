"""
Order execution endpoints.

All calls share the "orders" rate-limit category so a burst of order
traffic never starves market data or account queries.
"""

from typing import TYPE_CHECKING, Any, Mapping
from urllib.parse import quote

from tradestation.api.rate_limiter import RateCategory

if TYPE_CHECKING:
    from tradestation.api.client import TradeStationClient


class OrderExecutionService:
    """Order placement, confirmation, replacement and cancellation."""

    def __init__(self, client: "TradeStationClient"):
        self._client = client

    async def place_order(self, order: Mapping[str, Any]) -> Any:
        """
        Submit an order.

        Args:
            order: Order body (AccountID, Symbol, Quantity, OrderType, TradeAction,
                   TimeInForce, Route, ...)

        Returns:
            Decoded response with the created order IDs
        """
        return await self._client.post(
            "/v3/orderexecution/orders", json=dict(order), category=RateCategory.ORDERS
        )

    async def confirm_order(self, order: Mapping[str, Any]) -> Any:
        """Get estimated cost and commission for an order without placing it."""
        return await self._client.post(
            "/v3/orderexecution/orderconfirm", json=dict(order), category=RateCategory.ORDERS
        )

    async def replace_order(self, order_id: str, order: Mapping[str, Any]) -> Any:
        """Modify an open order."""
        if not order_id:
            raise ValueError("order_id is required")
        return await self._client.put(
            f"/v3/orderexecution/orders/{quote(str(order_id), safe='')}",
            json=dict(order),
            category=RateCategory.ORDERS,
        )

    async def cancel_order(self, order_id: str) -> Any:
        if not order_id:
            raise ValueError("order_id is required")
        return await self._client.delete(
            f"/v3/orderexecution/orders/{quote(str(order_id), safe='')}",
            category=RateCategory.ORDERS,
        )

    async def get_routes(self) -> Any:
        return await self._client.get("/v3/orderexecution/routes", category=RateCategory.ORDERS)

    async def get_activation_triggers(self) -> Any:
        return await self._client.get(
            "/v3/orderexecution/activationtriggers", category=RateCategory.ORDERS
        )
