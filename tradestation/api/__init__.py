"""
TradeStation API Integration Module.

This module provides the authenticated client core for the TradeStation
brokerage API: credentials, rate limiting, REST calls and streaming.

Key Components:
- TradeStationClient: Facade wiring everything around one aiohttp session
- TokenStore: OAuth2 refresh-token exchange with single-flight refresh
- RateLimiter: Per-category token buckets
- HttpInvoker: Authenticated calls with one retry on 401
- StreamSession / StreamManager: Newline-delimited JSON streams

Usage:
    from tradestation.api import TradeStationClient, DataFrame

    async with TradeStationClient() as client:
        accounts = await client.brokerage.get_accounts()

        async with await client.market_data.stream_quotes(["MSFT"]) as stream:
            async for event in stream:
                if isinstance(event, DataFrame):
                    print(event.payload)

Important Notes:
- Simulation and Live environments use different base URLs
- Access tokens last ~20 minutes and are refreshed 5 minutes before expiry
- Streams send a heartbeat roughly every 5 seconds when idle
"""

from tradestation.api.exceptions import (
    TradeStationError,
    AuthError,
    HttpError,
    TransportError,
    DecodeError,
    FramingError,
    StreamLimitError,
)

from tradestation.api.auth import (
    Credential,
    TokenStore,
)

from tradestation.api.rate_limiter import (
    RateCategory,
    RateBucket,
    RateLimiter,
)

from tradestation.api.http import (
    ApiRequest,
    ApiResponse,
    AuthRetryPolicy,
    HttpInvoker,
)

from tradestation.api.streaming import (
    StreamStatus,
    DataFrame,
    Heartbeat,
    ErrorFrame,
    StreamEvent,
    FrameDecoder,
    classify_frame,
    StreamSession,
    StreamManager,
)

from tradestation.api.market_data import MarketDataService
from tradestation.api.brokerage import BrokerageService
from tradestation.api.order_execution import OrderExecutionService

from tradestation.api.client import TradeStationClient

__all__ = [
    # Errors
    "TradeStationError",
    "AuthError",
    "HttpError",
    "TransportError",
    "DecodeError",
    "FramingError",
    "StreamLimitError",
    # Auth
    "Credential",
    "TokenStore",
    # Rate limiting
    "RateCategory",
    "RateBucket",
    "RateLimiter",
    # HTTP
    "ApiRequest",
    "ApiResponse",
    "AuthRetryPolicy",
    "HttpInvoker",
    # Streaming
    "StreamStatus",
    "DataFrame",
    "Heartbeat",
    "ErrorFrame",
    "StreamEvent",
    "FrameDecoder",
    "classify_frame",
    "StreamSession",
    "StreamManager",
    # Services
    "MarketDataService",
    "BrokerageService",
    "OrderExecutionService",
    # Client
    "TradeStationClient",
]
