"""
TradeStation API client.

Wires the credential store, rate limiter, HTTP invoker and stream manager
around one shared aiohttp session, and exposes the endpoint groups.

Example:
    config = load_config("config/tradestation.yaml")

    async with TradeStationClient(config) as client:
        accounts = await client.brokerage.get_accounts()

        session = await client.market_data.stream_quotes(["MSFT"], on_quote)
        await asyncio.sleep(60)
        await session.close()
"""

import logging
from typing import Any, Mapping, Optional

import aiohttp

from tradestation.api.auth import Credential, TokenStore
from tradestation.api.brokerage import BrokerageService
from tradestation.api.http import ApiRequest, ApiResponse, AuthRetryPolicy, HttpInvoker
from tradestation.api.market_data import MarketDataService
from tradestation.api.order_execution import OrderExecutionService
from tradestation.api.rate_limiter import RateCategory, RateLimiter
from tradestation.api.streaming import EventCallback, StreamManager, StreamSession
from tradestation.lib.config import ClientConfig, load_config_from_env, normalize_environment
from tradestation.lib.logging_utils import setup_logging

logger = logging.getLogger(__name__)


class TradeStationClient:
    """
    Async client for the TradeStation REST and streaming API.

    Features:
    - OAuth2 refresh-token authentication with automatic refresh
    - Per-category rate limiting
    - One retry with a refreshed credential on 401
    - Streaming sessions with a concurrent stream limit
    - Async context manager support

    Example:
        async with TradeStationClient() as client:
            quotes = await client.market_data.get_quote_snapshots(["MSFT", "AAPL"])
    """

    def __init__(self, config: Optional[ClientConfig] = None, configure_logging: bool = False):
        """
        Initialize the client.

        Args:
            config: Client configuration (loads from environment if not provided)
            configure_logging: Set up application logging at config.log_level
                               (leave False when the application configures logging)

        Raises:
            ConfigValidationError: If the environment or credentials are invalid
        """
        self.config = config or load_config_from_env()
        self.environment = normalize_environment(self.config.environment)
        if configure_logging:
            setup_logging(level=self.config.log_level)
        self.base_url = self.config.base_url

        self._session: Optional[aiohttp.ClientSession] = None

        self.token_store = TokenStore(self.config.auth, get_session=self._get_session)
        self.rate_limiter = RateLimiter(quotas=self.config.rate_limits)
        self.invoker = HttpInvoker(
            base_url=self.base_url,
            token_store=self.token_store,
            rate_limiter=self.rate_limiter,
            get_session=self._get_session,
            retry_policy=AuthRetryPolicy(max_retries=self.config.auth_retry_limit),
            request_timeout=self.config.request_timeout,
        )
        self.streams = StreamManager(self.config.streams.max_concurrent_streams)

        self.market_data = MarketDataService(self)
        self.brokerage = BrokerageService(self)
        self.order_execution = OrderExecutionService(self)

        logger.info(f"TradeStation client initialized ({self.environment}, {self.base_url})")

    @property
    def refresh_token(self) -> Optional[str]:
        """Current refresh token (may have been rotated by the server)."""
        return self.token_store.refresh_token

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        """Close all streams, then the HTTP session."""
        await self.streams.close_all()
        await self.token_store.close()
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    async def get_valid_token(self) -> Credential:
        """Get a valid credential, refreshing if it is about to expire."""
        return await self.token_store.get_valid_token()

    async def admit(self, category: RateCategory = RateCategory.DEFAULT) -> None:
        """Wait for a rate-limit token in the given category."""
        await self.rate_limiter.admit(category)

    async def invoke(self, request: ApiRequest) -> ApiResponse:
        """Perform one authenticated REST call."""
        return await self.invoker.invoke(request)

    async def get(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        category: RateCategory = RateCategory.DEFAULT,
    ) -> Any:
        """GET a path and return the decoded body."""
        response = await self.invoke(ApiRequest("GET", path, params=params, category=category))
        return response.data

    async def post(
        self,
        path: str,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        category: RateCategory = RateCategory.DEFAULT,
    ) -> Any:
        """POST a JSON body and return the decoded body."""
        response = await self.invoke(
            ApiRequest("POST", path, params=params, json=json, category=category)
        )
        return response.data

    async def put(
        self,
        path: str,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        category: RateCategory = RateCategory.DEFAULT,
    ) -> Any:
        """PUT a JSON body and return the decoded body."""
        response = await self.invoke(
            ApiRequest("PUT", path, params=params, json=json, category=category)
        )
        return response.data

    async def delete(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        category: RateCategory = RateCategory.DEFAULT,
    ) -> Any:
        """DELETE a path and return the decoded body."""
        response = await self.invoke(ApiRequest("DELETE", path, params=params, category=category))
        return response.data

    async def open_stream(
        self,
        request: ApiRequest,
        on_event: Optional[EventCallback] = None,
        stream_id: Optional[str] = None,
    ) -> StreamSession:
        """
        Open a streaming session.

        Args:
            request: Stream-open request
            on_event: Callback for each event (None = iterate the session)
            stream_id: Identifier for logs and active_streams()

        Returns:
            Open StreamSession

        Raises:
            StreamLimitError: If the concurrent stream limit is reached
            AuthError, HttpError, TransportError: If the stream cannot be opened
        """
        session = StreamSession(
            request,
            connect=lambda: self.invoker.open_stream(request),
            on_event=on_event,
            idle_timeout=self.config.streams.idle_timeout,
            max_frame_bytes=self.config.streams.max_frame_bytes,
            stream_id=stream_id,
        )
        return await self.streams.open(session)

    def active_streams(self) -> list[str]:
        """Identifiers of the streams currently connecting or open."""
        return self.streams.active_streams()

    async def close_all_streams(self) -> None:
        """Close every open stream."""
        await self.streams.close_all()

    async def __aenter__(self) -> "TradeStationClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
