"""
Authenticated request/response transport.

HttpInvoker issues single-shot REST calls and stream-open requests:
- Attaches the current credential as the Authorization header
- Passes every network attempt through the rate limiter
- Retries once with a refreshed credential when the server answers 401
- Maps connection failures to TransportError and non-2xx answers to HttpError

Request and response bodies are opaque JSON; endpoint-specific shapes belong
to the service modules.
"""

import asyncio
import json as jsonlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

import aiohttp

from tradestation.api.auth import Credential, TokenStore
from tradestation.api.exceptions import HttpError, TransportError
from tradestation.api.rate_limiter import RateCategory, RateLimiter
from tradestation.lib.constants import (
    AUTH_RETRY_STATUSES,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    STREAM_CONNECT_TIMEOUT_SECONDS,
)
from tradestation.lib.logging_utils import log_latency

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiRequest:
    """One logical API call.

    Attributes:
        method: HTTP method (GET, POST, PUT, DELETE)
        path: Endpoint path (e.g., "/v3/brokerage/accounts") or absolute URL
        params: Query parameters
        json: JSON body for POST/PUT
        headers: Extra headers (Authorization is always set by the invoker)
        category: Rate-limit category of the endpoint group
        timeout: Total timeout in seconds (REST only; default from invoker)
    """
    method: str
    path: str
    params: Optional[Mapping[str, Any]] = None
    json: Any = None
    headers: Optional[Mapping[str, str]] = None
    category: RateCategory = RateCategory.DEFAULT
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "category", RateCategory(self.category))


@dataclass
class ApiResponse:
    """Decoded response of a successful call."""
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    data: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class AuthRetryPolicy:
    """Retry-with-refreshed-credential policy.

    Attributes:
        max_retries: Retries allowed after an auth rejection (1 = retry once)
        retry_statuses: Statuses that mean the credential was rejected
    """
    max_retries: int = 1
    retry_statuses: frozenset[int] = AUTH_RETRY_STATUSES

    def should_retry(self, status: int, attempt: int) -> bool:
        """Whether a response with `status` on retry number `attempt` earns another try."""
        return status in self.retry_statuses and attempt < self.max_retries


def parse_body(text: str) -> Any:
    """Parse a response body as JSON, falling back to the raw text."""
    if not text:
        return None
    try:
        return jsonlib.loads(text)
    except ValueError:
        return text


def error_message(status: int, body: Any) -> str:
    """Human readable message for an error response."""
    if isinstance(body, dict):
        for key in ("Message", "message", "error_description", "Error", "error"):
            if body.get(key):
                return f"HTTP {status}: {body[key]}"
    elif isinstance(body, str) and body:
        return f"HTTP {status}: {body[:200]}"
    return f"HTTP {status}"


class HttpInvoker:
    """Issues authenticated, rate-limited API calls.

    Example:
        invoker = HttpInvoker(base_url, token_store, rate_limiter, get_session)
        response = await invoker.invoke(ApiRequest("GET", "/v3/brokerage/accounts"))
        accounts = response.data["Accounts"]
    """

    def __init__(
        self,
        base_url: str,
        token_store: TokenStore,
        rate_limiter: RateLimiter,
        get_session: Callable[[], Awaitable[aiohttp.ClientSession]],
        retry_policy: Optional[AuthRetryPolicy] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        """Initialize the invoker.

        Args:
            base_url: API base URL for the environment
            token_store: Source of valid credentials
            rate_limiter: Per-category admission gate
            get_session: Coroutine returning the shared aiohttp session
            retry_policy: Auth retry policy (default: retry once on 401)
            request_timeout: Default total timeout for REST calls in seconds
        """
        self.base_url = base_url.rstrip("/")
        self._token_store = token_store
        self._rate_limiter = rate_limiter
        self._get_session = get_session
        self.retry_policy = retry_policy or AuthRetryPolicy()
        self.request_timeout = request_timeout

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    async def invoke(self, request: ApiRequest) -> ApiResponse:
        """
        Perform one REST call.

        Args:
            request: Request to send

        Returns:
            ApiResponse with the decoded body

        Raises:
            AuthError: If no valid credential can be obtained
            HttpError: On a non-2xx response after the auth retry
            TransportError: On connection-level failure
        """
        start_time = datetime.now(timezone.utc)
        timeout = aiohttp.ClientTimeout(total=request.timeout or self.request_timeout)

        response = await self._exchange(request, timeout)
        body = await self._read_body(response)

        log_latency(logger, f"{request.method} {request.path} -> {response.status}", start_time)

        if not 200 <= response.status < 300:
            message = error_message(response.status, body)
            logger.error(f"{request.method} {request.path} failed: {message}")
            raise HttpError(response.status, body, message)

        return ApiResponse(status=response.status, headers=dict(response.headers), data=body)

    async def open_stream(self, request: ApiRequest) -> aiohttp.ClientResponse:
        """
        Open a long-lived streaming response.

        Uses the same credential, admission and auth-retry pipeline as
        invoke() but returns the unread response for the caller to consume.
        Only the connect phase is time-limited.

        Returns:
            Open aiohttp response with a 2xx status

        Raises:
            AuthError, HttpError, TransportError: As for invoke()
        """
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=STREAM_CONNECT_TIMEOUT_SECONDS)

        response = await self._exchange(request, timeout)

        if not 200 <= response.status < 300:
            body = await self._read_body(response)
            message = error_message(response.status, body)
            logger.error(f"Stream open {request.path} failed: {message}")
            raise HttpError(response.status, body, message)

        return response

    async def _exchange(
        self,
        request: ApiRequest,
        timeout: aiohttp.ClientTimeout,
    ) -> aiohttp.ClientResponse:
        """Send the request, retrying with a refreshed credential per the policy."""
        credential = await self._token_store.get_valid_token()
        attempt = 0

        while True:
            response = await self._send(request, credential, timeout)

            if not self.retry_policy.should_retry(response.status, attempt):
                return response

            attempt += 1
            logger.warning(
                f"{request.method} {request.path} rejected ({response.status}), "
                f"retrying with refreshed credential"
            )
            response.close()
            credential = await self._token_store.force_refresh(credential)

    async def _send(
        self,
        request: ApiRequest,
        credential: Credential,
        timeout: aiohttp.ClientTimeout,
    ) -> aiohttp.ClientResponse:
        """One admitted network attempt."""
        await self._rate_limiter.admit(request.category)

        headers = {"Accept": "application/json"}
        headers.update(request.headers or {})
        headers["Authorization"] = credential.authorization_header

        session = await self._get_session()
        url = self.url_for(request.path)
        logger.debug(f"{request.method} {url} [{request.category.value}]")

        try:
            response = await session.request(
                request.method,
                url,
                params=request.params,
                json=request.json,
                headers=headers,
                timeout=timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Connection error on {request.method} {request.path}: {e}")
            raise TransportError(f"Connection error: {e}") from e

        self._rate_limiter.observe_headers(request.category, response.headers)
        return response

    async def _read_body(self, response: aiohttp.ClientResponse) -> Any:
        try:
            text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            response.close()
            raise TransportError(f"Error reading response: {e}") from e
        except asyncio.CancelledError:
            response.close()
            raise
        return parse_body(text)
