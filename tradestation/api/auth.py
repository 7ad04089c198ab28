"""
OAuth2 refresh-token credential management.

This module manages the access token lifecycle for the client:
- Refresh exchange (refresh token -> access token + expiry)
- Automatic refresh before expiry
- Single-flight refresh so concurrent callers share one exchange
- Refresh token rotation when the server issues a new one

Credentials live only in process memory. A restarted process starts from the
configured refresh token again.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from tradestation.api.exceptions import AuthError
from tradestation.lib.config import AuthConfig, ConfigValidationError
from tradestation.lib.constants import DEFAULT_TOKEN_TYPE

logger = logging.getLogger(__name__)

SessionProvider = Callable[[], Awaitable[aiohttp.ClientSession]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Credential:
    """Access token issued by a refresh exchange.

    Attributes:
        access_token: Short-lived bearer token
        refresh_token: Refresh token in effect after the exchange
        expires_at: Absolute UTC expiry of access_token
        token_type: Authorization scheme (normally "Bearer")
    """
    access_token: str
    refresh_token: str
    expires_at: datetime
    token_type: str = DEFAULT_TOKEN_TYPE

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        """Check whether the token expires within the given number of seconds."""
        now = now or _utcnow()
        return now >= self.expires_at - timedelta(seconds=seconds)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_within(0, now)

    @property
    def authorization_header(self) -> str:
        """Value for the Authorization header."""
        return f"{self.token_type} {self.access_token}"

    def __repr__(self) -> str:
        return (
            f"Credential(token_type={self.token_type!r}, "
            f"expires_at={self.expires_at.isoformat()!r})"
        )


class TokenStore:
    """
    Holds the current credential and performs refresh exchanges.

    Responsibilities:
    - Provide a valid access token to the HTTP and streaming layers
    - Refresh before expiry (refresh_margin_seconds ahead)
    - Collapse concurrent refreshes into one exchange
    - Keep the rotated refresh token for the next exchange

    Example:
        store = TokenStore(AuthConfig(client_id="id", client_secret="secret",
                                      refresh_token="rt"))
        credential = await store.get_valid_token()
        headers = {"Authorization": credential.authorization_header}
    """

    def __init__(
        self,
        config: AuthConfig,
        get_session: Optional[SessionProvider] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize token store.

        Args:
            config: OAuth configuration
            get_session: Coroutine returning the shared aiohttp session
                         (an own session is created lazily if not provided)
            now: Clock returning a timezone-aware UTC datetime

        Raises:
            ConfigValidationError: If client_id or client_secret is missing
        """
        if not config.client_id or not config.client_secret:
            raise ConfigValidationError("Client ID and Client Secret are required")

        self.config = config
        self._get_session = get_session
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._now = now

        self._credential: Optional[Credential] = None
        self._refresh_token: Optional[str] = config.refresh_token
        self._refresh_task: Optional[asyncio.Task] = None
        self.refresh_count = 0

    @property
    def credential(self) -> Optional[Credential]:
        """Currently cached credential, if any."""
        return self._credential

    @property
    def refresh_token(self) -> Optional[str]:
        """Current (possibly rotated) refresh token."""
        return self._refresh_token

    def has_valid_token(self) -> bool:
        """Check if an unexpired access token is cached."""
        return self._credential is not None and not self._credential.is_expired(self._now())

    async def get_valid_token(self) -> Credential:
        """
        Get a valid credential, refreshing it if necessary.

        Returns the cached credential unchanged while it is outside the
        refresh margin. Otherwise joins (or starts) the single in-flight
        refresh exchange.

        Returns:
            Valid Credential

        Raises:
            AuthError: If the refresh exchange fails or no refresh token exists
        """
        credential = self._credential
        if credential is not None and not self._needs_refresh(credential):
            return credential
        return await self._refresh_single_flight()

    async def force_refresh(self, stale: Optional[Credential] = None) -> Credential:
        """
        Refresh after the server rejected a credential.

        If the cached credential has already moved on from `stale` (another
        caller refreshed in the meantime) the current one is returned without
        a new exchange.

        Args:
            stale: Credential the server rejected (None forces an exchange)

        Returns:
            Refreshed Credential
        """
        self.invalidate(stale)
        current = self._credential
        if current is not None and not self._needs_refresh(current):
            return current
        return await self._refresh_single_flight()

    def invalidate(self, credential: Optional[Credential] = None) -> None:
        """
        Drop the cached credential.

        Args:
            credential: Only drop the cache if it still holds this credential.
                        None drops unconditionally.
        """
        if credential is None or self._credential is credential:
            self._credential = None

    def token_status(self) -> dict[str, Any]:
        """
        Get current token status for diagnostics.

        Returns:
            Dictionary without any secret values:
            - authorized: Whether a credential is cached
            - has_refresh_token: Whether a refresh token is available
            - expired / expires_at / expires_in_seconds (if authorized)
        """
        status: dict[str, Any] = {
            "authorized": self._credential is not None,
            "has_refresh_token": bool(self._refresh_token),
            "refreshing": self._refresh_task is not None,
        }
        if self._credential is not None:
            now = self._now()
            expires_in = (self._credential.expires_at - now).total_seconds()
            status.update({
                "expired": self._credential.is_expired(now),
                "expires_at": self._credential.expires_at.isoformat(),
                "expires_in_seconds": max(0.0, expires_in),
            })
        return status

    async def close(self) -> None:
        """Cancel any in-flight refresh and close the owned session."""
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, AuthError):
                pass
        self._refresh_task = None

        if self._own_session is not None and not self._own_session.closed:
            await self._own_session.close()
        self._own_session = None

    def _needs_refresh(self, credential: Credential) -> bool:
        return credential.expires_within(self.config.refresh_margin_seconds, self._now())

    async def _refresh_single_flight(self) -> Credential:
        """Join the in-flight refresh exchange, starting one if none is running."""
        task = self._refresh_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._exchange_refresh_token())
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task
        # A cancelled waiter must not cancel the exchange other callers share
        return await asyncio.shield(task)

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _session(self) -> aiohttp.ClientSession:
        if self._get_session is not None:
            return await self._get_session()
        if self._own_session is None or self._own_session.closed:
            self._own_session = aiohttp.ClientSession()
        return self._own_session

    async def _exchange_refresh_token(self) -> Credential:
        """
        Trade the refresh token for a new access token.

        Returns:
            New Credential (also cached)

        Raises:
            AuthError: On missing refresh token, rejected grant, network
                       failure or malformed token response
        """
        refresh_token = self._refresh_token
        if not refresh_token:
            raise AuthError(
                "No refresh token available. You must provide a refresh token "
                "in the client configuration."
            )

        self.refresh_count += 1
        logger.info(f"Refreshing access token (exchange #{self.refresh_count})")

        payload = {
            "grant_type": "refresh_token",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "refresh_token": refresh_token,
        }

        session = await self._session()

        try:
            async with session.post(
                self.config.token_url,
                data=payload,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            ) as response:
                status = response.status
                text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Network error during token refresh: {e}")
            raise AuthError(f"Network error during token refresh: {e}") from e

        try:
            data = json.loads(text) if text else {}
        except ValueError:
            data = text

        if status != 200:
            detail = text
            if isinstance(data, dict):
                detail = data.get("error_description") or data.get("error") or text
            logger.error(f"Token refresh failed: {status} - {detail}")
            raise AuthError(
                f"Token refresh failed: {detail}",
                status_code=status,
                response=data,
            )

        try:
            expires_in = float(data["expires_in"])
            credential = Credential(
                access_token=str(data["access_token"]),
                # Refresh token may or may not be rotated; keep existing if not
                refresh_token=data.get("refresh_token") or refresh_token,
                expires_at=self._now() + timedelta(seconds=expires_in),
                token_type=data.get("token_type") or DEFAULT_TOKEN_TYPE,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Invalid response from token endpoint: {e}")
            raise AuthError(f"Invalid response from token endpoint: {e}") from e

        self._credential = credential
        self._refresh_token = credential.refresh_token

        logger.info(f"Access token refreshed, expires at {credential.expires_at.isoformat()}")
        return credential
