"""
Exception hierarchy for the TradeStation API client.

Every error raised by the transport, auth and streaming layers derives from
TradeStationError so callers can catch the whole family at once.
"""

from typing import Any, Optional


class TradeStationError(Exception):
    """Base exception for TradeStation API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Any = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(message)


class AuthError(TradeStationError):
    """Refresh exchange failed or no refresh token is available."""
    pass


class HttpError(TradeStationError):
    """Non-2xx response, surfaced with its status and body intact."""

    def __init__(self, status: int, body: Any, message: Optional[str] = None):
        super().__init__(
            message or f"HTTP {status}",
            status_code=status,
            response=body,
        )

    @property
    def status(self) -> int:
        return self.status_code

    @property
    def body(self) -> Any:
        return self.response


class TransportError(TradeStationError):
    """Connection-level failure (DNS, TLS, reset, timeout)."""
    pass


class DecodeError(TradeStationError):
    """A stream frame could not be parsed or classified."""

    def __init__(self, message: str, frame: Optional[str] = None):
        super().__init__(message)
        self.frame = frame


class FramingError(DecodeError):
    """The byte stream itself can no longer be split into frames."""
    pass


class StreamLimitError(TradeStationError):
    """Maximum number of concurrent streams reached."""

    def __init__(self, max_streams: int):
        super().__init__(f"Maximum number of concurrent streams ({max_streams}) reached")
        self.max_streams = max_streams
