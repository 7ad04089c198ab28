"""
Service constants for the TradeStation API client.

This module defines the values shared across the client:
- API and sign-in endpoints for each environment
- Token refresh timing
- Default rate-limit quotas per endpoint category
- Streaming media types and limits

All values are sourced from the TradeStation v3 API documentation.
"""


# =============================================================================
# Endpoints
# =============================================================================

LIVE_BASE_URL = "https://api.tradestation.com"
SIMULATION_BASE_URL = "https://sim.api.tradestation.com"
TOKEN_URL = "https://signin.tradestation.com/oauth/token"

ENVIRONMENT_LIVE = "Live"
ENVIRONMENT_SIMULATION = "Simulation"
ENVIRONMENTS = (ENVIRONMENT_SIMULATION, ENVIRONMENT_LIVE)


# =============================================================================
# Token Management
# =============================================================================

# Refresh when less than 5 minutes of access token lifetime remain
TOKEN_REFRESH_MARGIN_SECONDS = 300
TOKEN_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_TOKEN_TYPE = "Bearer"


# =============================================================================
# Rate Limiting
# =============================================================================

# 120 requests per minute per quota group
DEFAULT_RATE_LIMIT_CAPACITY = 120
DEFAULT_RATE_LIMIT_REFILL_PER_SECOND = 2.0

RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"


# =============================================================================
# HTTP
# =============================================================================

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
STREAM_CONNECT_TIMEOUT_SECONDS = 30.0
AUTH_RETRY_STATUSES = frozenset({401})


# =============================================================================
# Streaming
# =============================================================================

MARKET_DATA_STREAM_MEDIA_TYPE = "application/vnd.tradestation.streams.v2+json"
BROKERAGE_STREAM_MEDIA_TYPE = "application/vnd.tradestation.streams.v3+json"

DEFAULT_MAX_CONCURRENT_STREAMS = 10
DEFAULT_MAX_FRAME_BYTES = 1024 * 1024

# Idle streams receive a heartbeat roughly every 5 seconds
HEARTBEAT_INTERVAL_SECONDS = 5.0

HEARTBEAT_FIELD = "Heartbeat"
ERROR_FIELD = "Error"
ERROR_METADATA_FIELDS = frozenset({"Error", "Message", "AccountID", "OrderID", "Symbol"})


# =============================================================================
# Request Limits
# =============================================================================

MAX_QUOTE_SYMBOLS = 100
MAX_SYMBOL_DETAIL_SYMBOLS = 50
MAX_BROKERAGE_ACCOUNT_IDS = 25
MAX_MINUTE_BAR_INTERVAL = 1440
MAX_INTRADAY_BARS = 57600
