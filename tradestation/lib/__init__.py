"""
Shared utilities library for the API client.

This module provides common utilities used across the codebase:
- constants: Endpoints, token timing, default quotas, stream media types
- config: Unified configuration loading from YAML and environment variables
- logging: Structured logging with rotation and formatting
"""

from tradestation.lib.constants import (
    LIVE_BASE_URL,
    SIMULATION_BASE_URL,
    TOKEN_URL,
    ENVIRONMENT_LIVE,
    ENVIRONMENT_SIMULATION,
    TOKEN_REFRESH_MARGIN_SECONDS,
    DEFAULT_RATE_LIMIT_CAPACITY,
    DEFAULT_RATE_LIMIT_REFILL_PER_SECOND,
    DEFAULT_MAX_CONCURRENT_STREAMS,
    MARKET_DATA_STREAM_MEDIA_TYPE,
    BROKERAGE_STREAM_MEDIA_TYPE,
)

from tradestation.lib.config import (
    ClientConfig,
    AuthConfig,
    RateLimitConfig,
    StreamConfig,
    ConfigValidationError,
    normalize_environment,
    load_config,
    load_config_from_env,
    validate_config,
    config_to_dict,
    save_config,
)

from tradestation.lib.logging_utils import (
    setup_logging,
    get_logger,
    ClientFormatter,
    LogLevel,
    log_latency,
)

__all__ = [
    # Constants
    "LIVE_BASE_URL",
    "SIMULATION_BASE_URL",
    "TOKEN_URL",
    "ENVIRONMENT_LIVE",
    "ENVIRONMENT_SIMULATION",
    "TOKEN_REFRESH_MARGIN_SECONDS",
    "DEFAULT_RATE_LIMIT_CAPACITY",
    "DEFAULT_RATE_LIMIT_REFILL_PER_SECOND",
    "DEFAULT_MAX_CONCURRENT_STREAMS",
    "MARKET_DATA_STREAM_MEDIA_TYPE",
    "BROKERAGE_STREAM_MEDIA_TYPE",
    # Config
    "ClientConfig",
    "AuthConfig",
    "RateLimitConfig",
    "StreamConfig",
    "ConfigValidationError",
    "normalize_environment",
    "load_config",
    "load_config_from_env",
    "validate_config",
    "config_to_dict",
    "save_config",
    # Logging
    "setup_logging",
    "get_logger",
    "ClientFormatter",
    "LogLevel",
    "log_latency",
]
