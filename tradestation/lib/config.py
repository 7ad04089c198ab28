"""
Unified configuration management.

This module provides a centralized way to load, validate, and access
configuration for the API client. It supports:
- YAML file loading
- Environment variable overrides
- Type validation via dataclasses
- Default values from constants

Configuration Hierarchy (highest to lowest priority):
1. Environment variables (TRADESTATION_*)
2. User-provided config file
3. Default values from constants.py

Example usage:
    # Load config with environment overrides
    config = load_config("config/tradestation.yaml")

    # Access typed config sections
    print(config.auth.token_url)
    print(config.rate_limit_for("orders").capacity)
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from tradestation.lib.constants import (
    DEFAULT_MAX_CONCURRENT_STREAMS,
    DEFAULT_MAX_FRAME_BYTES,
    DEFAULT_RATE_LIMIT_CAPACITY,
    DEFAULT_RATE_LIMIT_REFILL_PER_SECOND,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ENVIRONMENT_LIVE,
    ENVIRONMENT_SIMULATION,
    HEARTBEAT_INTERVAL_SECONDS,
    LIVE_BASE_URL,
    SIMULATION_BASE_URL,
    TOKEN_REFRESH_MARGIN_SECONDS,
    TOKEN_REQUEST_TIMEOUT_SECONDS,
    TOKEN_URL,
)
from tradestation.lib.logging_utils import LogLevel


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


# =============================================================================
# Configuration Dataclasses
# =============================================================================

@dataclass
class AuthConfig:
    """Configuration for the OAuth2 refresh-token exchange."""
    client_id: str = ""
    client_secret: str = ""
    # Long-lived token traded for access tokens; may be rotated by the server
    refresh_token: Optional[str] = None
    token_url: str = TOKEN_URL
    # Refresh this many seconds before the access token expires
    refresh_margin_seconds: float = TOKEN_REFRESH_MARGIN_SECONDS
    request_timeout: float = TOKEN_REQUEST_TIMEOUT_SECONDS


@dataclass
class RateLimitConfig:
    """Token bucket quota for one endpoint category."""
    capacity: int = DEFAULT_RATE_LIMIT_CAPACITY
    # Tokens added per second
    refill_rate: float = DEFAULT_RATE_LIMIT_REFILL_PER_SECOND


@dataclass
class StreamConfig:
    """Configuration for streaming sessions."""
    max_concurrent_streams: int = DEFAULT_MAX_CONCURRENT_STREAMS
    # Seconds without any frame (heartbeats included) before the stream is failed.
    # None disables the check and relies on the transport's close detection.
    idle_timeout: Optional[float] = None
    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES


@dataclass
class ClientConfig:
    """Main configuration container."""
    environment: str = ENVIRONMENT_SIMULATION
    auth: AuthConfig = field(default_factory=AuthConfig)
    streams: StreamConfig = field(default_factory=StreamConfig)
    # Per-category overrides keyed by category name ("orders", "marketdata", ...)
    rate_limits: dict[str, RateLimitConfig] = field(default_factory=dict)
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    # Number of retries with a refreshed credential after a 401
    auth_retry_limit: int = 1
    log_level: str = "INFO"

    @property
    def base_url(self) -> str:
        """API base URL for the configured environment."""
        if normalize_environment(self.environment) == ENVIRONMENT_LIVE:
            return LIVE_BASE_URL
        return SIMULATION_BASE_URL

    def rate_limit_for(self, category: str) -> RateLimitConfig:
        """Get the quota for a category, falling back to the default quota."""
        return self.rate_limits.get(category, RateLimitConfig())


def normalize_environment(environment: Optional[str]) -> str:
    """
    Normalize an environment name to "Simulation" or "Live".

    Args:
        environment: Environment name in any case

    Returns:
        Canonical environment name

    Raises:
        ConfigValidationError: If the environment is missing or unknown
    """
    if not environment:
        raise ConfigValidationError(
            "Environment must be specified - set TRADESTATION_ENVIRONMENT"
        )

    value = environment.strip().lower()
    if value == ENVIRONMENT_SIMULATION.lower():
        return ENVIRONMENT_SIMULATION
    if value == ENVIRONMENT_LIVE.lower():
        return ENVIRONMENT_LIVE

    raise ConfigValidationError(
        f"Unknown environment '{environment}' - expected "
        f"'{ENVIRONMENT_SIMULATION}' or '{ENVIRONMENT_LIVE}'"
    )


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(
    config_path: Optional[str] = None,
    override_env: bool = True
) -> ClientConfig:
    """
    Load configuration from YAML file with optional environment overrides.

    Args:
        config_path: Path to YAML config file (optional)
        override_env: If True, apply environment variable overrides

    Returns:
        ClientConfig instance

    Example:
        config = load_config("config/tradestation.yaml")
        print(config.base_url)  # https://sim.api.tradestation.com
    """
    config = ClientConfig()

    if config_path:
        config = _load_from_yaml(config_path, config)

    if override_env:
        config = _apply_env_overrides(config)

    return config


def _load_from_yaml(config_path: str, base_config: ClientConfig) -> ClientConfig:
    """Load configuration from YAML file."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        yaml_data = yaml.safe_load(f)

    if yaml_data is None:
        return base_config

    if "auth" in yaml_data:
        base_config.auth = _update_dataclass(base_config.auth, yaml_data["auth"])

    if "streams" in yaml_data:
        base_config.streams = _update_dataclass(base_config.streams, yaml_data["streams"])

    if "rate_limits" in yaml_data:
        for category, quota in (yaml_data["rate_limits"] or {}).items():
            base_config.rate_limits[str(category)] = _update_dataclass(
                RateLimitConfig(), quota
            )

    # Top-level fields
    for key in ("environment", "request_timeout", "auth_retry_limit", "log_level"):
        if key in yaml_data:
            setattr(base_config, key, yaml_data[key])

    return base_config


def _update_dataclass(instance: Any, data: dict) -> Any:
    """Update dataclass fields from dictionary."""
    if not data:
        return instance

    field_names = {f.name for f in instance.__dataclass_fields__.values()}

    for key, value in data.items():
        normalized_key = key.replace(".", "_").replace("-", "_")

        if normalized_key in field_names:
            setattr(instance, normalized_key, value)

    return instance


def _apply_env_overrides(config: ClientConfig) -> ClientConfig:
    """Apply environment variable overrides to config."""

    # Credentials (prefer env so secrets stay out of config files)
    if env_val := os.getenv("TRADESTATION_CLIENT_ID"):
        config.auth.client_id = env_val

    if env_val := os.getenv("TRADESTATION_CLIENT_SECRET"):
        config.auth.client_secret = env_val

    if env_val := os.getenv("TRADESTATION_REFRESH_TOKEN"):
        config.auth.refresh_token = env_val

    if env_val := os.getenv("TRADESTATION_ENVIRONMENT"):
        config.environment = env_val

    # Streaming
    if env_val := os.getenv("TRADESTATION_MAX_STREAMS"):
        config.streams.max_concurrent_streams = int(env_val)

    if env_val := os.getenv("TRADESTATION_STREAM_IDLE_TIMEOUT"):
        config.streams.idle_timeout = float(env_val)

    if env_val := os.getenv("TRADESTATION_LOG_LEVEL"):
        config.log_level = env_val.upper()

    return config


def load_config_from_env() -> ClientConfig:
    """
    Load configuration purely from environment variables.

    Useful for containerized deployments where config files aren't available.

    Returns:
        ClientConfig instance
    """
    return load_config(config_path=None, override_env=True)


# =============================================================================
# Configuration Validation
# =============================================================================

def validate_config(config: ClientConfig) -> list[str]:
    """
    Validate configuration values.

    Args:
        config: ClientConfig to validate

    Returns:
        List of validation warnings (empty if valid)

    Raises:
        ConfigValidationError: If critical validation fails
    """
    warnings = []
    errors = []

    try:
        normalize_environment(config.environment)
    except ConfigValidationError as e:
        errors.append(str(e))

    # Credentials
    if not config.auth.client_id:
        errors.append("client_id required - set TRADESTATION_CLIENT_ID")
    if not config.auth.client_secret:
        errors.append("client_secret required - set TRADESTATION_CLIENT_SECRET")
    if not config.auth.refresh_token:
        warnings.append(
            "No refresh token configured - every authenticated call will fail "
            "until TRADESTATION_REFRESH_TOKEN is set"
        )

    if config.auth.refresh_margin_seconds < 0:
        errors.append("refresh_margin_seconds cannot be negative")

    # Rate limits
    for category, quota in config.rate_limits.items():
        if quota.capacity < 1:
            errors.append(f"rate_limits.{category}.capacity must be >= 1")
        if quota.refill_rate <= 0:
            errors.append(f"rate_limits.{category}.refill_rate must be > 0")

    # Streams
    if config.streams.max_concurrent_streams < 1:
        errors.append("max_concurrent_streams must be >= 1")

    if config.streams.idle_timeout is not None:
        if config.streams.idle_timeout <= 0:
            errors.append("stream idle_timeout must be > 0 when set")
        elif config.streams.idle_timeout < 2 * HEARTBEAT_INTERVAL_SECONDS:
            warnings.append(
                f"stream idle_timeout ({config.streams.idle_timeout}s) is close to the "
                f"heartbeat interval and may fail healthy idle streams"
            )

    if config.auth_retry_limit < 0:
        errors.append("auth_retry_limit cannot be negative")

    if config.log_level.upper() not in LogLevel.__members__:
        errors.append(
            f"Invalid log_level: {config.log_level}. "
            f"Must be one of: {', '.join(LogLevel.__members__)}"
        )

    if errors:
        raise ConfigValidationError("Configuration validation failed:\n" +
                                   "\n".join(f"  - {e}" for e in errors))

    return warnings


# =============================================================================
# Configuration Export
# =============================================================================

def config_to_dict(config: ClientConfig) -> dict:
    """
    Convert ClientConfig to dictionary for serialization.

    Args:
        config: Configuration to convert

    Returns:
        Dictionary representation (YAML-safe)
    """
    result = asdict(config)

    # Remove sensitive data
    auth = result["auth"]
    auth["client_secret"] = "***" if auth.get("client_secret") else ""
    auth["refresh_token"] = "***" if auth.get("refresh_token") else None

    return result


def save_config(config: ClientConfig, path: str) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: Configuration to save
        path: Output file path
    """
    data = config_to_dict(config)

    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
