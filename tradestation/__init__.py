"""
TradeStation brokerage API client.

Subpackages:
- api: Client, credentials, rate limiting, REST calls and streaming
- lib: Constants, configuration and logging utilities
"""

from tradestation.api import TradeStationClient

__version__ = "0.1.0"

__all__ = ["TradeStationClient", "__version__"]
