"""
Hourly price fetchers for multiple exchange APIs.

This module provides a unified interface for fetching the close price of a
one-hour candle from various exchanges.

Usage:
    from hourly_oracle.src.fetchers import get_fetcher, get_available_fetchers

    # Get list of available fetchers
    available = get_available_fetchers()
    # ['bitfinex', 'bitstamp', 'coinbase', 'kraken']

    # Create a fetcher instance
    fetcher = get_fetcher("bitstamp", timeout=5.0)
    price = await fetcher.fetch(TradingPair("btc", "usd"), bucket_time)
"""

# Import base classes and utilities
from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    get_available_fetchers,
    get_fetcher,
    register_fetcher,
)

# Import all fetcher implementations to trigger registration
from .bitfinex import BitfinexFetcher
from .bitstamp import BitstampFetcher
from .coinbase import CoinbaseFetcher
from .kraken import KrakenFetcher
from .retry import NO_RETRY, RetryPolicy

__all__ = [
    # Base classes
    "BaseFetcher",
    "RetryPolicy",
    "NO_RETRY",
    # Registry functions
    "register_fetcher",
    "get_fetcher",
    "get_available_fetchers",
    "FETCHER_REGISTRY",
    # Fetcher implementations
    "BitfinexFetcher",
    "BitstampFetcher",
    "CoinbaseFetcher",
    "KrakenFetcher",
]
