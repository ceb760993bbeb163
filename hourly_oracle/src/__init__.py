"""
Hourly Price Oracle - Consensus Price Module

This module provides hourly consensus prices from multiple exchange sources:
- TradingPair: Normalized base/quote pair
- HourBucket: Hour alignment of instants
- CalculationStrategy: Combining source quotes into one value
- PriceAggregator: Concurrent fetch from every source, failure isolation
- PriceStore / DuckDBPriceStore: Persistence of computed hourly points
- RangeResolver: Hourly series computing only missing buckets
- PriceService: Public price and range operations
- BackgroundJobs: Cache priming and retention pruning
- fetchers: Modular hourly candle fetchers
"""

from .BackgroundJobs import CachePrimer, RetentionPruner
from .CalculationStrategy import StrategyName, create_strategy
from .DuckDBPriceStore import DuckDBPriceStore
from .errors import (
    InvalidArgument,
    InvalidRange,
    NoPriceAvailable,
    OracleError,
    SourceFailure,
    StoreUnavailable,
)
from .PriceAggregator import AggregationResult, PriceAggregator
from .PricePoint import PricePoint
from .PriceService import PriceService
from .PriceStore import CachedPriceStore, HourlyPriceStore, InMemoryPriceStore
from .RangeResolver import RangeResolver
from .TradingPair import TradingPair

__all__ = [
    "AggregationResult",
    "CachePrimer",
    "CachedPriceStore",
    "DuckDBPriceStore",
    "HourlyPriceStore",
    "InMemoryPriceStore",
    "InvalidArgument",
    "InvalidRange",
    "NoPriceAvailable",
    "OracleError",
    "PriceAggregator",
    "PricePoint",
    "PriceService",
    "RangeResolver",
    "RetentionPruner",
    "SourceFailure",
    "StoreUnavailable",
    "StrategyName",
    "TradingPair",
    "create_strategy",
]
