#!/usr/bin/env python3
"""Hourly Price Oracle.

Computes a consensus hourly price for a trading pair from multiple exchange
sources, stores it in a DuckDB database and serves hourly series, computing
only the hours that are not stored yet.

Configure with CLI arguments or environment variables (CLI takes precedence).
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from .src.BackgroundJobs import CachePrimer, RetentionPruner
from .src.CalculationStrategy import create_strategy, get_available_strategies
from .src.DuckDBPriceStore import DuckDBPriceStore
from .src.errors import OracleError
from .src.fetchers import BaseFetcher, RetryPolicy, get_available_fetchers, get_fetcher
from .src.HourBucket import parse_instant
from .src.PriceAggregator import PriceAggregator
from .src.PricePoint import PricePoint
from .src.PriceStore import CachedPriceStore
from .src.PriceService import PriceService
from .src.TradingPair import TradingPair

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with environment defaults."""
    available_sources = get_available_fetchers()
    available_strategies = get_available_strategies()

    parser = argparse.ArgumentParser(
        description="Hourly Price Oracle: consensus hourly prices from multiple exchanges",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Available strategies:
  {', '.join(available_strategies)}

Examples:
  # Price of the hour containing an instant
  python -m hourly_oracle.main price --pair BTC/USD --at 2024-01-01T10:42:00Z

  # Hourly series, computing only the missing hours
  python -m hourly_oracle.main range --pair BTC/USD \\
      --start 2024-01-01T00:00:00Z --end 2024-01-02T00:00:00Z

  # Keep the current hour primed and prune old hours
  python -m hourly_oracle.main serve --pairs BTC/USD,ETH/USD

Environment variables (CLI args take precedence):
  SOURCES, STRATEGY, TRIM_FRACTION, DB_PATH, FETCH_TIMEOUT, RETRY_ATTEMPTS,
  RETRY_BASE_DELAY, CACHE_TTL, MAX_RANGE_DAYS, PAIRS, PRIME_INTERVAL,
  PRUNE_INTERVAL, RETENTION_DAYS
""",
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated price sources. Available: {', '.join(available_sources)}",
        default=os.environ.get("SOURCES") or "bitstamp,bitfinex,kraken,coinbase",
    )

    parser.add_argument(
        "--strategy",
        type=str,
        help=f"Calculation strategy. Available: {', '.join(available_strategies)} (default: average)",
        default=os.environ.get("STRATEGY") or "average",
    )

    parser.add_argument(
        "--trim-fraction",
        dest="trim_fraction",
        type=str,
        help="Fraction trimmed from each end by trimmedmean, 0 to 0.5 (default: 0.2)",
        default=os.environ.get("TRIM_FRACTION") or "0.2",
    )

    parser.add_argument(
        "--db-path",
        dest="db_path",
        type=str,
        help="DuckDB database file (default: data/hourly_prices.duckdb)",
        default=os.environ.get("DB_PATH") or "data/hourly_prices.duckdb",
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual fetch requests in seconds (default: 10.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "10.0"),
    )

    parser.add_argument(
        "--retry-attempts",
        dest="retry_attempts",
        type=int,
        help="HTTP attempts per source request, 1 disables retry (default: 3)",
        default=int(os.environ.get("RETRY_ATTEMPTS") or "3"),
    )

    parser.add_argument(
        "--retry-base-delay",
        dest="retry_base_delay",
        type=float,
        help="Delay after the first failed attempt in seconds (default: 2.0)",
        default=float(os.environ.get("RETRY_BASE_DELAY") or "2.0"),
    )

    parser.add_argument(
        "--cache-ttl",
        dest="cache_ttl",
        type=float,
        help="Seconds a stored price stays in the in-memory cache, 0 disables (default: 3600)",
        default=float(os.environ.get("CACHE_TTL") or "3600"),
    )

    parser.add_argument(
        "--max-range-days",
        dest="max_range_days",
        type=int,
        help="Widest accepted range in days (default: 30)",
        default=int(os.environ.get("MAX_RANGE_DAYS") or "30"),
    )

    parser.add_argument(
        "--timeout",
        type=float,
        help="Overall timeout for a price or range request in seconds (default: none)",
        default=None,
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    price = commands.add_parser("price", help="Consensus price for one hour")
    price.add_argument("--pair", required=True, help="Trading pair, e.g. BTC/USD")
    price.add_argument("--at", required=True, help="Instant (ISO-8601 or unix seconds)")

    price_range = commands.add_parser("range", help="Hourly consensus prices for a range")
    price_range.add_argument("--pair", required=True, help="Trading pair, e.g. BTC/USD")
    price_range.add_argument("--start", required=True, help="Range start (ISO-8601 or unix seconds)")
    price_range.add_argument("--end", required=True, help="Range end (ISO-8601 or unix seconds)")

    commands.add_parser("prune", help="Delete prices older than the retention period")

    serve = commands.add_parser("serve", help="Run cache priming and retention pruning")
    serve.add_argument(
        "--pairs",
        type=str,
        help="Comma-separated pairs to prime (default: BTC/USD)",
        default=os.environ.get("PAIRS") or "BTC/USD",
    )
    serve.add_argument(
        "--prime-interval",
        dest="prime_interval",
        type=int,
        help="Minutes between cache priming runs (default: 5)",
        default=int(os.environ.get("PRIME_INTERVAL") or "5"),
    )
    serve.add_argument(
        "--prune-interval",
        dest="prune_interval",
        type=int,
        help="Hours between retention pruning runs (default: 24)",
        default=int(os.environ.get("PRUNE_INTERVAL") or "24"),
    )

    for sub in (commands.choices["prune"], serve):
        sub.add_argument(
            "--retention-days",
            dest="retention_days",
            type=int,
            help="Keep prices for this many days (default: 30)",
            default=int(os.environ.get("RETENTION_DAYS") or "30"),
        )

    return parser


def build_aggregator(args: argparse.Namespace, sources: list[str]) -> PriceAggregator:
    """Create fetchers and the aggregation engine from parsed arguments."""
    retry_policy = RetryPolicy(attempts=args.retry_attempts, base_delay=args.retry_base_delay)
    fetchers = [
        get_fetcher(source, timeout=args.fetch_timeout, retry_policy=retry_policy)
        for source in sources
    ]
    strategy = create_strategy(args.strategy, trim_fraction=args.trim_fraction)
    # Leave room for retries inside each source call
    fetch_timeout = args.fetch_timeout * args.retry_attempts + args.retry_base_delay * (
        2 ** (args.retry_attempts - 1)
    )
    return PriceAggregator(fetchers, strategy=strategy, fetch_timeout=fetch_timeout)


def format_point(point: PricePoint) -> str:
    return f"{point.bucket_time.strftime('%Y-%m-%dT%H:%M:%SZ')}  {point.pair}  {point.value}"


async def run_command(args: argparse.Namespace, aggregator: PriceAggregator) -> None:
    """Execute the selected command."""
    if args.command == "serve":
        pairs = [p.strip() for p in args.pairs.split(",") if p.strip()]
        primer = CachePrimer(
            pairs,
            lambda: DuckDBPriceStore.open(args.db_path),
            aggregator,
            interval=timedelta(minutes=args.prime_interval),
        )
        pruner = RetentionPruner(
            lambda: DuckDBPriceStore.open(args.db_path),
            retention=timedelta(days=args.retention_days),
            interval=timedelta(hours=args.prune_interval),
        )
        await asyncio.gather(primer.run(), pruner.run())
        return

    if args.command == "prune":
        pruner = RetentionPruner(
            lambda: DuckDBPriceStore.open(args.db_path),
            retention=timedelta(days=args.retention_days),
        )
        await pruner.run_once()
        print(f"Removed {pruner.last_removed} price records")
        return

    async with DuckDBPriceStore.open(args.db_path) as backend:
        store = CachedPriceStore(backend, ttl_seconds=args.cache_ttl)
        service = PriceService(
            store, aggregator, max_range=timedelta(days=args.max_range_days)
        )
        if args.command == "price":
            point = await service.get_price(args.pair, parse_instant(args.at), timeout=args.timeout)
            print(format_point(point))
        elif args.command == "range":
            points = await service.get_price_range(
                args.pair,
                parse_instant(args.start),
                parse_instant(args.end),
                timeout=args.timeout,
            )
            for point in points:
                print(format_point(point))


async def run(args: argparse.Namespace, aggregator: PriceAggregator) -> None:
    try:
        await run_command(args, aggregator)
    finally:
        # Clean up shared HTTP client
        await BaseFetcher.close_shared_client()


def main() -> None:
    """Main entry point for the Hourly Price Oracle CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    if args.fetch_timeout <= 0:
        parser.error("--fetch-timeout must be positive")

    if args.retry_attempts < 1:
        parser.error("--retry-attempts must be at least 1")

    if args.cache_ttl < 0:
        parser.error("--cache-ttl must not be negative")

    if args.max_range_days < 1:
        parser.error("--max-range-days must be at least 1")

    try:
        if not Decimal("0") <= Decimal(args.trim_fraction) <= Decimal("0.5"):
            parser.error("--trim-fraction must be between 0 and 0.5")
    except InvalidOperation:
        parser.error("--trim-fraction must be a number")

    sources = [s.strip().lower() for s in args.sources.split(",") if s.strip()]
    if not sources:
        parser.error("At least one source must be specified")

    # Validate sources
    available_sources = get_available_fetchers()
    invalid_sources = [s for s in sources if s not in available_sources]
    if invalid_sources:
        parser.error(
            f"Unknown sources: {invalid_sources}. "
            f"Available: {', '.join(available_sources)}"
        )

    try:
        aggregator = build_aggregator(args, sources)
        if args.command in ("price", "range"):
            TradingPair.from_string(args.pair)
    except OracleError as e:
        parser.error(str(e))

    # Log configuration
    logger.info("=" * 60)
    logger.info("Hourly Price Oracle")
    logger.info("=" * 60)
    logger.info(f"Command:           {args.command}")
    logger.info(f"Sources:           {', '.join(sources)}")
    logger.info(f"Strategy:          {aggregator.strategy!r}")
    logger.info(f"Database:          {args.db_path}")
    logger.info(f"Fetch Timeout:     {args.fetch_timeout}s")
    logger.info(f"Retry Attempts:    {args.retry_attempts}")
    logger.info("=" * 60)

    try:
        asyncio.run(run(args, aggregator))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except OracleError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    except asyncio.TimeoutError:
        logger.error(f"Request did not complete within {args.timeout}s")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
