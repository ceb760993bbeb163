"""PricePoint and RawQuote value types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation

from .errors import InvalidArgument
from .HourBucket import is_aligned, to_utc
from .TradingPair import MAX_SYMBOL_LENGTH

# Fixed-point precision of a persisted price: decimal(18,8).
PRICE_QUANTUM = Decimal("0.00000001")


def quantize_price(value: Decimal | int | float | str) -> Decimal:
    """Round a price to 8 fractional digits.

    :param value: Raw price.
    :returns: Quantized Decimal.
    :raises InvalidArgument: If the value is not a finite number.
    """
    try:
        dec = value if isinstance(value, Decimal) else Decimal(str(value))
        if dec.is_finite():
            return dec.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_EVEN)
    except (InvalidOperation, ValueError) as e:
        raise InvalidArgument(f"Invalid price value {value!r}") from e
    raise InvalidArgument(f"Invalid price value {value!r}")


@dataclass(frozen=True)
class PricePoint:
    """Consensus price of a pair for one hour bucket.

    :ivar pair: Canonical pair symbol, e.g. "BTC/USD".
    :ivar bucket_time: Hour-aligned aware UTC datetime.
    :ivar value: Positive price with 8 fractional digits.
    """

    pair: str
    bucket_time: datetime
    value: Decimal

    def __post_init__(self) -> None:
        if not self.pair or len(self.pair) > MAX_SYMBOL_LENGTH:
            raise InvalidArgument(f"Invalid pair symbol {self.pair!r}")
        bucket_time = to_utc(self.bucket_time)
        if not is_aligned(bucket_time):
            raise InvalidArgument(
                f"bucket_time {self.bucket_time.isoformat()} is not hour-aligned"
            )
        value = quantize_price(self.value)
        if value <= 0:
            raise InvalidArgument(f"Price must be greater than zero, got {value}")
        # frozen: bypass __setattr__ to store the normalized fields
        object.__setattr__(self, "bucket_time", bucket_time)
        object.__setattr__(self, "value", value)

    @property
    def key(self) -> tuple[str, datetime]:
        """Natural key in the store."""
        return (self.pair, self.bucket_time)


@dataclass(frozen=True)
class RawQuote:
    """A single source reading; lives only within one aggregation."""

    source: str
    value: Decimal
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
