"""Calculation strategies: reduce several source prices to one consensus price.

Four variants are available, selected through :class:`StrategyName`:

    - Average: arithmetic mean
    - Median: middle element, or mean of the two central elements
    - WeightedAverage: mean weighted by ``1 / (1 + |v - median|)``
    - TrimmedMean: mean after dropping ``floor(n * trim_fraction)`` values
      from each end

All strategies work on :class:`decimal.Decimal` and raise
:class:`InvalidArgument` on empty input.

.. code-block:: python

    >>> strategy = create_strategy("median")
    >>> strategy.combine([Decimal(10), Decimal(20), Decimal(30), Decimal(40)])
    Decimal('25')
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from decimal import Decimal
from enum import Enum

from .errors import InvalidArgument


class StrategyName(str, Enum):
    """Available strategy identifiers."""

    AVERAGE = "average"
    MEDIAN = "median"
    WEIGHTED_AVERAGE = "weightedaverage"
    TRIMMED_MEAN = "trimmedmean"

    @classmethod
    def parse(cls, name: str | None) -> StrategyName:
        """Resolve a user supplied strategy name.

        Matching is case-insensitive and ignores "_", "-" and spaces, so
        "WeightedAverage", "weighted_average" and "weighted-average" are equal.
        An empty or blank name selects AVERAGE.

        :param name: Raw strategy name.
        :returns: Matching StrategyName.
        :raises InvalidArgument: If the name is not recognized.
        """
        if name is None or not name.strip():
            return cls.AVERAGE
        key = name.strip().lower().replace("_", "").replace("-", "").replace(" ", "")
        for member in cls:
            if member.value == key:
                return member
        available = ", ".join(m.value for m in cls)
        raise InvalidArgument(f"Unknown strategy name '{name}'. Available: {available}")


def _require_values(values: Sequence[Decimal]) -> list[Decimal]:
    if not values:
        raise InvalidArgument("Prices list cannot be empty")
    return [v if isinstance(v, Decimal) else Decimal(str(v)) for v in values]


def _mean(values: Sequence[Decimal]) -> Decimal:
    return sum(values, Decimal(0)) / len(values)


class PriceCalculationStrategy(ABC):
    """Abstract base class for calculation strategies.

    :cvar name: Identifier of the strategy.
    """

    name: StrategyName

    @abstractmethod
    def combine(self, values: Sequence[Decimal]) -> Decimal:
        """Combine source prices into one consensus price.

        :param values: Non-empty sequence of positive prices.
        :returns: Consensus price.
        :raises InvalidArgument: If ``values`` is empty.
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class AverageStrategy(PriceCalculationStrategy):
    """Arithmetic mean."""

    name = StrategyName.AVERAGE

    def combine(self, values: Sequence[Decimal]) -> Decimal:
        return _mean(_require_values(values))


class MedianStrategy(PriceCalculationStrategy):
    """Middle value; mean of the two central values for an even count."""

    name = StrategyName.MEDIAN

    def combine(self, values: Sequence[Decimal]) -> Decimal:
        ordered = sorted(_require_values(values))
        count = len(ordered)
        mid = count // 2
        if count % 2 == 0:
            return (ordered[mid - 1] + ordered[mid]) / 2
        return ordered[mid]


class WeightedAverageStrategy(PriceCalculationStrategy):
    """Mean weighted by closeness to the median.

    Each value gets ``weight = 1 / (1 + |value - median|)``, so outliers are
    downweighted smoothly but never discarded.
    """

    name = StrategyName.WEIGHTED_AVERAGE

    def combine(self, values: Sequence[Decimal]) -> Decimal:
        prices = _require_values(values)
        median = MedianStrategy().combine(prices)

        weighted_sum = Decimal(0)
        total_weight = Decimal(0)
        for price in prices:
            weight = 1 / (1 + abs(price - median))
            weighted_sum += price * weight
            total_weight += weight

        return weighted_sum / total_weight


class TrimmedMeanStrategy(PriceCalculationStrategy):
    """Mean after trimming a fraction of values from both ends.

    :ivar trim_fraction: Fraction of values dropped from each end (0 to 0.5).
    """

    name = StrategyName.TRIMMED_MEAN

    DEFAULT_TRIM_FRACTION = Decimal("0.2")

    def __init__(self, trim_fraction: Decimal | float | str = DEFAULT_TRIM_FRACTION) -> None:
        """Initialize the strategy.

        :param trim_fraction: Fraction trimmed from each end, in [0, 0.5].
        :raises InvalidArgument: If the fraction is out of range.
        """
        fraction = Decimal(str(trim_fraction))
        if fraction < 0 or fraction > Decimal("0.5"):
            raise InvalidArgument("Trim fraction must be between 0 and 0.5")
        self.trim_fraction = fraction

    def combine(self, values: Sequence[Decimal]) -> Decimal:
        ordered = sorted(_require_values(values))
        count = len(ordered)

        # Trimming two or fewer values would remove everything
        if count <= 2:
            return _mean(ordered)

        trim_count = int(count * self.trim_fraction)
        return _mean(ordered[trim_count:count - trim_count])

    def __repr__(self) -> str:
        return f"TrimmedMeanStrategy(trim_fraction={self.trim_fraction})"


def create_strategy(
    name: str | StrategyName | None = None,
    *,
    trim_fraction: Decimal | float | str = TrimmedMeanStrategy.DEFAULT_TRIM_FRACTION,
) -> PriceCalculationStrategy:
    """Create a calculation strategy by name.

    :param name: Strategy name or StrategyName; empty selects Average.
    :param trim_fraction: Trim fraction, used by TrimmedMean only.
    :returns: Strategy instance.
    :raises InvalidArgument: If the name is not recognized.
    """
    key = name if isinstance(name, StrategyName) else StrategyName.parse(name)

    if key is StrategyName.AVERAGE:
        return AverageStrategy()
    if key is StrategyName.MEDIAN:
        return MedianStrategy()
    if key is StrategyName.WEIGHTED_AVERAGE:
        return WeightedAverageStrategy()
    if key is StrategyName.TRIMMED_MEAN:
        return TrimmedMeanStrategy(trim_fraction)
    raise InvalidArgument(f"Unhandled strategy {key!r}")


def get_available_strategies() -> list[str]:
    """Get list of available strategy names."""
    return [member.value for member in StrategyName]
