"""TradingPair: normalized trading pair symbol.

Pairs are accepted as "btc/usd", "BTC-USD" or "BTC/USD" and always stored and
compared in the canonical upper-case "BASE/QUOTE" form. The canonical symbol
is at most 10 characters so it fits the persisted record.

.. code-block:: python

    >>> pair = TradingPair.from_string("btc-usd")
    >>> str(pair)
    'BTC/USD'
    >>> pair.base
    'btc'
"""

from __future__ import annotations

from .errors import InvalidArgument

MAX_SYMBOL_LENGTH = 10


class TradingPair:
    """A base/quote trading pair.

    :ivar base: Base currency symbol (lowercase).
    :ivar quote: Quote currency symbol (lowercase).
    """

    def __init__(self, base: str, quote: str) -> None:
        """Initialize a trading pair.

        :param base: Base currency symbol (e.g., "btc").
        :param quote: Quote currency symbol (e.g., "usd").
        :raises InvalidArgument: If a symbol is empty, not alphanumeric, or
            the pair symbol is too long.
        """
        base = base.strip().lower()
        quote = quote.strip().lower()
        if not base or not quote:
            raise InvalidArgument("Pair symbols must not be empty")
        if not base.isalnum() or not quote.isalnum():
            raise InvalidArgument(f"Pair symbols must be alphanumeric: {base}/{quote}")
        if len(base) + len(quote) + 1 > MAX_SYMBOL_LENGTH:
            raise InvalidArgument(
                f"Pair symbol {base}/{quote} exceeds {MAX_SYMBOL_LENGTH} characters"
            )
        self.base = base
        self.quote = quote

    @property
    def symbol(self) -> str:
        """Canonical symbol, e.g. "BTC/USD"."""
        return f"{self.base.upper()}/{self.quote.upper()}"

    def __str__(self) -> str:
        return self.symbol

    def __repr__(self) -> str:
        return f"TradingPair({self.base!r}, {self.quote!r})"

    def __hash__(self) -> int:
        return hash(self.symbol)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TradingPair):
            return NotImplemented
        return self.symbol == other.symbol

    @classmethod
    def from_string(cls, pair_str: str) -> TradingPair:
        """Parse a pair string in format "base/quote" or "base-quote".

        :param pair_str: Pair string like "btc/usd" or "BTC-USD".
        :returns: New TradingPair instance.
        :raises InvalidArgument: If the pair string format is invalid.
        """
        parts = pair_str.replace("-", "/").split("/")
        if len(parts) != 2:
            raise InvalidArgument(
                f"Invalid pair format '{pair_str}'. Expected 'base/quote' (e.g., 'BTC/USD')"
            )
        return cls(parts[0], parts[1])


def normalize_pair(pair: str | TradingPair) -> TradingPair:
    """Coerce a string or TradingPair into a TradingPair."""
    if isinstance(pair, TradingPair):
        return pair
    return TradingPair.from_string(pair)
