"""Error taxonomy for the hourly price oracle.

Only :class:`SourceFailure` is recovered locally (inside the aggregation
engine, where one failing upstream must not abort the others). Every other
kind propagates to the caller unchanged.

.. code-block:: python

    >>> try:
    ...     raise NoPriceAvailable("BTC/USD", bucket_time)
    ... except OracleError as e:
    ...     print(e)
    No price available for BTC/USD at 2024-01-01T10:00:00+00:00
"""

from __future__ import annotations

from datetime import datetime


class OracleError(Exception):
    """Base exception for all oracle errors."""

    pass


class InvalidArgument(OracleError, ValueError):
    """Raised on bad input: empty strategy input, unknown strategy, bad value."""

    pass


class InvalidRange(OracleError, ValueError):
    """Raised when a requested time range is inverted or too wide.

    :ivar start: Normalized range start.
    :ivar end: Normalized range end.
    """

    def __init__(self, start: datetime, end: datetime, reason: str):
        """Initialize the range error.

        :param start: Range start.
        :param end: Range end.
        :param reason: Human readable reason.
        """
        self.start = start
        self.end = end
        super().__init__(
            f"Invalid range {start.isoformat()} .. {end.isoformat()}: {reason}"
        )


class SourceFailure(OracleError):
    """Base exception for a single upstream source failing.

    :ivar source: Name of the failing source.
    """

    def __init__(self, source: str, message: str):
        """Initialize the source failure.

        :param source: Source name (e.g., "bitstamp").
        :param message: Error message.
        """
        self.source = source
        super().__init__(f"[{source}] {message}")


class SourceUnavailable(SourceFailure):
    """Raised when a source cannot be reached or answers with an error status.

    :ivar status_code: HTTP status code, or None for connection errors.
    """

    def __init__(self, source: str, message: str, status_code: int | None = None):
        """Initialize the unavailable error.

        :param source: Source name.
        :param message: Error message.
        :param status_code: Optional HTTP status code.
        """
        self.status_code = status_code
        if status_code is not None:
            message = f"HTTP {status_code}: {message}"
        super().__init__(source, message)

    @property
    def retryable(self) -> bool:
        """Connection errors, 429 and 5xx responses are worth retrying."""
        return (
            self.status_code is None
            or self.status_code == 429
            or self.status_code >= 500
        )


class SourceTimeout(SourceFailure):
    """Raised when a source does not answer in time."""

    pass


class MalformedResponse(SourceFailure):
    """Raised when a source answers with data that cannot be parsed."""

    pass


class NoPriceAvailable(OracleError):
    """Raised when no source produced a usable price for a bucket.

    :ivar pair: Normalized trading pair.
    :ivar bucket_time: Hour bucket that could not be computed.
    :ivar failures: Mapping of source name to failure description.
    """

    def __init__(
        self,
        pair: str,
        bucket_time: datetime,
        failures: dict[str, str] | None = None,
    ):
        """Initialize the error.

        :param pair: Trading pair.
        :param bucket_time: Hour bucket.
        :param failures: Optional per-source failure descriptions.
        """
        self.pair = pair
        self.bucket_time = bucket_time
        self.failures = dict(failures or {})
        super().__init__(f"No price available for {pair} at {bucket_time.isoformat()}")


class StoreUnavailable(OracleError):
    """Raised when the persistent price store fails."""

    pass
