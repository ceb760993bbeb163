"""Hour bucketing: the single storage granularity of the oracle.

Every instant is reduced to the start of the UTC hour containing it. All
functions here are pure.

.. code-block:: python

    >>> normalize(datetime(2024, 1, 1, 10, 42, 7, tzinfo=timezone.utc))
    datetime.datetime(2024, 1, 1, 10, 0, tzinfo=datetime.timezone.utc)
    >>> normalize(1704105727)
    datetime.datetime(2024, 1, 1, 10, 0, tzinfo=datetime.timezone.utc)
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta, timezone

ONE_HOUR = timedelta(hours=1)

Instant = datetime | int | float


def to_utc(instant: Instant) -> datetime:
    """Convert an instant to an aware UTC datetime.

    Naive datetimes are interpreted as UTC. Numbers are unix seconds.

    :param instant: Datetime or unix timestamp in seconds.
    :returns: Aware datetime in UTC.
    """
    if isinstance(instant, datetime):
        if instant.tzinfo is None:
            return instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(timezone.utc)
    return datetime.fromtimestamp(instant, tz=timezone.utc)


def normalize(instant: Instant) -> datetime:
    """Truncate an instant to the start of its UTC hour.

    :param instant: Datetime or unix timestamp in seconds.
    :returns: Hour-aligned aware UTC datetime.
    """
    return to_utc(instant).replace(minute=0, second=0, microsecond=0)


def is_aligned(instant: datetime) -> bool:
    """Check whether an instant already sits on an hour boundary."""
    return instant.minute == 0 and instant.second == 0 and instant.microsecond == 0


def from_unix_seconds(seconds: int | float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def to_unix_seconds(instant: Instant) -> int:
    return int(to_utc(instant).timestamp())


def to_unix_millis(instant: Instant) -> int:
    return int(to_utc(instant).timestamp() * 1000)


def hour_steps(start: datetime, count: int) -> Iterator[datetime]:
    """Yield ``count`` consecutive hour buckets beginning at ``normalize(start)``."""
    bucket = normalize(start)
    for i in range(count):
        yield bucket + i * ONE_HOUR


def parse_instant(text: str) -> datetime:
    """Parse a CLI instant: unix seconds, or an ISO-8601 string.

    :param text: Raw string, e.g. "1704105727" or "2024-01-01T10:42:07Z".
    :returns: Aware UTC datetime (not normalized).
    :raises ValueError: If the string is neither format.
    """
    text = text.strip()
    try:
        return from_unix_seconds(int(text))
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text))
