"""Date and time formatting for signed requests."""

from __future__ import annotations

from datetime import datetime, timedelta

__all__ = [
    "isodatetime_milliseconds",
    "unix_timestamp",
]


def _require_utc(timestamp: datetime) -> None:
    if timestamp.utcoffset() != timedelta(seconds=0):
        raise ValueError(f"datetime {timestamp} not in UTC")


def isodatetime_milliseconds(timestamp: datetime) -> str:
    """Format a timestamp in UTC as ISO 8601 with milliseconds.

    This is the format Google Cloud Storage expects for the ``expiration``
    field of an upload policy document.

    Parameters
    ----------
    timestamp
        Date and time to format.

    Returns
    -------
    str
        Date and time formatted like ``2024-01-01T01:00:00.000Z``.

    Raises
    ------
    ValueError
        The provided timestamp was not in UTC.
    """
    _require_utc(timestamp)
    result = timestamp.isoformat(timespec="milliseconds")
    return result.split("+")[0] + "Z"


def unix_timestamp(timestamp: datetime) -> int:
    """Convert a timestamp to whole seconds since the epoch.

    Parameters
    ----------
    timestamp
        Date and time to convert. Must be time zone aware.

    Returns
    -------
    int
        Seconds since the epoch, with any fractional part dropped.

    Raises
    ------
    ValueError
        The provided timestamp was naive.
    """
    if timestamp.tzinfo is None:
        raise ValueError(f"datetime {timestamp} has no time zone")
    return int(timestamp.timestamp())
