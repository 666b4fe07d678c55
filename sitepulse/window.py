"""Selection of the samples that fall inside a lookback window."""

from bisect import bisect_left
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from .models import Sample

WINDOW_METHODS = ("reverse", "bisect")


def _threshold(timespan: float, now: datetime | None) -> datetime:
    if now is None:
        now = datetime.now(UTC)
    return now - timedelta(seconds=timespan)


def start_index_for(
    samples: Sequence[Sample],
    timespan: float,
    now: datetime | None = None,
    method: str = "reverse",
) -> int:
    """Return the index of the first sample inside the window.

    samples must be sorted by increasing timestamp. samples[index:] is then
    everything recorded in [now - timespan, now]. A sample stamped exactly
    at now - timespan is part of the window.

    For example, with samples taken 6, 4, 2 and 0 minutes ago and a
    timespan of 180 seconds, the result is 2.

    Args:
        samples: Time-ordered samples of one target.
        timespan: Lookback duration in seconds.
        now: Reference time, defaults to the current UTC time.
        method: "reverse" scans from the newest sample and stops at the first
            expired one; "bisect" binary-searches the timestamps.

    Returns:
        An index in [0, len(samples)]. len(samples) means the window is empty.

    Raises:
        ValueError: If method is not one of WINDOW_METHODS.
    """
    threshold = _threshold(timespan, now)

    if method == "reverse":
        for i in range(len(samples) - 1, -1, -1):
            if samples[i].timestamp < threshold:
                return i + 1
        return 0

    if method == "bisect":
        return bisect_left(samples, threshold, key=lambda s: s.timestamp)

    raise ValueError(f"Unknown window method '{method}'. Must be one of: {WINDOW_METHODS}")


def window(
    samples: Sequence[Sample],
    timespan: float,
    now: datetime | None = None,
    method: str = "reverse",
) -> Sequence[Sample]:
    """Return the samples recorded within the last timespan seconds."""
    return samples[start_index_for(samples, timespan, now=now, method=method):]
