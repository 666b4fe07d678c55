"""Aggregation of a window of samples into availability and latency metrics.

Every function here is pure and operates on samples[start_index:]. None of
them raise for an empty window: availability is reported as None ("no
data") and the latency breakdowns are zero-valued.
"""

from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime

from .models import Breakdown, Metric, Sample


def availability(samples: Sequence[Sample], start_index: int = 0) -> float | None:
    """Return the fraction of valid samples, or None if the window is empty."""
    window = samples[start_index:]
    if not window:
        return None
    valid = sum(1 for s in window if s.is_valid)
    return valid / len(window)


def average_breakdown(samples: Sequence[Sample], start_index: int = 0) -> Breakdown:
    """Return the mean duration of each request phase."""
    window = samples[start_index:]
    if not window:
        return Breakdown()
    rows = [Breakdown.from_sample(s).as_tuple() for s in window]
    means = [sum(column) / len(rows) for column in zip(*rows)]
    return Breakdown(*means)


def max_breakdown(samples: Sequence[Sample], start_index: int = 0) -> Breakdown:
    """Return the maximum duration of each request phase."""
    window = samples[start_index:]
    if not window:
        return Breakdown()
    rows = [Breakdown.from_sample(s).as_tuple() for s in window]
    return Breakdown(*(max(column) for column in zip(*rows)))


def count_codes(samples: Sequence[Sample], start_index: int = 0) -> dict[int, int]:
    """Count HTTP status codes, ignoring samples that got no response."""
    return dict(Counter(s.status_code for s in samples[start_index:] if s.status_code != 0))


def count_errors(samples: Sequence[Sample], start_index: int = 0) -> dict[str, int]:
    """Count errors by their text.

    Errors with different causes but the same text are counted together.
    """
    return dict(Counter(s.error for s in samples[start_index:] if s.error is not None))


def aggregate(
    samples: Sequence[Sample],
    start_index: int = 0,
    timespan: int = 0,
    computed_at: datetime | None = None,
) -> Metric:
    """Compute the full Metric for samples[start_index:].

    Args:
        samples: Time-ordered samples, usually a snapshot of a SampleLog.
        start_index: Index of the first in-window sample, as returned by
            window.start_index_for().
        timespan: Window duration in seconds, recorded on the Metric.
        computed_at: Evaluation time recorded on the Metric.

    Returns:
        Metric for the window. An empty window yields availability None.
    """
    return Metric(
        timespan=timespan,
        sample_count=len(samples[start_index:]),
        availability=availability(samples, start_index),
        average=average_breakdown(samples, start_index),
        max=max_breakdown(samples, start_index),
        status_code_counts=count_codes(samples, start_index),
        error_counts=count_errors(samples, start_index),
        computed_at=computed_at or datetime.now(UTC),
    )


def sorted_errors(error_counts: dict[str, int]) -> list[tuple[str, int]]:
    """Order error counts by count descending, then by error text."""
    return sorted(error_counts.items(), key=lambda item: (-item[1], item[0]))


def sorted_codes(status_code_counts: dict[int, int]) -> list[tuple[int, int]]:
    """Order status code counts by code."""
    return sorted(status_code_counts.items())
