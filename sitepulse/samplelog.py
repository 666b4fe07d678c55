"""Time-ordered, bounded log of probe samples for one target."""

import logging
from collections import deque
from datetime import UTC, datetime, timedelta

from .models import Sample

logger = logging.getLogger(__name__)


class SampleLog:
    """Append-only sequence of samples, sorted by timestamp.

    Retention is bounded by length (max_samples), by age (max_age seconds),
    or both; the oldest samples are dropped first. The log does no locking
    of its own: the owning Store serializes every call.

    Readers never index the live log. snapshot() returns an immutable copy
    whose indices stay valid whatever is appended or trimmed afterwards.
    """

    def __init__(self, max_samples: int | None = None, max_age: float | None = None) -> None:
        if max_samples is not None and max_samples < 1:
            raise ValueError(f"max_samples must be at least 1 (got {max_samples})")
        if max_age is not None and max_age <= 0:
            raise ValueError(f"max_age must be positive (got {max_age})")
        self.max_samples = max_samples
        self.max_age = max_age
        self._samples: deque[Sample] = deque()

    def __len__(self) -> int:
        return len(self._samples)

    def append(self, sample: Sample, now: datetime | None = None) -> None:
        """Add a sample and apply the retention bounds.

        A sample older than the newest entry (a probe that completed late)
        is inserted at its sorted position, after any sample with the same
        timestamp, so the log stays non-decreasing.
        """
        if not self._samples or sample.timestamp >= self._samples[-1].timestamp:
            self._samples.append(sample)
        else:
            index = len(self._samples)
            while index > 0 and self._samples[index - 1].timestamp > sample.timestamp:
                index -= 1
            self._samples.insert(index, sample)
            logger.debug(
                "Late sample at %s inserted at position %d of %d",
                sample.timestamp.isoformat(),
                index,
                len(self._samples),
            )
        self.trim(now)

    def trim(self, now: datetime | None = None) -> int:
        """Drop samples beyond the retention bounds.

        Returns:
            Number of samples removed.
        """
        removed = 0
        if self.max_samples is not None:
            while len(self._samples) > self.max_samples:
                self._samples.popleft()
                removed += 1

        if self.max_age is not None and self._samples:
            cutoff = (now or datetime.now(UTC)) - timedelta(seconds=self.max_age)
            while self._samples and self._samples[0].timestamp < cutoff:
                self._samples.popleft()
                removed += 1

        return removed

    def snapshot(self) -> tuple[Sample, ...]:
        """Return an immutable copy of the samples, oldest first."""
        return tuple(self._samples)

    def latest(self) -> Sample | None:
        return self._samples[-1] if self._samples else None
