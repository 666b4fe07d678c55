"""Data models for probe samples, aggregated metrics and alerts."""

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from typing import NamedTuple


@dataclass(frozen=True)
class Sample:
    """Outcome of a single probe against a target.

    Attributes:
        timestamp: Time the probe completed. A naive datetime is taken as
            UTC, so every sample in a log compares with every other.
        dns_ms: Duration of the DNS lookup in milliseconds.
        connect_ms: Duration of the TCP connection in milliseconds.
        tls_ms: Duration of the TLS handshake, 0 for plaintext targets.
        ttfb_ms: Time to first byte, measured from the start of the probe
            (so it includes the DNS, connect and TLS phases).
        response_ms: Total time until the response body was read.
            Defaults to ttfb_ms when left at 0.
        status_code: HTTP status code, or 0 if the probe failed before a
            response was received.
        error: Error description if the probe failed, None otherwise.
    """

    timestamp: datetime
    dns_ms: float = 0.0
    connect_ms: float = 0.0
    tls_ms: float = 0.0
    ttfb_ms: float = 0.0
    response_ms: float = 0.0
    status_code: int = 0
    error: str | None = None

    def __post_init__(self) -> None:
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=UTC))
        if self.response_ms < self.ttfb_ms:
            object.__setattr__(self, "response_ms", self.ttfb_ms)

    @property
    def is_valid(self) -> bool:
        """Whether the probe succeeded: no error and no 4xx/5xx response."""
        return self.error is None and self.status_code < 400

    @classmethod
    def failure(cls, error: str, timestamp: datetime | None = None, **timings: float) -> "Sample":
        """Build a sample for a probe that ended without an HTTP response."""
        return cls(
            timestamp=timestamp or datetime.now(UTC),
            status_code=0,
            error=error,
            **timings,
        )


@dataclass(frozen=True)
class Breakdown:
    """Per-phase request durations in milliseconds.

    processing is the server think time (TTFB minus the network phases),
    transfer is the time spent reading the body after the first byte.
    """

    dns: float = 0.0
    connect: float = 0.0
    tls: float = 0.0
    processing: float = 0.0
    ttfb: float = 0.0
    transfer: float = 0.0
    response: float = 0.0

    @classmethod
    def from_sample(cls, sample: Sample) -> "Breakdown":
        return cls(
            dns=sample.dns_ms,
            connect=sample.connect_ms,
            tls=sample.tls_ms,
            processing=max(sample.ttfb_ms - sample.dns_ms - sample.connect_ms - sample.tls_ms, 0.0),
            ttfb=sample.ttfb_ms,
            transfer=max(sample.response_ms - sample.ttfb_ms, 0.0),
            response=sample.response_ms,
        )

    @classmethod
    def phases(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def as_tuple(self) -> tuple[float, ...]:
        return tuple(getattr(self, name) for name in self.phases())


@dataclass(frozen=True)
class Metric:
    """Statistics aggregated over one window of a target's samples.

    Attributes:
        timespan: Lookback duration of the window in seconds.
        sample_count: Number of samples in the window.
        availability: Fraction of valid samples (0.0-1.0), or None when the
            window holds no samples.
        average: Mean duration of each request phase.
        max: Maximum duration of each request phase.
        status_code_counts: HTTP status code -> number of responses.
        error_counts: Error text -> number of occurrences.
        computed_at: Time the window was evaluated.
    """

    timespan: int
    sample_count: int
    availability: float | None
    average: Breakdown = field(default_factory=Breakdown)
    max: Breakdown = field(default_factory=Breakdown)
    status_code_counts: dict[int, int] = field(default_factory=dict)
    error_counts: dict[str, int] = field(default_factory=dict)
    computed_at: datetime | None = None

    @property
    def has_data(self) -> bool:
        return self.availability is not None


@dataclass(frozen=True)
class Alert:
    """Up/down transition of a target.

    Attributes:
        url: Target that changed state.
        availability: Availability that triggered the transition.
        is_down: True when the target went down, False when it recovered.
        timeframe_end: End of the window the availability was computed over.
    """

    url: str
    availability: float
    is_down: bool
    timeframe_end: datetime


class QueryResult(NamedTuple):
    """Consistent view of one target for one timespan.

    response_history holds the past average response times (ms) of the
    window, oldest first, ending with metric.average.response.
    """

    metric: Metric | None
    alerts: tuple[Alert, ...]
    response_history: tuple[float, ...] = ()
