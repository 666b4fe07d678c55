"""Thread-safe store of samples, metrics and alerts for all targets.

The store is the only shared state of the daemon. Poll threads append
samples, aggregation threads replace metrics and record alerts, and the API
server and dashboard read from it. Each target has its own read/write lock,
so work on one target never waits for another.
"""

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .aggregator import aggregate
from .alerting import AlertEngine
from .models import Alert, Metric, QueryResult, Sample
from .samplelog import SampleLog
from .window import start_index_for

logger = logging.getLogger(__name__)

# Number of alerts kept per target, newest last.
DEFAULT_MAX_ALERTS = 100

# Number of past average response times kept per (target, timespan).
DEFAULT_HISTORY_LENGTH = 60


class UnknownTargetError(KeyError):
    """Raised when a url is not one of the configured targets."""

    pass


class UnknownTimespanError(KeyError):
    """Raised when a timespan is not one of the configured windows."""

    pass


class ReadWriteLock:
    """Lock allowing many readers or a single writer.

    Writers are preferred: once a writer is waiting, new readers queue
    behind it so a steady stream of API reads cannot starve the pollers.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


@dataclass
class TargetState:
    """Everything the store keeps for one target. Guarded by lock."""

    url: str
    log: SampleLog
    engine: AlertEngine
    alerts: deque[Alert]
    metrics: dict[int, Metric] = field(default_factory=dict)
    # Snapshot sequence number each stored metric was computed from.
    generations: dict[int, int] = field(default_factory=dict)
    snapshots: int = 0
    history: dict[int, deque[float]] = field(default_factory=dict)
    lock: ReadWriteLock = field(default_factory=ReadWriteLock)


class Store:
    """Shared state for all monitored targets.

    Example:
        store = Store(["https://example.com"], timespans=[120, 600], alert_timespan=120)
        store.append_sample("https://example.com", sample)
        store.refresh_metrics("https://example.com", 120)
        metric, alerts, history = store.query("https://example.com", 120)
    """

    def __init__(
        self,
        urls: Iterable[str],
        timespans: Iterable[int],
        alert_timespan: int | None = None,
        alert_threshold: float = 0.8,
        max_samples: int | None = None,
        max_age: float | None = None,
        max_alerts: int = DEFAULT_MAX_ALERTS,
        history_length: int = DEFAULT_HISTORY_LENGTH,
        window_method: str = "reverse",
    ) -> None:
        """Initialize the store.

        Args:
            urls: Targets to track. Fixed for the lifetime of the store.
            timespans: Window durations (seconds) metrics are computed for.
            alert_timespan: Window whose availability drives alerts. Added to
                timespans if missing. None disables alerting.
            alert_threshold: Availability below which a target is down.
            max_samples: Maximum samples retained per target.
            max_age: Maximum age (seconds) of retained samples.
            max_alerts: Maximum alerts retained per target.
            history_length: Number of past average response times kept.
            window_method: Window selection method, see window.start_index_for.
        """
        spans = set(timespans)
        if alert_timespan is not None:
            spans.add(alert_timespan)
        self._timespans = tuple(sorted(spans))
        self.alert_timespan = alert_timespan
        self.alert_threshold = alert_threshold
        self._window_method = window_method
        self._listeners: list[Callable[[Alert], None]] = []
        self._sequence_lock = threading.Lock()

        self._targets: dict[str, TargetState] = {}
        for url in urls:
            if url in self._targets:
                raise ValueError(f"Duplicate target url: {url}")
            self._targets[url] = TargetState(
                url=url,
                log=SampleLog(max_samples=max_samples, max_age=max_age),
                engine=AlertEngine(url, alert_threshold),
                alerts=deque(maxlen=max_alerts),
                history={span: deque(maxlen=history_length) for span in self._timespans},
            )

    def _get(self, url: str) -> TargetState:
        try:
            return self._targets[url]
        except KeyError:
            raise UnknownTargetError(url) from None

    def _check_timespan(self, timespan: int) -> None:
        if timespan not in self._timespans:
            raise UnknownTimespanError(timespan)

    def targets(self) -> list[str]:
        """Return the configured target urls in configuration order."""
        return list(self._targets)

    def timespans(self) -> tuple[int, ...]:
        """Return the configured window durations, shortest first."""
        return self._timespans

    def add_alert_listener(self, callback: Callable[[Alert], None]) -> None:
        """Register a callback invoked for every alert, outside of any lock."""
        self._listeners.append(callback)

    def append_sample(self, url: str, sample: Sample) -> None:
        """Record a probe result for a target.

        Raises:
            UnknownTargetError: If url is not a configured target.
        """
        target = self._get(url)
        with target.lock.write_locked():
            target.log.append(sample)

    def refresh_metrics(self, url: str, timespan: int, now: datetime | None = None) -> Metric:
        """Recompute the metric of one target for one window.

        The samples are copied under the read lock and aggregated without
        holding any lock. The result then replaces the stored metric under
        the write lock, together with the alert evaluation when timespan is
        the alerting window. A result computed from an older snapshot than
        the stored one is discarded. Snapshots are numbered per target, so
        the wall clock stepping backwards never freezes the metrics.

        Raises:
            UnknownTargetError: If url is not a configured target.
            UnknownTimespanError: If timespan is not a configured window.
        """
        target = self._get(url)
        self._check_timespan(timespan)
        now = now or datetime.now(UTC)

        with target.lock.read_locked():
            samples = target.log.snapshot()
            with self._sequence_lock:
                target.snapshots += 1
                generation = target.snapshots

        start = start_index_for(samples, timespan, now=now, method=self._window_method)
        metric = aggregate(samples, start, timespan=timespan, computed_at=now)

        alert: Alert | None = None
        with target.lock.write_locked():
            current = target.metrics.get(timespan)
            if current is not None and target.generations[timespan] > generation:
                logger.debug("Discarding stale %ds metric for %s", timespan, url)
                return current

            target.metrics[timespan] = metric
            target.generations[timespan] = generation
            if metric.has_data:
                target.history[timespan].append(metric.average.response)

            if timespan == self.alert_timespan:
                alert = target.engine.evaluate(metric.availability, timeframe_end=now)
                if alert is not None:
                    target.alerts.append(alert)

        if alert is not None:
            self._notify(alert)
        return metric

    def _notify(self, alert: Alert) -> None:
        for listener in self._listeners:
            try:
                listener(alert)
            except Exception as e:
                logger.error("Alert listener failed for %s: %s", alert.url, e)

    def query(self, url: str, timespan: int) -> QueryResult:
        """Return the latest metric, alert history and response history of a target.

        All three are read under one lock acquisition, so the alerts and the
        history always match the evaluation that produced the metric. metric is None until the
        first refresh for that window.

        Raises:
            UnknownTargetError: If url is not a configured target.
            UnknownTimespanError: If timespan is not a configured window.
        """
        target = self._get(url)
        self._check_timespan(timespan)
        with target.lock.read_locked():
            return QueryResult(
                target.metrics.get(timespan),
                tuple(target.alerts),
                tuple(target.history[timespan]),
            )

    def alerts(self, url: str) -> tuple[Alert, ...]:
        target = self._get(url)
        with target.lock.read_locked():
            return tuple(target.alerts)

    def response_history(self, url: str, timespan: int) -> list[float]:
        """Return past average response times (ms) for a window, oldest first."""
        target = self._get(url)
        self._check_timespan(timespan)
        with target.lock.read_locked():
            return list(target.history[timespan])

    def samples(self, url: str) -> tuple[Sample, ...]:
        target = self._get(url)
        with target.lock.read_locked():
            return target.log.snapshot()

    def sample_count(self, url: str) -> int:
        target = self._get(url)
        with target.lock.read_locked():
            return len(target.log)

    def is_down(self, url: str) -> bool:
        target = self._get(url)
        with target.lock.read_locked():
            return target.engine.is_down
