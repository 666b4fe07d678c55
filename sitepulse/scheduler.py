"""Background threads that poll targets and refresh aggregated metrics."""

import logging
import time
from collections.abc import Callable, Iterable
from threading import Event, Thread

from .models import Sample
from .store import Store

logger = logging.getLogger(__name__)

Probe = Callable[[str], Sample]


class _Ticker:
    """Set of daemon threads running a callback on a fixed interval.

    Each thread measures its interval from the start of the tick, so a slow
    callback shortens the next wait instead of delaying every later tick.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._stop_event = Event()
        self._threads: list[Thread] = []

    def _spawn(self, thread_name: str, interval: float, tick: Callable[[], None]) -> None:
        thread = Thread(
            target=self._run,
            args=(interval, tick),
            daemon=True,
            name=thread_name,
        )
        self._threads.append(thread)
        thread.start()

    def _run(self, interval: float, tick: Callable[[], None]) -> None:
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                tick()
            except Exception as e:
                logger.exception("%s tick failed: %s", self._name, e)
            elapsed = time.monotonic() - started
            self._stop_event.wait(timeout=max(interval - elapsed, 0.0))

    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def stop(self, timeout: float = 10.0) -> None:
        """Signal all threads to stop and wait for them.

        Args:
            timeout: Maximum seconds to wait for each thread.
        """
        if not self._threads:
            return

        logger.info("Stopping %s...", self._name)
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("%s did not stop within timeout", thread.name)
        self._threads = []
        logger.info("%s stopped", self._name)


class PollScheduler(_Ticker):
    """Polls every target of a store from its own thread.

    A hung probe only holds up its own target. Probe failures are recorded
    as error samples, never retried.

    Example:
        scheduler = PollScheduler(store, HttpProbe(timeout=10), interval=5)
        scheduler.start()
        # ... later ...
        scheduler.stop()
    """

    def __init__(self, store: Store, probe: Probe, interval: float) -> None:
        super().__init__("poll scheduler")
        if interval <= 0:
            raise ValueError(f"Poll interval must be positive (got {interval})")
        self._store = store
        self._probe = probe
        self._interval = interval

    def start(self) -> None:
        """Start one polling thread per target."""
        if self.is_running():
            logger.warning("Poll scheduler already running")
            return

        self._stop_event.clear()
        for url in self._store.targets():
            self._spawn(f"poll-{url}", self._interval, lambda url=url: self.poll_once(url))
        logger.info("Polling %d targets every %ss", len(self._store.targets()), self._interval)

    def poll_once(self, url: str) -> Sample:
        """Probe a target once and record the result."""
        try:
            sample = self._probe(url)
        except Exception as e:
            logger.error("Probe for %s raised: %s", url, e)
            sample = Sample.failure(f"probe error: {e}")

        self._store.append_sample(url, sample)
        logger.debug(
            "%s: %s (%.0fms)",
            url,
            sample.status_code or sample.error,
            sample.response_ms,
        )
        return sample


class AggregationScheduler(_Ticker):
    """Refreshes store metrics, one thread per (timespan, frequency) rule."""

    def __init__(self, store: Store, rules: Iterable[tuple[int, float]]) -> None:
        super().__init__("aggregation scheduler")
        self._store = store
        self._rules = list(rules)
        for timespan, frequency in self._rules:
            if frequency <= 0:
                raise ValueError(f"Refresh frequency must be positive (got {frequency} for {timespan}s)")

    @property
    def rules(self) -> list[tuple[int, float]]:
        return list(self._rules)

    def start(self) -> None:
        """Start one refresh thread per rule."""
        if self.is_running():
            logger.warning("Aggregation scheduler already running")
            return

        self._stop_event.clear()
        for timespan, frequency in self._rules:
            self._spawn(
                f"aggregate-{timespan}s",
                frequency,
                lambda timespan=timespan: self.refresh_once(timespan),
            )
        logger.info("Aggregating %d windows", len(self._rules))

    def refresh_once(self, timespan: int) -> None:
        """Refresh the metric of every target for one window."""
        for url in self._store.targets():
            try:
                self._store.refresh_metrics(url, timespan)
            except Exception as e:
                logger.error("Failed to aggregate %ds window for %s: %s", timespan, url, e)


def merge_rules(rules: Iterable[tuple[int, float]]) -> list[tuple[int, float]]:
    """Collapse rules sharing a timespan, keeping the highest refresh rate.

    Two threads refreshing the same window would otherwise evaluate the
    alert state of that window twice per cycle.
    """
    merged: dict[int, float] = {}
    for timespan, frequency in rules:
        merged[timespan] = min(frequency, merged.get(timespan, frequency))
    return sorted(merged.items())
