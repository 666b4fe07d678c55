"""Tests for the concurrent store."""

import threading
import time
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from sitepulse.aggregator import aggregate
from sitepulse.models import Alert, Metric, Sample
from sitepulse.store import ReadWriteLock, Store, UnknownTargetError, UnknownTimespanError

URL_A = "https://a.example.com"
URL_B = "https://b.example.com"


def _now() -> datetime:
    return datetime.now(UTC)


def _ok(seconds_ago: float = 0, ttfb_ms: float = 100) -> Sample:
    return Sample(timestamp=_now() - timedelta(seconds=seconds_ago), status_code=200, ttfb_ms=ttfb_ms)


def _fail(seconds_ago: float = 0) -> Sample:
    return Sample.failure("timeout", timestamp=_now() - timedelta(seconds=seconds_ago))


@pytest.fixture
def store() -> Store:
    return Store([URL_A, URL_B], timespans=[60, 600], alert_timespan=60, alert_threshold=0.9)


class TestStoreSetup:
    """Tests for construction and introspection."""

    def test_targets_in_order(self, store: Store) -> None:
        assert store.targets() == [URL_A, URL_B]

    def test_timespans_sorted_and_include_alert_window(self) -> None:
        store = Store([URL_A], timespans=[600, 120], alert_timespan=30)
        assert store.timespans() == (30, 120, 600)

    def test_duplicate_url_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            Store([URL_A, URL_A], timespans=[60])

    def test_unknown_target_fails_fast(self, store: Store) -> None:
        with pytest.raises(UnknownTargetError):
            store.append_sample("https://nope.example.com", _ok())
        with pytest.raises(UnknownTargetError):
            store.query("https://nope.example.com", 60)

    def test_unknown_target_is_key_error(self) -> None:
        assert issubclass(UnknownTargetError, KeyError)

    def test_unknown_timespan(self, store: Store) -> None:
        with pytest.raises(UnknownTimespanError):
            store.refresh_metrics(URL_A, 42)
        with pytest.raises(UnknownTimespanError):
            store.query(URL_A, 42)


class TestAppendAndRefresh:
    """Tests for the write path."""

    def test_query_before_refresh_has_no_metric(self, store: Store) -> None:
        metric, alerts, _ = store.query(URL_A, 60)
        assert metric is None
        assert alerts == ()

    def test_refresh_computes_window(self, store: Store) -> None:
        store.append_sample(URL_A, _ok(seconds_ago=300))
        store.append_sample(URL_A, _ok(seconds_ago=30))
        store.append_sample(URL_A, _fail(seconds_ago=10))

        store.refresh_metrics(URL_A, 60)
        store.refresh_metrics(URL_A, 600)

        short, _, _ = store.query(URL_A, 60)
        long, _, _ = store.query(URL_A, 600)
        assert short.sample_count == 2
        assert short.availability == 0.5
        assert long.sample_count == 3
        assert long.availability == pytest.approx(2 / 3)

    def test_targets_are_independent(self, store: Store) -> None:
        store.append_sample(URL_A, _fail())
        store.refresh_metrics(URL_A, 60)
        store.refresh_metrics(URL_B, 60)

        assert store.query(URL_A, 60).metric.availability == 0.0
        assert store.query(URL_B, 60).metric.availability is None
        assert store.sample_count(URL_B) == 0

    def test_empty_window_reports_no_data(self, store: Store) -> None:
        store.append_sample(URL_A, _ok(seconds_ago=3000))
        metric = store.refresh_metrics(URL_A, 60)
        assert metric.sample_count == 0
        assert not metric.has_data

    def test_retention_applied_on_append(self) -> None:
        store = Store([URL_A], timespans=[60], max_samples=5)
        for i in range(10, 0, -1):
            store.append_sample(URL_A, _ok(seconds_ago=i))
        assert store.sample_count(URL_A) == 5

    def test_stale_refresh_discarded(self, store: Store) -> None:
        """A refresh finishing after a newer one keeps the newer metric."""
        store.append_sample(URL_A, _ok(seconds_ago=5))
        newer: list[Metric] = []
        interleave = threading.Event()

        def interleaved(*args: Any, **kwargs: Any) -> Metric:
            if not interleave.is_set():
                interleave.set()
                store.append_sample(URL_A, _fail(seconds_ago=1))
                newer.append(store.refresh_metrics(URL_A, 60))
            return aggregate(*args, **kwargs)

        with patch("sitepulse.store.aggregate", side_effect=interleaved):
            older = store.refresh_metrics(URL_A, 60)

        assert older is newer[0]
        assert older.sample_count == 2
        assert store.query(URL_A, 60).metric is newer[0]

    def test_clock_stepping_back_keeps_refreshing(self, store: Store) -> None:
        t0 = _now()
        store.append_sample(URL_A, Sample(timestamp=t0, status_code=200))
        first = store.refresh_metrics(URL_A, 60, now=t0 + timedelta(seconds=1))

        rewound = t0 - timedelta(minutes=5)
        store.append_sample(URL_A, Sample.failure("timeout", timestamp=rewound))
        second = store.refresh_metrics(URL_A, 60, now=rewound + timedelta(seconds=1))

        assert second is not first
        assert second.sample_count == 2
        assert store.query(URL_A, 60).metric is second
        assert [a.is_down for a in store.alerts(URL_A)] == [True]

    def test_query_includes_matching_history(self, store: Store) -> None:
        store.append_sample(URL_A, _ok(seconds_ago=5, ttfb_ms=100))
        store.refresh_metrics(URL_A, 60)
        store.append_sample(URL_A, _ok(seconds_ago=1, ttfb_ms=300))
        metric = store.refresh_metrics(URL_A, 60)

        result = store.query(URL_A, 60)
        assert result.response_history == (100, 200)
        assert result.response_history[-1] == metric.average.response

    def test_naive_sample_accepted(self, store: Store) -> None:
        store.append_sample(URL_A, _ok(seconds_ago=10))
        naive = (_now() - timedelta(seconds=5)).replace(tzinfo=None)
        store.append_sample(URL_A, Sample(timestamp=naive, status_code=200))
        store.append_sample(URL_A, _ok(seconds_ago=1))

        assert store.sample_count(URL_A) == 3
        assert store.refresh_metrics(URL_A, 60).sample_count == 3

    def test_response_history(self, store: Store) -> None:
        store.append_sample(URL_A, _ok(seconds_ago=5, ttfb_ms=100))
        store.refresh_metrics(URL_A, 60)
        store.append_sample(URL_A, _ok(seconds_ago=1, ttfb_ms=300))
        store.refresh_metrics(URL_A, 60)
        assert store.response_history(URL_A, 60) == [100, 200]

    def test_response_history_skips_empty_windows(self, store: Store) -> None:
        store.refresh_metrics(URL_A, 60)
        assert store.response_history(URL_A, 60) == []

    def test_samples_returns_copy(self, store: Store) -> None:
        store.append_sample(URL_A, _ok())
        samples = store.samples(URL_A)
        store.append_sample(URL_A, _ok())
        assert len(samples) == 1


class TestAlerts:
    """Tests for alert evaluation through the store."""

    def test_alert_on_alert_window_only(self, store: Store) -> None:
        store.append_sample(URL_A, _fail(seconds_ago=1))

        store.refresh_metrics(URL_A, 600)
        assert store.alerts(URL_A) == ()

        store.refresh_metrics(URL_A, 60)
        alerts = store.alerts(URL_A)
        assert len(alerts) == 1
        assert alerts[0].is_down
        assert store.is_down(URL_A)

    def test_hysteresis_through_store(self, store: Store) -> None:
        store.append_sample(URL_A, _fail(seconds_ago=1))
        store.refresh_metrics(URL_A, 60)
        store.refresh_metrics(URL_A, 60)
        assert len(store.alerts(URL_A)) == 1

    def test_recovery(self) -> None:
        store = Store([URL_A], timespans=[60], alert_timespan=60, alert_threshold=0.5)
        store.append_sample(URL_A, _fail(seconds_ago=2))
        store.refresh_metrics(URL_A, 60)
        store.append_sample(URL_A, _ok(seconds_ago=1))
        store.refresh_metrics(URL_A, 60)

        alerts = store.query(URL_A, 60).alerts
        assert [a.is_down for a in alerts] == [True, False]

    def test_query_metric_and_alerts_consistent(self, store: Store) -> None:
        store.append_sample(URL_A, _fail(seconds_ago=1))
        metric = store.refresh_metrics(URL_A, 60)
        result = store.query(URL_A, 60)
        assert result.metric is metric
        assert result.alerts[-1].timeframe_end == metric.computed_at

    def test_alert_history_bounded(self) -> None:
        store = Store([URL_A], timespans=[60], alert_timespan=60, alert_threshold=0.5, max_alerts=2)
        base = _now()
        for i in range(3):
            cycle = base + timedelta(seconds=i * 100)
            store.append_sample(URL_A, Sample.failure("timeout", timestamp=cycle))
            store.refresh_metrics(URL_A, 60, now=cycle + timedelta(seconds=1))
            store.append_sample(URL_A, Sample(timestamp=cycle + timedelta(seconds=30), status_code=200))
            store.refresh_metrics(URL_A, 60, now=cycle + timedelta(seconds=31))

        alerts = store.alerts(URL_A)
        assert len(alerts) == 2
        assert [a.is_down for a in alerts] == [True, False]
        assert alerts[-1].timeframe_end == base + timedelta(seconds=231)

    def test_no_alert_timespan_disables_alerting(self) -> None:
        store = Store([URL_A], timespans=[60])
        store.append_sample(URL_A, _fail())
        store.refresh_metrics(URL_A, 60)
        assert store.alerts(URL_A) == ()

    def test_listener_called(self, store: Store) -> None:
        listener = MagicMock()
        store.add_alert_listener(listener)
        store.append_sample(URL_A, _fail())
        store.refresh_metrics(URL_A, 60)

        listener.assert_called_once()
        alert = listener.call_args[0][0]
        assert isinstance(alert, Alert)
        assert alert.url == URL_A

    def test_failing_listener_does_not_break_refresh(self, store: Store) -> None:
        failing = MagicMock(side_effect=RuntimeError("boom"))
        second = MagicMock()
        store.add_alert_listener(failing)
        store.add_alert_listener(second)
        store.append_sample(URL_A, _fail())

        store.refresh_metrics(URL_A, 60)

        second.assert_called_once()
        assert len(store.alerts(URL_A)) == 1


class TestConcurrency:
    """Tests for the locking discipline."""

    def test_concurrent_appends_are_not_lost(self) -> None:
        store = Store([URL_A], timespans=[600])
        threads_count, per_thread = 8, 250

        def writer() -> None:
            for _ in range(per_thread):
                store.append_sample(URL_A, _ok())

        threads = [threading.Thread(target=writer) for _ in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        metric = store.refresh_metrics(URL_A, 600)
        assert store.sample_count(URL_A) == threads_count * per_thread
        assert metric.sample_count == threads_count * per_thread

    def test_readers_see_monotonic_counts_during_writes(self) -> None:
        store = Store([URL_A], timespans=[600])
        stop = threading.Event()
        observed: list[int] = []

        def reader() -> None:
            while not stop.is_set():
                observed.append(store.refresh_metrics(URL_A, 600).sample_count)

        reader_thread = threading.Thread(target=reader)
        reader_thread.start()
        for _ in range(500):
            store.append_sample(URL_A, _ok())
        stop.set()
        reader_thread.join()

        assert observed == sorted(observed)
        assert store.refresh_metrics(URL_A, 600).sample_count == 500

    def test_slow_reader_does_not_block_other_target(self) -> None:
        store = Store([URL_A, URL_B], timespans=[60])
        lock_a = store._targets[URL_A].lock
        lock_a.acquire_write()
        try:
            started = time.monotonic()
            store.append_sample(URL_B, _ok())
            store.refresh_metrics(URL_B, 60)
            assert time.monotonic() - started < 1.0
        finally:
            lock_a.release_write()


class TestReadWriteLock:
    """Tests for the read/write lock."""

    def test_multiple_readers(self) -> None:
        lock = ReadWriteLock()
        lock.acquire_read()
        acquired = threading.Event()

        def second_reader() -> None:
            with lock.read_locked():
                acquired.set()

        t = threading.Thread(target=second_reader)
        t.start()
        assert acquired.wait(timeout=2.0)
        t.join()
        lock.release_read()

    def test_writer_excludes_readers(self) -> None:
        lock = ReadWriteLock()
        lock.acquire_write()
        acquired = threading.Event()

        def reader() -> None:
            with lock.read_locked():
                acquired.set()

        t = threading.Thread(target=reader)
        t.start()
        assert not acquired.wait(timeout=0.2)
        lock.release_write()
        assert acquired.wait(timeout=2.0)
        t.join()

    def test_reader_excludes_writer(self) -> None:
        lock = ReadWriteLock()
        lock.acquire_read()
        acquired = threading.Event()

        def writer() -> None:
            with lock.write_locked():
                acquired.set()

        t = threading.Thread(target=writer)
        t.start()
        assert not acquired.wait(timeout=0.2)
        lock.release_read()
        assert acquired.wait(timeout=2.0)
        t.join()
