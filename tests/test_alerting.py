"""Tests for the alert hysteresis state machine."""

from datetime import UTC, datetime

import pytest

from sitepulse.alerting import AlertEngine, AlertState, transition

NOW = datetime(2026, 1, 17, 12, 0, 0, tzinfo=UTC)


class TestTransition:
    """Tests for the transition function."""

    def test_up_below_threshold_goes_down(self) -> None:
        assert transition(AlertState.UP, 0.5, 0.9) == (AlertState.DOWN, True)

    def test_down_at_threshold_recovers(self) -> None:
        """Recovery uses >=, so exact equality brings the target back up."""
        assert transition(AlertState.DOWN, 0.9, 0.9) == (AlertState.UP, True)

    def test_up_at_threshold_stays_up(self) -> None:
        """Failure uses strict <, so exact equality is not a failure."""
        assert transition(AlertState.UP, 0.9, 0.9) == (AlertState.UP, False)

    def test_down_below_threshold_stays_down(self) -> None:
        assert transition(AlertState.DOWN, 0.2, 0.9) == (AlertState.DOWN, False)

    def test_up_above_threshold_stays_up(self) -> None:
        assert transition(AlertState.UP, 1.0, 0.9) == (AlertState.UP, False)

    @pytest.mark.parametrize("state", [AlertState.UP, AlertState.DOWN])
    def test_no_data_keeps_state(self, state: AlertState) -> None:
        """An empty window neither raises nor recovers an alert."""
        assert transition(state, None, 0.9) == (state, False)


class TestAlertEngine:
    """Tests for the per-target engine."""

    @pytest.fixture
    def engine(self) -> AlertEngine:
        return AlertEngine("https://example.com", threshold=0.9)

    def test_starts_up(self, engine: AlertEngine) -> None:
        assert engine.state is AlertState.UP
        assert not engine.is_down

    def test_edge_triggered_sequence(self, engine: AlertEngine) -> None:
        """[1.0, 0.5, 0.5, 1.0, 1.0] emits one down and one up alert."""
        results = [engine.evaluate(a, timeframe_end=NOW) for a in [1.0, 0.5, 0.5, 1.0, 1.0]]

        assert results[0] is None
        assert results[1] is not None and results[1].is_down
        assert results[2] is None
        assert results[3] is not None and not results[3].is_down
        assert results[4] is None
        assert sum(1 for r in results if r is not None) == 2

    def test_alert_fields(self, engine: AlertEngine) -> None:
        alert = engine.evaluate(0.25, timeframe_end=NOW)
        assert alert is not None
        assert alert.url == "https://example.com"
        assert alert.availability == 0.25
        assert alert.is_down is True
        assert alert.timeframe_end == NOW

    def test_steady_failure_after_start_alerts_once(self, engine: AlertEngine) -> None:
        alerts = [engine.evaluate(0.0) for _ in range(5)]
        assert sum(1 for a in alerts if a is not None) == 1
        assert engine.is_down

    def test_never_below_threshold_never_alerts(self, engine: AlertEngine) -> None:
        assert all(engine.evaluate(a) is None for a in [0.95, 0.9, 1.0, 0.91])

    def test_default_timeframe_end(self, engine: AlertEngine) -> None:
        alert = engine.evaluate(0.1)
        assert alert is not None
        assert alert.timeframe_end.tzinfo is not None

    def test_logs_transitions(self, engine: AlertEngine, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level("INFO", logger="sitepulse.alerting"):
            engine.evaluate(0.5)
            engine.evaluate(1.0)
        assert "is down" in caplog.text
        assert "recovered" in caplog.text
