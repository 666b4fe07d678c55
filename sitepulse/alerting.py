"""Hysteresis state machine turning availability into up/down alerts."""

import logging
from datetime import UTC, datetime
from enum import Enum

from .models import Alert

logger = logging.getLogger(__name__)


class AlertState(Enum):
    UP = "up"
    DOWN = "down"


def transition(state: AlertState, availability: float | None, threshold: float) -> tuple[AlertState, bool]:
    """Apply one availability reading to the alert state.

    A target goes down when availability drops strictly below the threshold
    and recovers once it is back at or above it. Only those two edges emit;
    a reading that keeps the current state, or a missing reading (empty
    window), changes nothing.

    Returns:
        Tuple of (new_state, emitted).
    """
    if availability is None:
        return state, False
    if state is AlertState.UP and availability < threshold:
        return AlertState.DOWN, True
    if state is AlertState.DOWN and availability >= threshold:
        return AlertState.UP, True
    return state, False


class AlertEngine:
    """Alert state of a single target.

    Starts UP, so a target that is already failing only alerts once its
    availability is seen below the threshold.
    """

    def __init__(self, url: str, threshold: float) -> None:
        self.url = url
        self.threshold = threshold
        self.state = AlertState.UP

    @property
    def is_down(self) -> bool:
        return self.state is AlertState.DOWN

    def evaluate(self, availability: float | None, timeframe_end: datetime | None = None) -> Alert | None:
        """Feed one availability reading, returning an Alert on a transition."""
        self.state, emitted = transition(self.state, availability, self.threshold)
        if not emitted:
            return None

        alert = Alert(
            url=self.url,
            availability=availability,
            is_down=self.is_down,
            timeframe_end=timeframe_end or datetime.now(UTC),
        )
        if alert.is_down:
            logger.warning("%s is down (availability %.2f%%)", self.url, availability * 100)
        else:
            logger.info("%s recovered (availability %.2f%%)", self.url, availability * 100)
        return alert
