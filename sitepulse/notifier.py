"""Webhook delivery of up/down alerts."""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor

import requests

from .config import WebhookConfig
from .models import Alert

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Posts alerts to the configured webhooks.

    Registered as a Store alert listener. Calling the notifier only queues
    the alert: delivery, retries included, runs on a single background
    worker, so a failing webhook never holds up the aggregation thread that
    raised the alert. One worker keeps alerts in the order they were raised.
    """

    def __init__(self, webhooks: list[WebhookConfig], max_retries: int = 3, retry_delay: int = 2, timeout: int = 10):
        """Initialize notifier with configuration.

        Args:
            webhooks: Webhooks to notify.
            max_retries: Maximum number of retry attempts for failed webhooks.
            retry_delay: Base delay in seconds between retries (increases exponentially).
            timeout: Request timeout in seconds.
        """
        self._webhooks = webhooks
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webhook")

    def __call__(self, alert: Alert) -> Future:
        return self._executor.submit(self._deliver, alert)

    def close(self, wait: bool = True) -> None:
        """Stop the delivery worker.

        Args:
            wait: Finish queued deliveries first. When False, pending alerts
                are dropped and only the delivery in progress completes.
        """
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def _deliver(self, alert: Alert) -> None:
        try:
            self.notify(alert)
        except Exception:
            logger.exception("Alert delivery failed for %s", alert.url)

    def notify(self, alert: Alert) -> None:
        """Send an alert to every enabled webhook subscribed to its event type.

        Blocks until every webhook accepted the alert or ran out of retries.
        """
        for webhook in self._webhooks:
            if not webhook.enabled:
                continue
            if alert.is_down and not webhook.on_failure:
                continue
            if not alert.is_down and not webhook.on_recovery:
                continue
            self._send_webhook(webhook, alert)

    def _send_webhook(self, webhook: WebhookConfig, alert: Alert) -> bool:
        """Send a webhook alert (with retries).

        Returns:
            True if the webhook accepted the alert.
        """
        payload = build_payload(alert)
        retry_count = 0

        while retry_count <= self._max_retries:
            try:
                response = requests.post(webhook.url, json=payload, timeout=self._timeout)
                response.raise_for_status()

                logger.info("Webhook sent successfully for %s to %s", alert.url, webhook.url)
                return True

            except requests.RequestException as e:
                retry_count += 1
                if retry_count <= self._max_retries:
                    delay = self._retry_delay * (2 ** (retry_count - 1))
                    logger.warning(
                        "Webhook failed for %s (attempt %d/%d, retrying in %ds): %s",
                        alert.url,
                        retry_count,
                        self._max_retries + 1,
                        delay,
                        e,
                    )
                    time.sleep(delay)
                else:
                    logger.error("Webhook failed for %s after %d attempts: %s", alert.url, retry_count, e)

        return False


def build_payload(alert: Alert) -> dict:
    """Build the webhook payload for an alert."""
    return {
        "event": "target_down" if alert.is_down else "target_up",
        "url": alert.url,
        "availability": round(alert.availability, 4),
        "timeframe_end": alert.timeframe_end.isoformat(),
    }
