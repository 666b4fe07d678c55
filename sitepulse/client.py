"""Terminal dashboard client for a running sitepulse daemon.

Queries the daemon's JSON API and renders the aggregated metrics as plain
text, one block per target and configured window.
"""

import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)

# Column headers of the request breakdown table, in phase order.
BREAKDOWN_COLUMNS = ("DNS", "TCP", "TLS", "Srv Process", "TTFB", "Transfer", "Response")
BREAKDOWN_PHASES = ("dns", "connect", "tls", "processing", "ttfb", "transfer", "response")

# Number of error lines and alerts shown per block.
MAX_ERRORS_SHOWN = 5
MAX_ALERTS_SHOWN = 5

BAR_WIDTH = 30


class ClientError(Exception):
    """Raised when the daemon cannot be queried."""

    pass


class RemoteClient:
    """Small requests-based client for the query API."""

    def __init__(self, base_url: str, timeout: float = 5.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()

    def _get(self, path: str, params: dict | None = None) -> dict[str, Any]:
        try:
            response = self._session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ClientError(f"Cannot reach {self.base_url}: {e}") from e

        if response.status_code != 200:
            try:
                message = response.json().get("error", response.reason)
            except ValueError:
                message = response.reason
            raise ClientError(f"{path} failed with HTTP {response.status_code}: {message}")

        return response.json()

    def targets(self) -> dict[str, Any]:
        """Return the configured targets and timespans."""
        return self._get("/targets")

    def query(self, url: str, timespan: int) -> dict[str, Any]:
        """Return the metric, alerts and response history of one target."""
        return self._get("/query", params={"url": url, "timespan": timespan})

    def close(self) -> None:
        self._session.close()


def format_duration(ms: float) -> str:
    """Format a duration in milliseconds for a table cell."""
    if ms >= 1000:
        return f"{ms / 1000:.2f}s"
    return f"{ms:.0f}ms"


def format_availability(availability: float | None) -> str:
    """Render availability as a percentage with a text gauge."""
    if availability is None:
        return "no data"
    filled = int(round(availability * BAR_WIDTH))
    return f"[{'#' * filled}{'.' * (BAR_WIDTH - filled)}] {availability * 100:.1f}%"


def format_breakdown(metric: dict[str, Any]) -> list[str]:
    """Render the average/max breakdown table."""
    widths = [max(len(c), 8) for c in BREAKDOWN_COLUMNS]
    header = "     " + " ".join(c.rjust(w) for c, w in zip(BREAKDOWN_COLUMNS, widths))
    lines = [header]
    for label, key in (("Avg", "average"), ("Max", "max")):
        values = metric.get(key, {})
        cells = [format_duration(values.get(phase, 0.0)).rjust(w) for phase, w in zip(BREAKDOWN_PHASES, widths)]
        lines.append(f"{label:<4} " + " ".join(cells))
    return lines


def response_counts(metric: dict[str, Any]) -> list[tuple[str, int]]:
    """Return (label, count) pairs: status codes by code, then all errors as 'err'."""
    counts = [(code, count) for code, count in sorted(metric.get("status_codes", {}).items(), key=lambda i: int(i[0]))]
    counts.append(("err", sum(e["count"] for e in metric.get("errors", []))))
    return counts


def format_history(history: list[float]) -> str:
    """Render the average response time evolution as a one-line sparkline."""
    if not history:
        return "-"
    ticks = " .:-=+*#%@"
    top = max(history) or 1.0
    line = "".join(ticks[min(int(v / top * (len(ticks) - 1)), len(ticks) - 1)] for v in history)
    return f"{line}  (last {format_duration(history[-1])})"


def render_block(url: str, timespan: int, frequency: int | None, result: dict[str, Any]) -> list[str]:
    """Render one target/window block of the dashboard."""
    title = f"{url} - aggregated over {timespan}s"
    if frequency is not None:
        title += f" (refreshed every {frequency}s)"
    lines = [title, "=" * len(title)]

    metric = result.get("metric")
    if metric is None:
        lines.append("Waiting for first aggregation...")
        return lines

    lines.append(f"Availability  {format_availability(metric.get('availability'))}  ({metric['sample_count']} samples)")
    lines.append("")
    lines.extend(format_breakdown(metric))
    lines.append("")

    codes = "  ".join(f"{label}: {count}" for label, count in response_counts(metric))
    lines.append(f"Response codes  {codes}")
    lines.append(f"Response time   {format_history(result.get('response_history', []))}")

    errors = metric.get("errors", [])
    if errors:
        lines.append("Latest errors")
        for entry in errors[:MAX_ERRORS_SHOWN]:
            lines.append(f"  {entry['error']} ({entry['count']} times)")

    alerts = result.get("alerts", [])
    if alerts:
        lines.append("Alerts")
        for alert in alerts[-MAX_ALERTS_SHOWN:]:
            state = "DOWN" if alert["is_down"] else "UP"
            lines.append(
                f"  {alert['timeframe_end']}  {state}  availability {alert['availability'] * 100:.1f}%"
            )
    return lines


def render_dashboard(client: RemoteClient, frequencies: dict[int, int] | None = None) -> str:
    """Query every target and window and render the whole dashboard.

    Args:
        client: Client connected to the daemon.
        frequencies: Optional timespan -> refresh frequency, shown in titles.

    Raises:
        ClientError: If the daemon cannot be queried.
    """
    frequencies = frequencies or {}
    info = client.targets()
    blocks: list[str] = []
    for url in info["targets"]:
        for timespan in info["timespans"]:
            result = client.query(url, timespan)
            blocks.append("\n".join(render_block(url, timespan, frequencies.get(timespan), result)))
    return "\n\n".join(blocks)
