"""HTTP API server exposing aggregated metrics and alerts as JSON."""

import errno
import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

from .aggregator import sorted_codes, sorted_errors
from .config import ApiConfig
from .models import Alert, Breakdown, Metric
from .store import Store, UnknownTargetError, UnknownTimespanError

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised when an API operation fails."""
    pass


def _breakdown_to_dict(breakdown: Breakdown) -> Dict[str, float]:
    return {phase: round(value, 3) for phase, value in zip(Breakdown.phases(), breakdown.as_tuple())}


def metric_to_dict(metric: Metric) -> Dict[str, Any]:
    """Convert a Metric to a JSON-serializable dictionary.

    Status codes are keyed by their string form, sorted by code. Errors are
    a list sorted by count descending, then by text.
    """
    return {
        "timespan": metric.timespan,
        "sample_count": metric.sample_count,
        "availability": metric.availability,
        "average": _breakdown_to_dict(metric.average),
        "max": _breakdown_to_dict(metric.max),
        "status_codes": {str(code): count for code, count in sorted_codes(metric.status_code_counts)},
        "errors": [{"error": text, "count": count} for text, count in sorted_errors(metric.error_counts)],
        "computed_at": metric.computed_at.isoformat() if metric.computed_at else None,
    }


def alert_to_dict(alert: Alert) -> Dict[str, Any]:
    """Convert an Alert to a JSON-serializable dictionary."""
    return {
        "url": alert.url,
        "availability": alert.availability,
        "is_down": alert.is_down,
        "timeframe_end": alert.timeframe_end.isoformat(),
    }


def _build_query_response(store: Store, url: str, timespan: int) -> Dict[str, Any]:
    """Build the /query response for one target and window."""
    result = store.query(url, timespan)
    return {
        "url": url,
        "timespan": timespan,
        "metric": metric_to_dict(result.metric) if result.metric is not None else None,
        "alerts": [alert_to_dict(a) for a in result.alerts],
        "response_history": [round(v, 3) for v in result.response_history],
    }


class QueryHandler(BaseHTTPRequestHandler):
    """HTTP request handler for query API endpoints."""

    # Class-level reference set by factory
    store: Optional[Store] = None

    def log_message(self, format: str, *args: Any) -> None:
        """Override to use Python logging instead of stderr."""
        logger.debug("API %s - %s", self.address_string(), format % args)

    def _send_json(self, code: int, data: Dict[str, Any]) -> None:
        """Send a JSON response with the given status code."""
        body = json.dumps(data, indent=2).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def _send_error_json(self, code: int, message: str) -> None:
        """Send a JSON error response."""
        self._send_json(code, {"error": message})

    def do_GET(self) -> None:
        """Handle GET requests."""
        try:
            parsed = urlparse(self.path)
            if parsed.path == "/health":
                self._send_json(200, {"status": "ok"})
            elif parsed.path == "/targets":
                self._handle_targets()
            elif parsed.path == "/query":
                self._handle_query(parse_qs(parsed.query))
            else:
                self._send_error_json(404, "Not found")
        except Exception as e:
            logger.exception("Error handling request: %s", e)
            self._send_error_json(500, "Internal server error")

    def _handle_targets(self) -> None:
        """Handle GET /targets endpoint."""
        if self.store is None:
            self._send_error_json(503, "Store not available")
            return

        self._send_json(
            200,
            {
                "targets": self.store.targets(),
                "timespans": list(self.store.timespans()),
                "alert_timespan": self.store.alert_timespan,
            },
        )

    def _handle_query(self, params: Dict[str, list]) -> None:
        """Handle GET /query?url=<url>&timespan=<seconds> endpoint."""
        if self.store is None:
            self._send_error_json(503, "Store not available")
            return

        url = params.get("url", [""])[0]
        timespan_raw = params.get("timespan", [""])[0]
        if not url:
            self._send_error_json(400, "Query parameter 'url' is required")
            return
        try:
            timespan = int(timespan_raw)
        except ValueError:
            self._send_error_json(400, "Query parameter 'timespan' must be an integer")
            return

        try:
            response = _build_query_response(self.store, url, timespan)
        except UnknownTargetError:
            self._send_error_json(404, f"Target '{url}' not found")
            return
        except UnknownTimespanError:
            self._send_error_json(404, f"Timespan {timespan}s is not configured")
            return

        self._send_json(200, response)


def _create_handler_class(store: Store) -> type:
    """Create a handler class with the store bound."""

    class BoundQueryHandler(QueryHandler):
        pass

    BoundQueryHandler.store = store
    return BoundQueryHandler


class ApiServer:
    """Threaded HTTP server answering metric queries."""

    def __init__(self, config: ApiConfig, store: Store) -> None:
        """Initialize the API server.

        Args:
            config: API configuration.
            store: Store to answer queries from.
        """
        self.config = config
        self.store = store
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._shutdown_event = threading.Event()

    def start(self) -> None:
        """Start the API server in a background thread.

        Raises:
            ApiError: If the server fails to start.
        """
        if self._thread is not None and self._thread.is_alive():
            logger.warning("API server is already running")
            return

        try:
            handler_class = _create_handler_class(self.store)
            self._server = HTTPServer((self.config.host, self.config.port), handler_class)
            self._server.timeout = 1.0  # Allow periodic shutdown checks

            self._shutdown_event.clear()
            self._thread = threading.Thread(
                target=self._serve_forever,
                name="api-server",
                daemon=True,
            )
            self._thread.start()

            logger.info("API server started on %s:%d", self.config.host, self.config.port)

        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                raise ApiError(f"Port {self.config.port} is already in use, is sitepulse already running?") from e
            if e.errno == errno.EACCES:
                raise ApiError(f"Permission denied for port {self.config.port} (ports below 1024 need root)") from e
            raise ApiError(f"Cannot listen on {self.config.host}:{self.config.port}: {e}") from e

    def _serve_forever(self) -> None:
        """Server loop that checks for shutdown."""
        while not self._shutdown_event.is_set():
            if self._server:
                self._server.handle_request()

    def stop(self) -> None:
        """Stop the API server gracefully."""
        if self._thread is None:
            return

        logger.info("Stopping API server...")
        self._shutdown_event.set()

        # handle_request() returns within server.timeout, close afterwards
        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

        if self._server:
            self._server.server_close()

        self._server = None
        self._thread = None
        logger.info("API server stopped")

    @property
    def is_running(self) -> bool:
        """Check if the server is running."""
        return self._thread is not None and self._thread.is_alive()
