"""sitepulse - Website availability and latency monitor."""

import argparse
import logging
import signal
import sys
import time
from threading import Event
from typing import Optional

__version__ = "0.1.0"

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - start the monitoring daemon."""
    global _shutdown_event

    _setup_logging(args.verbose)

    logger.info("sitepulse %s starting...", __version__)

    # Import here to allow logging setup first
    from .api import ApiError, ApiServer
    from .config import ConfigError, load_config
    from .notifier import WebhookNotifier
    from .probe import HttpProbe
    from .scheduler import AggregationScheduler, PollScheduler, merge_rules
    from .store import Store

    # 1. Load configuration
    try:
        config = load_config(args.config)
        logger.info("Configuration loaded from %s", args.config)
        logger.info("Monitoring %d targets at %ds interval", len(config.targets), config.monitor.interval)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    # 2. Build the shared store
    store = Store(
        config.urls,
        timespans=config.timespans,
        alert_timespan=config.alerts.timespan,
        alert_threshold=config.alerts.threshold,
        max_samples=config.retention.max_samples,
        max_age=config.retention.max_age,
        window_method=config.monitor.window_method,
    )
    notifier: Optional[WebhookNotifier] = None
    if config.alerts.webhooks:
        notifier = WebhookNotifier(config.alerts.webhooks)
        store.add_alert_listener(notifier)
        logger.info("Alerts configured with %d webhook(s)", len(config.alerts.webhooks))

    # 3. Setup shutdown handler
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    # 4. Start components
    poller = PollScheduler(store, HttpProbe(timeout=config.monitor.timeout), config.monitor.interval)
    aggregator = AggregationScheduler(store, merge_rules(config.aggregation_rules))
    api_server: Optional[ApiServer] = None

    try:
        poller.start()
        aggregator.start()

        if config.api.enabled:
            try:
                api_server = ApiServer(config.api, store)
                api_server.start()
            except ApiError as e:
                logger.error("Failed to start API server: %s", e)
                logger.warning("Continuing without API server")
                api_server = None

        logger.info("All components started, waiting for shutdown signal...")

        # 5. Wait for shutdown signal
        _shutdown_event.wait()

    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    finally:
        # 6. Cleanup - stop all components
        logger.info("Shutting down components...")

        poller.stop()
        aggregator.stop()

        if api_server is not None:
            api_server.stop()

        if notifier is not None:
            notifier.close(wait=False)

        logger.info("Shutdown complete")


def _cmd_show(args: argparse.Namespace) -> None:
    """Execute the show command - render the dashboard of a running daemon."""
    from .client import ClientError, RemoteClient, render_dashboard
    from .config import ConfigError, load_config

    base_url = args.url
    frequencies: dict[int, int] = {}
    try:
        config = load_config(args.config)
    except ConfigError as e:
        if base_url is None:
            print(f"Error: {e}")
            sys.exit(1)
    else:
        if base_url is None:
            base_url = f"http://{config.api.host}:{config.api.port}"
        frequencies = {w.timespan: w.frequency for w in config.dashboard}
        frequencies.setdefault(config.alerts.timespan, config.alerts.frequency)

    client = RemoteClient(base_url)
    try:
        while True:
            try:
                output = render_dashboard(client, frequencies)
            except ClientError as e:
                print(f"Error: {e}")
                sys.exit(1)

            if args.refresh:
                # Clear screen and move cursor home
                print("\033[2J\033[H", end="")
            print(output)

            if not args.refresh:
                break
            time.sleep(args.refresh)
    except KeyboardInterrupt:
        pass
    finally:
        client.close()


def _cmd_check(args: argparse.Namespace) -> None:
    """Execute the check command - probe every configured target once."""
    from .config import ConfigError, load_config
    from .probe import HttpProbe

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    probe = HttpProbe(timeout=config.monitor.timeout)
    failures = 0
    for url in config.urls:
        sample = probe(url)
        if sample.is_valid:
            status = f"✓ {sample.status_code}"
        else:
            failures += 1
            status = f"✗ {sample.status_code or sample.error}"
        print(
            f"{status}: {url} (dns {sample.dns_ms:.0f}ms, connect {sample.connect_ms:.0f}ms, "
            f"tls {sample.tls_ms:.0f}ms, ttfb {sample.ttfb_ms:.0f}ms, total {sample.response_ms:.0f}ms)"
        )

    print(f"\nResult: {len(config.urls) - failures}/{len(config.urls)} targets up")
    if failures:
        sys.exit(1)


def main() -> None:
    """Main entry point for the sitepulse package."""
    parser = argparse.ArgumentParser(description="sitepulse - Website availability and latency monitor")
    parser.add_argument(
        "--version",
        action="version",
        version=f"sitepulse {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Run subcommand (default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Start the monitoring daemon (default)",
    )
    run_parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    run_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    run_parser.set_defaults(func=_cmd_run)

    # Show subcommand
    show_parser = subparsers.add_parser(
        "show",
        help="Show the dashboard of a running daemon",
    )
    show_parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    show_parser.add_argument(
        "--url",
        help="Base URL of the daemon API (default: from config)",
    )
    show_parser.add_argument(
        "--refresh",
        type=int,
        default=0,
        help="Redraw every N seconds (default: render once)",
    )
    show_parser.set_defaults(func=_cmd_show)

    # Check subcommand
    check_parser = subparsers.add_parser(
        "check",
        help="Probe every configured target once",
    )
    check_parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    check_parser.set_defaults(func=_cmd_check)

    args = parser.parse_args()

    # Default to 'run' if no command specified
    if args.command is None:
        args.config = "config.yaml"
        args.verbose = False
        args.func = _cmd_run

    args.func(args)
