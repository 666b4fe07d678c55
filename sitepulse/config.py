"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Minimum interval between probes of the same target in seconds.
MIN_POLL_INTERVAL = 1


@dataclass(frozen=True)
class TargetConfig:
    """A single URL to monitor."""

    url: str

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigError("Target URL cannot be empty")
        if not self.url.startswith(("http://", "https://")):
            raise ConfigError(f"Target URL must start with http:// or https://, got '{self.url}'")


@dataclass(frozen=True)
class MonitorConfig:
    """Configuration for the poll loop."""

    interval: int = 5  # seconds between probes of a target
    timeout: int = 10  # seconds before a probe is recorded as failed
    window_method: str = "reverse"  # "reverse" or "bisect", see window.start_index_for

    def __post_init__(self) -> None:
        if self.interval < MIN_POLL_INTERVAL:
            raise ConfigError(f"Poll interval must be at least {MIN_POLL_INTERVAL} second (got {self.interval})")
        if self.timeout < 1:
            raise ConfigError(f"Probe timeout must be at least 1 second (got {self.timeout})")
        if self.window_method not in ("reverse", "bisect"):
            raise ConfigError(f"Invalid window_method '{self.window_method}'. Must be 'reverse' or 'bisect'")


@dataclass(frozen=True)
class WindowConfig:
    """A window aggregated for the dashboard and how often it is refreshed."""

    timespan: int
    frequency: int

    def __post_init__(self) -> None:
        if self.timespan < 1:
            raise ConfigError(f"Window timespan must be at least 1 second (got {self.timespan})")
        if self.frequency < 1:
            raise ConfigError(f"Window frequency must be at least 1 second (got {self.frequency})")


def _default_windows() -> list[WindowConfig]:
    return [WindowConfig(timespan=600, frequency=10), WindowConfig(timespan=3600, frequency=60)]


@dataclass(frozen=True)
class WebhookConfig:
    """Configuration for a single webhook alert."""

    url: str
    enabled: bool = True
    on_failure: bool = True  # Send alert when a target goes DOWN
    on_recovery: bool = True  # Send alert when a target comes back UP

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigError("Webhook URL cannot be empty")
        if not self.url.startswith(("http://", "https://")):
            raise ConfigError(f"Webhook URL must start with http:// or https://, got '{self.url}'")
        if not self.on_failure and not self.on_recovery:
            raise ConfigError("Webhook must have at least one of 'on_failure' or 'on_recovery' enabled")


@dataclass(frozen=True)
class AlertsConfig:
    """Configuration of the availability alert."""

    timespan: int = 120
    frequency: int = 1
    threshold: float = 0.8
    webhooks: list[WebhookConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.timespan < 1:
            raise ConfigError(f"Alert timespan must be at least 1 second (got {self.timespan})")
        if self.frequency < 1:
            raise ConfigError(f"Alert frequency must be at least 1 second (got {self.frequency})")
        if not (0.0 <= self.threshold <= 1.0):
            raise ConfigError(f"Alert threshold must be between 0 and 1 (got {self.threshold})")
        if not isinstance(self.webhooks, list):
            raise ConfigError("Webhooks must be a list")


@dataclass(frozen=True)
class RetentionConfig:
    """Bounds on the samples kept in memory per target."""

    max_samples: int | None = 10000
    max_age: int | None = None  # seconds

    def __post_init__(self) -> None:
        if self.max_samples is not None and self.max_samples < 1:
            raise ConfigError(f"Retention max_samples must be at least 1 (got {self.max_samples})")
        if self.max_age is not None and self.max_age < 1:
            raise ConfigError(f"Retention max_age must be at least 1 second (got {self.max_age})")


@dataclass(frozen=True)
class ApiConfig:
    """Configuration for the JSON query server."""

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080

    def __post_init__(self) -> None:
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"API port must be between 1 and 65535, got {self.port}")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    targets: list[TargetConfig]
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    dashboard: list[WindowConfig] = field(default_factory=_default_windows)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    def __post_init__(self) -> None:
        if not self.targets:
            raise ConfigError("At least one target must be configured")
        urls = [t.url for t in self.targets]
        duplicates = {url for url in urls if urls.count(url) > 1}
        if duplicates:
            raise ConfigError(f"Duplicate target URLs found: {duplicates}")
        # Age trimming must never drop samples a configured window still covers
        if self.retention.max_age is not None and self.retention.max_age < self.longest_timespan:
            raise ConfigError(
                f"Retention max_age ({self.retention.max_age}s) is shorter than the longest "
                f"configured window ({self.longest_timespan}s)"
            )

    @property
    def urls(self) -> list[str]:
        return [t.url for t in self.targets]

    @property
    def timespans(self) -> list[int]:
        """Return every aggregated window, dashboard and alert, shortest first."""
        return sorted({w.timespan for w in self.dashboard} | {self.alerts.timespan})

    @property
    def longest_timespan(self) -> int:
        return max(self.timespans)

    @property
    def aggregation_rules(self) -> list[tuple[int, int]]:
        """Return (timespan, frequency) pairs for all windows, alert included."""
        rules = [(w.timespan, w.frequency) for w in self.dashboard]
        rules.append((self.alerts.timespan, self.alerts.frequency))
        return rules


def _parse_target_config(data: str | dict, index: int) -> TargetConfig:
    """Parse a single target entry, either a bare URL or a mapping."""
    if isinstance(data, str):
        return TargetConfig(url=data)
    if not isinstance(data, dict):
        raise ConfigError(f"Target entry {index} must be a URL or a dictionary")

    url = data.get("url")
    if url is None:
        raise ConfigError(f"Target entry {index} is missing 'url' field")
    return TargetConfig(url=str(url))


def _parse_monitor_config(data: dict | None) -> MonitorConfig:
    """Parse monitor configuration section."""
    if data is None:
        return MonitorConfig()
    if not isinstance(data, dict):
        raise ConfigError("'monitor' section must be a dictionary")

    return MonitorConfig(
        interval=int(data.get("interval", 5)),
        timeout=int(data.get("timeout", 10)),
        window_method=str(data.get("window_method", "reverse")),
    )


def _parse_window_config(data: dict, index: int) -> WindowConfig:
    """Parse a single dashboard window entry."""
    if not isinstance(data, dict):
        raise ConfigError(f"Dashboard entry {index} must be a dictionary")

    timespan = data.get("timespan")
    frequency = data.get("frequency")
    if timespan is None:
        raise ConfigError(f"Dashboard entry {index} is missing 'timespan' field")
    if frequency is None:
        raise ConfigError(f"Dashboard entry {index} is missing 'frequency' field")

    return WindowConfig(timespan=int(timespan), frequency=int(frequency))


def _parse_dashboard_config(data: list | None) -> list[WindowConfig]:
    """Parse dashboard section (list of windows)."""
    if data is None:
        return _default_windows()
    if not isinstance(data, list):
        raise ConfigError("'dashboard' must be a list")
    if not data:
        raise ConfigError("'dashboard' must contain at least one window")

    return [_parse_window_config(entry, i) for i, entry in enumerate(data)]


def _parse_webhook_config(data: dict, index: int) -> WebhookConfig:
    """Parse a single webhook configuration entry."""
    if not isinstance(data, dict):
        raise ConfigError(f"Webhook entry {index} must be a dictionary")

    url = data.get("url")
    if url is None:
        raise ConfigError(f"Webhook entry {index} is missing 'url' field")

    return WebhookConfig(
        url=str(url),
        enabled=bool(data.get("enabled", True)),
        on_failure=bool(data.get("on_failure", True)),
        on_recovery=bool(data.get("on_recovery", True)),
    )


def _parse_alerts_config(data: dict | None) -> AlertsConfig:
    """Parse alerts configuration section."""
    if data is None:
        return AlertsConfig()
    if not isinstance(data, dict):
        raise ConfigError("'alerts' section must be a dictionary")

    webhooks_data = data.get("webhooks", [])
    if not isinstance(webhooks_data, list):
        raise ConfigError("'alerts.webhooks' must be a list")

    webhooks = [_parse_webhook_config(webhook_data, i) for i, webhook_data in enumerate(webhooks_data)]

    return AlertsConfig(
        timespan=int(data.get("timespan", 120)),
        frequency=int(data.get("frequency", 1)),
        threshold=float(data.get("threshold", 0.8)),
        webhooks=webhooks,
    )


def _parse_retention_config(data: dict | None) -> RetentionConfig:
    """Parse retention configuration section."""
    if data is None:
        return RetentionConfig()
    if not isinstance(data, dict):
        raise ConfigError("'retention' section must be a dictionary")

    max_samples = data.get("max_samples", 10000)
    max_age = data.get("max_age")

    return RetentionConfig(
        max_samples=int(max_samples) if max_samples is not None else None,
        max_age=int(max_age) if max_age is not None else None,
    )


def _parse_api_config(data: dict | None) -> ApiConfig:
    """Parse API configuration section."""
    if data is None:
        return ApiConfig()
    if not isinstance(data, dict):
        raise ConfigError("'api' section must be a dictionary")

    return ApiConfig(
        enabled=bool(data.get("enabled", True)),
        host=str(data.get("host", "127.0.0.1")),
        port=int(data.get("port", 8080)),
    )


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - SITEPULSE_POLL_INTERVAL: Override monitor.interval
    - SITEPULSE_API_PORT: Override api.port
    - SITEPULSE_API_ENABLED: Override api.enabled (true/false)
    - SITEPULSE_MAX_SAMPLES: Override retention.max_samples
    """
    for section in ("monitor", "api", "retention"):
        if config_data.get(section) is None:
            config_data[section] = {}

    poll_interval = os.environ.get("SITEPULSE_POLL_INTERVAL")
    if poll_interval is not None:
        config_data["monitor"]["interval"] = int(poll_interval)

    api_port = os.environ.get("SITEPULSE_API_PORT")
    if api_port is not None:
        config_data["api"]["port"] = int(api_port)

    api_enabled = os.environ.get("SITEPULSE_API_ENABLED")
    if api_enabled is not None:
        config_data["api"]["enabled"] = api_enabled.lower() in ("true", "1", "yes")

    max_samples = os.environ.get("SITEPULSE_MAX_SAMPLES")
    if max_samples is not None:
        config_data["retention"]["max_samples"] = int(max_samples)

    return config_data


def load_config(config_path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    try:
        data = _apply_env_overrides(data)
    except ValueError as e:
        raise ConfigError(f"Invalid environment override: {e}")

    targets_data = data.get("targets")
    if targets_data is None:
        raise ConfigError("Configuration must contain a 'targets' section")
    if not isinstance(targets_data, list):
        raise ConfigError("'targets' must be a list")

    try:
        return Config(
            targets=[_parse_target_config(entry, i) for i, entry in enumerate(targets_data)],
            monitor=_parse_monitor_config(data.get("monitor")),
            dashboard=_parse_dashboard_config(data.get("dashboard")),
            alerts=_parse_alerts_config(data.get("alerts")),
            retention=_parse_retention_config(data.get("retention")),
            api=_parse_api_config(data.get("api")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")
