"""
Configuration management using YAML files and dataclasses.

Configuration sections:
- FetchConfig: HTTP fetching settings
- RefreshConfig: Scheduler timing, staggering and backoff
- UIConfig: Tick rate and display settings
- StorageConfig: Database location and save interval
- LoggingConfig: Logging behavior
- AppConfig: Root configuration container

Missing or unknown keys fall back to the defaults below; values of the wrong
type are replaced by the default with a warning instead of failing startup.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any

import yaml

from termfeed.fetcher import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.expanduser("~/.termfeed/config.yaml")
DEFAULT_DB_PATH = os.path.expanduser("~/.termfeed/termfeed.db")


@dataclass
class FetchConfig:
    """Configuration for HTTP fetching.

    Attributes:
        timeout_seconds: Per-request timeout
        user_agent: HTTP User-Agent header string
        max_workers: Size of the fetch worker pool
    """

    timeout_seconds: float = 15.0
    user_agent: str = DEFAULT_USER_AGENT
    max_workers: int = 4


@dataclass
class RefreshConfig:
    """Configuration for the refresh scheduler.

    Attributes:
        interval_seconds: Auto-refresh period, 0 disables the timer
        request_delay_seconds: Minimum spacing between requests to one host
        domain_delays: Per-host overrides of request_delay_seconds
        backoff_max_seconds: Cap of the exponential backoff after 429/timeouts
        queue_size: Capacity of the fetch result queue
        refresh_on_start: Run a refresh pass at startup
    """

    interval_seconds: float = 900.0
    request_delay_seconds: float = 2.0
    domain_delays: dict[str, float] = field(default_factory=dict)
    backoff_max_seconds: float = 300.0
    queue_size: int = 64
    refresh_on_start: bool = True


@dataclass
class UIConfig:
    """Configuration for the terminal UI.

    Attributes:
        tick_ms: Application loop tick period
        dashboard_limit: Maximum number of items on the dashboard
        error_display_seconds: How long an error banner stays visible
    """

    tick_ms: int = 100
    dashboard_limit: int = 100
    error_display_seconds: float = 3.0


@dataclass
class StorageConfig:
    """Configuration for persistence.

    Attributes:
        db_path: SQLite file holding feeds, items and categories
        save_interval_seconds: Minimum time between writes of a changed store
    """

    db_path: str = DEFAULT_DB_PATH
    save_interval_seconds: float = 5.0


@dataclass
class LoggingConfig:
    """Configuration for logging. The terminal belongs to the UI, so logs go to a file."""

    level: str = "INFO"
    filename: str = os.path.expanduser("~/.termfeed/termfeed.log")
    format: str = "%(asctime)s [%(name)s] %(message)s"


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    fetch: FetchConfig = field(default_factory=FetchConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: str | None = None, environ: dict[str, str] | None = None) -> AppConfig:
    """Load configuration from a YAML file with defaults and env overrides.

    A missing file is not an error. The file path defaults to
    ``$TERMFEED_CONFIG`` or ``~/.termfeed/config.yaml``.
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get("TERMFEED_CONFIG") or DEFAULT_CONFIG_PATH

    raw: dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if isinstance(loaded, dict):
            raw = loaded
        else:
            logger.warning("Ignoring config %s: top level is not a mapping", path)

    cfg = _merge(AppConfig(), raw)
    _apply_env(cfg, environ)
    return validate(cfg)


def _merge(base, raw: dict[str, Any]):
    """Merge a raw mapping into a config dataclass, section by section."""
    for f in fields(base):
        if f.name not in raw:
            continue
        current = getattr(base, f.name)
        value = raw[f.name]
        if is_dataclass(current):
            if isinstance(value, dict):
                _merge(current, value)
            else:
                logger.warning("Config section %r must be a mapping; using defaults", f.name)
            continue
        if _same_kind(current, value):
            setattr(base, f.name, float(value) if isinstance(current, float) else value)
        else:
            logger.warning("Config key %r has invalid value %r; using default", f.name, value)
    return base


def _same_kind(default: Any, value: Any) -> bool:
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, float):
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if isinstance(default, int):
        return isinstance(value, int) and not isinstance(value, bool)
    if isinstance(default, dict):
        return isinstance(value, dict)
    return isinstance(value, type(default))


def _apply_env(cfg: AppConfig, environ) -> None:
    if environ.get("RSS_DB_PATH"):
        cfg.storage.db_path = environ["RSS_DB_PATH"]
    if environ.get("RSS_POLL_INTERVAL"):
        try:
            cfg.refresh.interval_seconds = float(environ["RSS_POLL_INTERVAL"])
        except ValueError:
            logger.warning("Ignoring invalid RSS_POLL_INTERVAL=%r", environ["RSS_POLL_INTERVAL"])


def validate(cfg: AppConfig) -> AppConfig:
    """Replace out-of-range values with defaults."""
    defaults = AppConfig()
    checks = [
        (cfg.fetch, defaults.fetch, "timeout_seconds", lambda v: v > 0),
        (cfg.fetch, defaults.fetch, "max_workers", lambda v: v >= 1),
        (cfg.refresh, defaults.refresh, "interval_seconds", lambda v: v >= 0),
        (cfg.refresh, defaults.refresh, "request_delay_seconds", lambda v: v >= 0),
        (cfg.refresh, defaults.refresh, "backoff_max_seconds", lambda v: v > 0),
        (cfg.refresh, defaults.refresh, "queue_size", lambda v: v >= 1),
        (cfg.ui, defaults.ui, "tick_ms", lambda v: v >= 10),
        (cfg.ui, defaults.ui, "dashboard_limit", lambda v: v >= 1),
        (cfg.ui, defaults.ui, "error_display_seconds", lambda v: v >= 0),
        (cfg.storage, defaults.storage, "save_interval_seconds", lambda v: v >= 0),
    ]
    for section, default_section, name, ok in checks:
        if not ok(getattr(section, name)):
            logger.warning("Config value %s=%r out of range; using default", name, getattr(section, name))
            setattr(section, name, getattr(default_section, name))

    delays = {}
    for host, delay in cfg.refresh.domain_delays.items():
        if isinstance(delay, (int, float)) and not isinstance(delay, bool) and delay >= 0:
            delays[str(host).lower()] = float(delay)
        else:
            logger.warning("Ignoring invalid domain delay for %r: %r", host, delay)
    cfg.refresh.domain_delays = delays

    cfg.logging.level = str(cfg.logging.level).upper()
    if not isinstance(logging.getLevelName(cfg.logging.level), int):
        logger.warning("Unknown log level %r; using INFO", cfg.logging.level)
        cfg.logging.level = "INFO"
    return cfg
