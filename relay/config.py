"""Configuration loading from CLI args, env vars, and optional YAML file."""

import logging
import os
from dataclasses import dataclass, fields

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Config:
    unit: str = "app"
    host: str = "0.0.0.0"
    port: int = 8080
    metrics_interval: float = 5.0
    outbox_capacity: int = 256
    control_capacity: int = 256
    fetch_timeout: float = 10.0
    units_timeout: float = 5.0
    default_lines: int = 100
    keepalive_interval: float = 15.0
    poll_interval: float = 0.1
    idle_flush: float = 0.5
    terminate_grace: float = 2.0
    journalctl: str = "journalctl"
    systemctl: str = "systemctl"
    disk_path: str = "/"
    log_level: str = "INFO"


# Config field -> environment variable
ENV_VARS = {
    "unit": "LOG_UNIT",
    "host": "DASHBOARD_HOST",
    "port": "DASHBOARD_PORT",
    "metrics_interval": "METRICS_INTERVAL",
    "outbox_capacity": "OUTBOX_CAPACITY",
    "control_capacity": "CONTROL_CAPACITY",
    "fetch_timeout": "FETCH_TIMEOUT",
    "units_timeout": "UNITS_TIMEOUT",
    "default_lines": "DEFAULT_LINES",
    "keepalive_interval": "KEEPALIVE_INTERVAL",
    "poll_interval": "POLL_INTERVAL",
    "idle_flush": "IDLE_FLUSH",
    "terminate_grace": "TERMINATE_GRACE",
    "journalctl": "JOURNALCTL",
    "systemctl": "SYSTEMCTL",
    "disk_path": "DISK_PATH",
    "log_level": "LOG_LEVEL",
}

_TYPES = {f.name: f.type for f in fields(Config)}


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded YAML config from %s", path)
        return data
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}


def _coerce(name: str, value):
    kind = _TYPES[name]
    if kind in (int, "int"):
        return int(value)
    if kind in (float, "float"):
        return float(value)
    return str(value)


def load_config(cli_args=None, yaml_data: dict | None = None, environ=None) -> Config:
    """Build Config: defaults < YAML < env vars < explicit CLI flags."""
    environ = os.environ if environ is None else environ
    values = {}

    for name, value in (yaml_data or {}).items():
        if name not in _TYPES:
            logger.warning("Ignoring unknown config key %r", name)
            continue
        values[name] = _coerce(name, value)

    for name, var in ENV_VARS.items():
        if var in environ:
            values[name] = _coerce(name, environ[var])

    for name in _TYPES:
        value = getattr(cli_args, name, None)
        if value is not None:
            values[name] = _coerce(name, value)

    config = Config(**values)
    if config.outbox_capacity <= 0 or config.control_capacity <= 0:
        raise ValueError("outbox_capacity and control_capacity must be positive")
    if config.default_lines <= 0:
        raise ValueError("default_lines must be positive")
    return config
