"""Configuration loading from defaults, optional YAML file, and env vars."""

import logging
import os
from dataclasses import dataclass, fields

import yaml

logger = logging.getLogger(__name__)

_ENV_NAMES = {
    "default_days": "PROCTRACK_DEFAULT_DAYS",
    "executable_suffix": "PROCTRACK_EXE_SUFFIX",
    "log_name": "PROCTRACK_LOG_NAME",
    "start_event_id": "PROCTRACK_START_EVENT_ID",
    "stop_event_id": "PROCTRACK_STOP_EVENT_ID",
    "log_level": "PROCTRACK_LOG_LEVEL",
    "display_utc": "PROCTRACK_DISPLAY_UTC",
}


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    default_days: int = 30
    executable_suffix: str = ".exe"
    log_name: str = "Security"       # event log channel
    start_event_id: int = 4688
    stop_event_id: int = 4689
    log_level: str = "WARNING"
    display_utc: bool = False


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as exc:
        logger.warning("Config file %s is not valid YAML (%s), using defaults", path, exc)
        return {}

    if not isinstance(data, dict):
        logger.warning("Config file %s must hold a mapping, using defaults", path)
        return {}
    logger.info("Loaded YAML config from %s", path)
    return data


def _as_int(name: str, value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid integer %r for %s, using %d", value, name, default)
        return default


def load_config(yaml_data: dict | None = None) -> Config:
    """Build Config; env vars override YAML values, which override defaults."""
    raw = {}
    known = {f.name for f in fields(Config)}
    if yaml_data and not isinstance(yaml_data, dict):
        logger.warning("Config data must be a mapping, ignoring %s", type(yaml_data).__name__)
        yaml_data = {}
    for key, value in (yaml_data or {}).items():
        if key in known:
            raw[key] = value
        else:
            logger.warning("Ignoring unknown config key %r", key)

    for key, env_name in _ENV_NAMES.items():
        if env_name in os.environ:
            raw[key] = os.environ[env_name]

    default_days = _as_int("default_days", raw.get("default_days", Config.default_days), Config.default_days)
    if default_days <= 0:
        logger.warning("default_days must be positive, using %d", Config.default_days)
        default_days = Config.default_days

    return Config(
        default_days=default_days,
        executable_suffix=str(raw.get("executable_suffix", Config.executable_suffix)),
        log_name=str(raw.get("log_name", Config.log_name)),
        start_event_id=_as_int(
            "start_event_id", raw.get("start_event_id", Config.start_event_id), Config.start_event_id
        ),
        stop_event_id=_as_int(
            "stop_event_id", raw.get("stop_event_id", Config.stop_event_id), Config.stop_event_id
        ),
        log_level=str(raw.get("log_level", Config.log_level)).upper(),
        display_utc=_parse_bool(raw.get("display_utc", Config.display_utc)),
    )
