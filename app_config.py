"""Application configuration loaded from ``config.json``."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from geocoding import DEFAULT_TIMEOUT, NOMINATIM_MIN_INTERVAL, NOMINATIM_SEARCH_URL, NOMINATIM_USER_AGENT

LOGGER = logging.getLogger(__name__)

APP_ROOT = Path(__file__).parent
CONFIG_PATH = APP_ROOT / "config.json"
SETTINGS_PATH = APP_ROOT / "solar_settings.json"


@dataclass
class GeocoderConfig:
    search_url: str = NOMINATIM_SEARCH_URL
    user_agent: str = NOMINATIM_USER_AGENT
    timeout: float = DEFAULT_TIMEOUT
    min_interval: float = NOMINATIM_MIN_INTERVAL


@dataclass
class SchedulerConfig:
    retry_backoff_seconds: float = 60.0
    idle_recheck_seconds: float = 600.0
    apply_timeout: float = 10.0


@dataclass
class AppConfig:
    settings_path: Path = SETTINGS_PATH
    log_level: str = "INFO"
    timezone: Optional[str] = None
    geocoder: GeocoderConfig = field(default_factory=GeocoderConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], base_dir: Path = APP_ROOT) -> "AppConfig":
        config = cls()
        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring malformed configuration payload of type %s", type(payload).__name__)
            return config

        settings_path = payload.get("settings_path")
        if settings_path:
            path = Path(str(settings_path)).expanduser()
            config.settings_path = path if path.is_absolute() else base_dir / path
        config.log_level = str(payload.get("log_level", config.log_level)).upper()
        config.timezone = str(payload["timezone"]) if payload.get("timezone") else None

        geocoder_cfg = payload.get("geocoder", {}) or {}
        if isinstance(geocoder_cfg, dict):
            config.geocoder = GeocoderConfig(
                search_url=str(geocoder_cfg.get("search_url", config.geocoder.search_url)),
                user_agent=str(geocoder_cfg.get("user_agent", config.geocoder.user_agent)),
                timeout=_positive_float(geocoder_cfg.get("timeout"), config.geocoder.timeout),
                min_interval=_positive_float(geocoder_cfg.get("min_interval"), config.geocoder.min_interval),
            )

        scheduler_cfg = payload.get("scheduler", {}) or {}
        if isinstance(scheduler_cfg, dict):
            config.scheduler = SchedulerConfig(
                retry_backoff_seconds=_positive_float(
                    scheduler_cfg.get("retry_backoff_seconds"), config.scheduler.retry_backoff_seconds
                ),
                idle_recheck_seconds=_positive_float(
                    scheduler_cfg.get("idle_recheck_seconds"), config.scheduler.idle_recheck_seconds
                ),
                apply_timeout=_positive_float(scheduler_cfg.get("apply_timeout"), config.scheduler.apply_timeout),
            )
        return config


def load_config(path: Path = CONFIG_PATH) -> AppConfig:
    if not path.exists():
        LOGGER.debug("No configuration file at %s; using defaults", path)
        return AppConfig()
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, ValueError):
        LOGGER.exception("Failed to read configuration from %s; using defaults", path)
        return AppConfig()
    LOGGER.debug("Loaded config keys: %s", list(payload.keys()) if isinstance(payload, dict) else payload)
    return AppConfig.from_dict(payload, base_dir=path.parent)


def _positive_float(value: Optional[object], default: float) -> float:
    try:
        if value in (None, ""):
            return default
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        LOGGER.warning("Invalid numeric config value %r; using %s", value, default)
        return default
    return number if number > 0 else default
