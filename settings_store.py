"""Persistence and serialized mutation of the solar auto-theme settings."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

from errors import ConfigurationRequired, SettingsPersistError
from event_bus import AUTO_THEME_CONFIGURATION_REQUIRED_EVENT, SOLAR_SETTINGS_CHANGED_EVENT, EventBus
from geocoding import GeoLocation, Geocoder, normalize_address
from sun_times import MAX_SUNSET_OFFSET_MINUTES, validate_offset

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolarSettings:
    location: Optional[GeoLocation] = None
    auto_theme_enabled: bool = False
    sunset_offset_minutes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location.to_dict() if self.location else None,
            "auto_theme_enabled": self.auto_theme_enabled,
            "sunset_offset_minutes": self.sunset_offset_minutes,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SolarSettings":
        """Build settings from a persisted record, repairing invalid combinations."""
        location: Optional[GeoLocation] = None
        location_cfg = payload.get("location")
        if isinstance(location_cfg, dict):
            try:
                location = GeoLocation.from_dict(location_cfg)
            except Exception:
                LOGGER.warning("Discarding invalid saved location: %s", location_cfg, exc_info=True)
                location = None
            if location is not None and (not location.address.strip() or not location.display_name.strip()):
                LOGGER.warning("Discarding saved location with empty address or display name")
                location = None

        auto_enabled = bool(payload.get("auto_theme_enabled", False))
        if auto_enabled and location is None:
            LOGGER.warning("Auto theme was enabled without a saved location; disabling it")
            auto_enabled = False

        try:
            offset = int(payload.get("sunset_offset_minutes", 0) or 0)
        except (TypeError, ValueError):
            LOGGER.warning("Invalid saved sunset offset %r; using 0", payload.get("sunset_offset_minutes"))
            offset = 0
        clamped = min(max(offset, 0), MAX_SUNSET_OFFSET_MINUTES)
        if clamped != offset:
            LOGGER.warning("Clamped saved sunset offset %s to %s", offset, clamped)

        return cls(location=location, auto_theme_enabled=auto_enabled, sunset_offset_minutes=clamped)


class SettingsStore:
    """Owns the single ``SolarSettings`` record.

    Every mutation holds one lock from read to write so concurrent callers
    cannot lose each other's updates. Geocoding happens outside the lock;
    only the most recently issued ``save_location`` request may apply its
    result. Change events are published after the lock is released.
    """

    def __init__(self, path: Path, geocoder: Geocoder, events: EventBus) -> None:
        self._path = Path(path)
        self._geocoder = geocoder
        self._events = events
        self._lock = threading.RLock()
        self._location_request = 0
        self._settings = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> SolarSettings:
        with self._lock:
            return self._settings

    def save_location(self, address: str) -> SolarSettings:
        trimmed = normalize_address(address)
        with self._lock:
            self._location_request += 1
            ticket = self._location_request

        location = self._geocoder.lookup(trimmed)

        with self._lock:
            if ticket != self._location_request:
                LOGGER.info("Discarding geocode result for %r; a newer location request is pending", trimmed)
                return self._settings
            updated = self._commit(replace(self._settings, location=location))
        LOGGER.info("Saved solar location %s", location.display_name)
        self._events.publish(SOLAR_SETTINGS_CHANGED_EVENT, updated)
        return updated

    def set_auto_theme_enabled(self, enabled: bool) -> SolarSettings:
        with self._lock:
            location_missing = bool(enabled) and self._settings.location is None
            if not location_missing:
                updated = self._commit(replace(self._settings, auto_theme_enabled=bool(enabled)))
        if location_missing:
            LOGGER.warning("Refusing to enable auto theme without a saved location")
            error = ConfigurationRequired()
            self._events.publish(AUTO_THEME_CONFIGURATION_REQUIRED_EVENT, error.to_payload())
            raise error
        LOGGER.info("Auto theme %s", "enabled" if enabled else "disabled")
        self._events.publish(SOLAR_SETTINGS_CHANGED_EVENT, updated)
        return updated

    def set_sunset_offset_minutes(self, minutes: int) -> SolarSettings:
        offset = validate_offset(minutes)
        with self._lock:
            updated = self._commit(replace(self._settings, sunset_offset_minutes=offset))
        LOGGER.info("Sunset offset set to %d minutes", offset)
        self._events.publish(SOLAR_SETTINGS_CHANGED_EVENT, updated)
        return updated

    # ------------------------------------------------------------------
    def _commit(self, settings: SolarSettings) -> SolarSettings:
        self._save_json(self._path, settings.to_dict())
        self._settings = settings
        return settings

    def _load(self) -> SolarSettings:
        if not self._path.exists():
            LOGGER.debug("No saved solar settings at %s; using defaults", self._path)
            return SolarSettings()
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError):
            LOGGER.exception("Failed to read solar settings from %s; using defaults", self._path)
            return SolarSettings()
        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring malformed solar settings in %s", self._path)
            return SolarSettings()
        settings = SolarSettings.from_dict(payload)
        LOGGER.debug("Loaded solar settings: %s", settings)
        return settings

    @staticmethod
    def _save_json(path: Path, payload: Dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise SettingsPersistError(path=path, source=exc) from exc
        LOGGER.debug("Persisted solar settings to %s", path)
