"""Operations exposed to the tray, command line and any other front end."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from errors import ConfigurationRequired, NoSavedLocation
from event_bus import (
    AUTO_THEME_CONFIGURATION_REQUIRED_EVENT,
    STARTUP_STATE_CHANGED_EVENT,
    THEME_STATE_CHANGED_EVENT,
    EventBus,
)
from geocoding import GeoLocation, Geocoder
from scheduler import ThemeScheduler, utc_now
from settings_store import SettingsStore, SolarSettings
from startup import RegistryStartupRegistrar, StartupRegistrar, StartupState
from sun_times import SunTimesResult, resolve_target_date, sun_times_for_location
from theme_applier import ThemeApplier, ThemeState

LOGGER = logging.getLogger(__name__)


class AutoThemeService:
    """Thin facade over the settings store, geocoder, scheduler, theme applier and startup entry."""

    def __init__(
        self,
        store: SettingsStore,
        geocoder: Geocoder,
        applier: ThemeApplier,
        scheduler: ThemeScheduler,
        events: EventBus,
        clock: Callable[[], datetime] = utc_now,
        startup: Optional[StartupRegistrar] = None,
    ) -> None:
        self.store = store
        self.geocoder = geocoder
        self.applier = applier
        self.scheduler = scheduler
        self.events = events
        self._clock = clock
        self.startup = startup or RegistryStartupRegistrar()

    # -- settings --------------------------------------------------------
    def get_solar_settings(self) -> SolarSettings:
        return self.store.get()

    def save_solar_location(self, address: str) -> SolarSettings:
        return self.store.save_location(address)

    def set_auto_theme_enabled(self, enabled: bool) -> SolarSettings:
        return self.store.set_auto_theme_enabled(enabled)

    def set_sunset_offset_minutes(self, minutes: int) -> SolarSettings:
        return self.store.set_sunset_offset_minutes(minutes)

    def toggle_auto_theme(self) -> SolarSettings:
        """Flip auto mode; without a saved location only notify listeners."""
        settings = self.store.get()
        if not settings.auto_theme_enabled and settings.location is None:
            LOGGER.info("Auto theme toggle requested without a saved location")
            self.events.publish(AUTO_THEME_CONFIGURATION_REQUIRED_EVENT, ConfigurationRequired().to_payload())
            return settings
        return self.store.set_auto_theme_enabled(not settings.auto_theme_enabled)

    # -- queries ---------------------------------------------------------
    def geocode_address(self, address: str) -> GeoLocation:
        return self.geocoder.lookup(address)

    def get_sun_times_by_address(self, address: str, date: Optional[str] = None) -> SunTimesResult:
        location = self.geocoder.lookup(address)
        return self._sun_times(location, date)

    def get_sun_times_by_saved_location(self, date: Optional[str] = None) -> SunTimesResult:
        location = self.store.get().location
        if location is None:
            raise NoSavedLocation()
        return self._sun_times(location, date)

    def _sun_times(self, location: GeoLocation, date: Optional[str]) -> SunTimesResult:
        tz = self.scheduler.timezone
        target_date = resolve_target_date(date, tz) if date else self._clock().astimezone(tz).date()
        return sun_times_for_location(
            location,
            target_date,
            self._clock(),
            sunset_offset_minutes=self.store.get().sunset_offset_minutes,
            tz=tz,
        )

    # -- theme -----------------------------------------------------------
    def get_theme_state(self) -> ThemeState:
        return self.applier.get_state()

    def set_theme_state(self, state: ThemeState) -> ThemeState:
        """Manual override; the next scheduled transition still applies as usual."""
        next_state = self.applier.set_state(state)
        LOGGER.info("Theme manually set to apps=%s system=%s", next_state.apps.value, next_state.system.value)
        self.events.publish(THEME_STATE_CHANGED_EVENT, next_state)
        return next_state

    # -- startup ---------------------------------------------------------
    def get_startup_state(self) -> StartupState:
        return self.startup.get_state()

    def set_startup_enabled(self, enabled: bool) -> StartupState:
        state = self.startup.set_enabled(enabled)
        self.events.publish(STARTUP_STATE_CHANGED_EVENT, state)
        return state
