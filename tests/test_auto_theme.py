from datetime import date, datetime

import pytest
import pytz

from auto_theme import AutoThemeService
from errors import ConfigurationRequired, InvalidAddress, InvalidDate, NoSavedLocation
from event_bus import AUTO_THEME_CONFIGURATION_REQUIRED_EVENT, STARTUP_STATE_CHANGED_EVENT, THEME_STATE_CHANGED_EVENT
from scheduler import SchedulerState, ThemeScheduler
from settings_store import SettingsStore
from startup import RegistryStartupRegistrar, StartupState
from sun_times import SUNSET
from theme_applier import InMemoryThemeApplier, ThemeMode, ThemeState

from conftest import SHANGHAI_TZ, EventRecorder, FakeClock, FakeRegistry


@pytest.fixture
def clock():
    return FakeClock(SHANGHAI_TZ.localize(datetime(2024, 6, 21, 12, 0)).astimezone(pytz.utc))


@pytest.fixture
def service(tmp_path, geocoder, events, clock, paused_scheduler):
    store = SettingsStore(tmp_path / "solar_settings.json", geocoder, events)
    applier = InMemoryThemeApplier(ThemeState.uniform(ThemeMode.DARK))
    scheduler = ThemeScheduler(
        store, applier, events, timezone=SHANGHAI_TZ, clock=clock, scheduler=paused_scheduler
    )
    startup = RegistryStartupRegistrar(script=tmp_path / "main.py", registry=FakeRegistry())
    service = AutoThemeService(store, geocoder, applier, scheduler, events, clock=clock, startup=startup)
    scheduler.start()
    yield service
    scheduler.shutdown()


def test_save_then_get_returns_the_original_address(service):
    service.save_solar_location("Shanghai")

    settings = service.get_solar_settings()
    assert settings.location.address == "Shanghai"
    assert settings.location.display_name == "Shanghai, China"


def test_enable_without_location_fails(service):
    with pytest.raises(ConfigurationRequired):
        service.set_auto_theme_enabled(True)

    assert service.get_solar_settings().auto_theme_enabled is False
    assert service.scheduler.state == SchedulerState.IDLE


def test_enable_with_location_switches_immediately(service):
    service.save_solar_location("Shanghai")

    settings = service.set_auto_theme_enabled(True)

    assert settings.auto_theme_enabled is True
    assert service.get_theme_state() == ThemeState.uniform(ThemeMode.LIGHT)
    assert service.scheduler.state == SchedulerState.ARMED


def test_sun_times_by_saved_location_requires_a_location(service):
    with pytest.raises(NoSavedLocation):
        service.get_sun_times_by_saved_location()


def test_sun_times_by_saved_location_uses_offset_and_today(service):
    service.save_solar_location("Shanghai")
    service.set_sunset_offset_minutes(30)

    result = service.get_sun_times_by_saved_location()

    assert result.date == date(2024, 6, 21)
    assert result.sunset_offset_minutes == 30
    assert result.next_transition == SUNSET
    assert result.address == "Shanghai"


def test_sun_times_by_address_with_explicit_date(service, geocoder):
    result = service.get_sun_times_by_address("Shanghai", "2024-12-21")

    assert result.date == date(2024, 12, 21)
    assert result.day_length_seconds < 11 * 3600
    assert geocoder.calls == ["Shanghai"]
    # Pure query: settings untouched.
    assert service.get_solar_settings().location is None


def test_sun_times_queries_validate_input(service):
    with pytest.raises(InvalidAddress):
        service.get_sun_times_by_address("  ")
    with pytest.raises(InvalidDate):
        service.get_sun_times_by_address("Shanghai", "June 21")


def test_toggle_without_location_notifies_instead_of_raising(service, events):
    required = EventRecorder(events, AUTO_THEME_CONFIGURATION_REQUIRED_EVENT)

    settings = service.toggle_auto_theme()

    assert settings.auto_theme_enabled is False
    assert required.payloads == [ConfigurationRequired().to_payload()]


def test_toggle_flips_auto_mode(service):
    service.save_solar_location("Shanghai")

    assert service.toggle_auto_theme().auto_theme_enabled is True
    assert service.toggle_auto_theme().auto_theme_enabled is False


def test_manual_theme_change_is_broadcast(service, events):
    changes = EventRecorder(events, THEME_STATE_CHANGED_EVENT)
    state = ThemeState(apps=ThemeMode.LIGHT, system=ThemeMode.DARK)

    assert service.set_theme_state(state) == state
    assert service.get_theme_state() == state
    assert changes.payloads == [state]


def test_startup_registration_is_broadcast(service, events):
    changes = EventRecorder(events, STARTUP_STATE_CHANGED_EVENT)

    assert service.get_startup_state() == StartupState(enabled=False)
    assert service.set_startup_enabled(True) == StartupState(enabled=True)
    assert service.get_startup_state().enabled is True
    assert service.set_startup_enabled(False) == StartupState(enabled=False)
    assert changes.payloads == [StartupState(enabled=True), StartupState(enabled=False)]
