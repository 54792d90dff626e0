"""Entry point for the sunrise/sunset automatic theme switcher."""
from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, List, Optional

from app_config import CONFIG_PATH, AppConfig, load_config
from auto_theme import AutoThemeService
from errors import AutoThemeError
from event_bus import (
    AUTO_THEME_CONFIGURATION_REQUIRED_EVENT,
    SOLAR_SETTINGS_CHANGED_EVENT,
    STARTUP_STATE_CHANGED_EVENT,
    THEME_STATE_CHANGED_EVENT,
    EventBus,
)
from geocoding import NominatimGeocoder
from scheduler import ThemeScheduler
from settings_store import SettingsStore
from theme_applier import ThemeApplier, ThemeMode, ThemeState, default_theme_applier

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOGGER = logging.getLogger(__name__)


def configure_logging(level: str, verbose: bool = False) -> None:
    resolved = logging.DEBUG if verbose else getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    # urllib3 and apscheduler are chatty at DEBUG.
    logging.getLogger("urllib3").setLevel(max(resolved, logging.INFO))
    logging.getLogger("apscheduler").setLevel(max(resolved, logging.INFO))


def build_service(config: AppConfig, applier: Optional[ThemeApplier] = None) -> AutoThemeService:
    events = EventBus()
    geocoder = NominatimGeocoder(
        search_url=config.geocoder.search_url,
        user_agent=config.geocoder.user_agent,
        timeout=config.geocoder.timeout,
        min_interval=config.geocoder.min_interval,
    )
    store = SettingsStore(config.settings_path, geocoder, events)
    applier = applier or default_theme_applier()
    scheduler = ThemeScheduler(
        store,
        applier,
        events,
        timezone=config.timezone,
        retry_backoff_seconds=config.scheduler.retry_backoff_seconds,
        idle_recheck_seconds=config.scheduler.idle_recheck_seconds,
        apply_timeout=config.scheduler.apply_timeout,
    )
    return AutoThemeService(store, geocoder, applier, scheduler, events)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Switch the light/dark theme at sunrise and sunset.")
    parser.add_argument("--config", type=Path, default=CONFIG_PATH, help="path to config.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="keep the theme in sync with the sun until interrupted")
    subparsers.add_parser("status", help="show saved settings and the current theme")

    sun_times = subparsers.add_parser("sun-times", help="show sunrise and sunset")
    sun_times.add_argument("--address", help="look up this address instead of the saved location")
    sun_times.add_argument("--date", help="local date as YYYY-MM-DD (default: today)")

    set_location = subparsers.add_parser("set-location", help="geocode and save a location")
    set_location.add_argument("address")

    auto = subparsers.add_parser("auto", help="enable or disable automatic switching")
    auto.add_argument("mode", choices=["on", "off", "toggle"])

    offset = subparsers.add_parser("offset", help="switch to dark this many minutes before sunset")
    offset.add_argument("minutes", type=int)

    theme = subparsers.add_parser("theme", help="set the theme manually")
    theme.add_argument("mode", choices=[mode.value for mode in ThemeMode])

    startup = subparsers.add_parser("startup", help="start the scheduler when you sign in")
    startup.add_argument("mode", choices=["on", "off", "status"])
    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def run_forever(service: AutoThemeService) -> None:
    stop = threading.Event()

    def _log_event(name: str):
        def handler(payload: Any) -> None:
            LOGGER.info("Event %s: %s", name, payload)

        return handler

    for name in (
        SOLAR_SETTINGS_CHANGED_EVENT,
        AUTO_THEME_CONFIGURATION_REQUIRED_EVENT,
        THEME_STATE_CHANGED_EVENT,
        STARTUP_STATE_CHANGED_EVENT,
    ):
        service.events.subscribe(name, _log_event(name))

    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    service.scheduler.start()
    settings = service.get_solar_settings()
    if not settings.auto_theme_enabled:
        LOGGER.info("Auto theme is disabled; enable it with 'auto on' once a location is saved")
    try:
        while not stop.wait(1.0):
            pass
    finally:
        service.scheduler.shutdown()
        LOGGER.info("Scheduler stopped")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    configure_logging(config.log_level, args.verbose)
    service = build_service(config)
    command = args.command or "run"
    LOGGER.debug("Running command %s with settings at %s", command, config.settings_path)

    try:
        if command == "run":
            run_forever(service)
        elif command == "status":
            settings = service.get_solar_settings()
            _print_json({"settings": settings.to_dict(), "theme": service.get_theme_state().to_dict()})
        elif command == "sun-times":
            if args.address:
                result = service.get_sun_times_by_address(args.address, args.date)
            else:
                result = service.get_sun_times_by_saved_location(args.date)
            _print_json(result.to_dict())
        elif command == "set-location":
            _print_json(service.save_solar_location(args.address).to_dict())
        elif command == "auto":
            if args.mode == "toggle":
                settings = service.toggle_auto_theme()
            else:
                settings = service.set_auto_theme_enabled(args.mode == "on")
            _print_json(settings.to_dict())
        elif command == "offset":
            _print_json(service.set_sunset_offset_minutes(args.minutes).to_dict())
        elif command == "theme":
            state = service.set_theme_state(ThemeState.uniform(ThemeMode(args.mode)))
            _print_json(state.to_dict())
        elif command == "startup":
            if args.mode == "status":
                startup_state = service.get_startup_state()
            else:
                startup_state = service.set_startup_enabled(args.mode == "on")
            _print_json(startup_state.to_dict())
    except AutoThemeError as exc:
        LOGGER.debug("Command %s failed", command, exc_info=exc)
        _print_json({"error": exc.to_payload()})
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
