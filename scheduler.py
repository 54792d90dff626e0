"""Automatic theme switching driven by a single APScheduler wake job."""
from __future__ import annotations

import logging
import threading
from contextlib import suppress
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

import pytz
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from errors import ConfigurationRequired, ThemeApplyFailed
from event_bus import (
    AUTO_THEME_CONFIGURATION_REQUIRED_EVENT,
    SOLAR_SETTINGS_CHANGED_EVENT,
    THEME_STATE_CHANGED_EVENT,
    EventBus,
)
from settings_store import SettingsStore
from sun_times import SunTimesResult, TimezoneLike, resolve_timezone, sun_times_for_location
from theme_applier import ThemeApplier, ThemeState

LOGGER = logging.getLogger(__name__)

WAKE_JOB_ID = "auto-theme-wake"
# Fire just after the transition so the recomputed theme is already the new one.
TRANSITION_PADDING = timedelta(seconds=1)


class SchedulerState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    TRANSITIONING = "transitioning"


@dataclass(frozen=True)
class ScheduledWake:
    run_at: datetime
    reason: str
    generation: int


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


class ThemeScheduler:
    """Keep the OS theme in line with the sun at the saved location.

    At most one wake job is ever pending. Each wake recomputes everything
    from the clock's current reading, so a process that slept through
    several sunrises and sunsets lands directly on the theme that is right
    now instead of replaying what it missed.
    """

    def __init__(
        self,
        store: SettingsStore,
        applier: ThemeApplier,
        events: EventBus,
        *,
        timezone: TimezoneLike = None,
        clock: Callable[[], datetime] = utc_now,
        scheduler: Optional[BackgroundScheduler] = None,
        retry_backoff_seconds: float = 60.0,
        idle_recheck_seconds: float = 600.0,
        apply_timeout: float = 10.0,
    ) -> None:
        self._store = store
        self._applier = applier
        self._events = events
        self._tz = resolve_timezone(timezone)
        self._clock = clock
        self._scheduler = scheduler or BackgroundScheduler(timezone=self._tz)
        self.retry_backoff = timedelta(seconds=retry_backoff_seconds)
        self.idle_recheck = timedelta(seconds=idle_recheck_seconds)
        self.apply_timeout = apply_timeout

        self._lock = threading.RLock()
        self._executor = self._new_executor()
        self._state = SchedulerState.IDLE
        self._wake: Optional[ScheduledWake] = None
        self._generation = 0
        self._subscription: Optional[int] = None
        self.last_result: Optional[SunTimesResult] = None
        self.last_error: Optional[Exception] = None

    # ------------------------------------------------------------------
    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def pending_wake(self) -> Optional[ScheduledWake]:
        return self._wake

    @property
    def timezone(self):
        return self._tz

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self._events.subscribe(SOLAR_SETTINGS_CHANGED_EVENT, self._on_settings_changed)
        if not self._scheduler.running:
            LOGGER.info("Starting background scheduler")
            self._scheduler.start()
        self.apply_now()

    def shutdown(self) -> None:
        if self._subscription is not None:
            self._events.unsubscribe(self._subscription)
            self._subscription = None
        with self._lock:
            self._cancel_wake()
            self._state = SchedulerState.IDLE
        if self._scheduler.running:
            LOGGER.info("Stopping background scheduler")
            self._scheduler.shutdown(wait=False)
        self._executor.shutdown(wait=False)

    def apply_now(self) -> Optional[SunTimesResult]:
        """Evaluate immediately: apply the theme for the current instant and re-arm."""
        return self._evaluate("manual")

    # ------------------------------------------------------------------
    def _on_settings_changed(self, _settings: object) -> None:
        # The payload may already be stale; the store is read again under our lock.
        self._evaluate("settings-changed")

    def _on_wake(self, generation: int) -> None:
        with self._lock:
            if self._wake is None or self._wake.generation != generation:
                LOGGER.debug("Ignoring superseded wake %s", generation)
                return
            self._wake = None
        self._evaluate("wake")

    def _evaluate(self, reason: str) -> Optional[SunTimesResult]:
        with self._lock:
            settings = self._store.get()
            if not settings.auto_theme_enabled:
                LOGGER.debug("Auto theme disabled (%s); scheduler idle", reason)
                self._go_idle()
                return None
            if settings.location is None:
                error = ConfigurationRequired()
                LOGGER.warning("Auto theme enabled without a location; scheduler idle")
                self._go_idle()
                self._events.publish(AUTO_THEME_CONFIGURATION_REQUIRED_EVENT, error.to_payload())
                return None

            self._state = SchedulerState.TRANSITIONING
            now = self._clock()
            try:
                result = sun_times_for_location(
                    settings.location,
                    now.astimezone(self._tz).date(),
                    now,
                    sunset_offset_minutes=settings.sunset_offset_minutes,
                    tz=self._tz,
                )
            except Exception as exc:
                LOGGER.exception("Failed to compute sun times (%s)", reason)
                self.last_error = exc
                self._arm(now + self.retry_backoff, "retry")
                return None
            self.last_result = result

            desired = ThemeState.uniform(result.recommended_theme)
            try:
                changed_state = self._apply(desired)
            except ThemeApplyFailed as exc:
                LOGGER.warning(
                    "Theme apply failed (%s); retrying in %ss",
                    exc.params.get("source", exc.code),
                    int(self.retry_backoff.total_seconds()),
                )
                self.last_error = exc
                self._arm(now + self.retry_backoff, "retry")
                return result

            self.last_error = None
            if changed_state is not None:
                LOGGER.info("Applied %s theme (%s)", result.recommended_theme.value, reason)
                self._events.publish(THEME_STATE_CHANGED_EVENT, changed_state)

            if result.next_transition_utc is None:
                self._arm(now + self.idle_recheck, "recheck")
            else:
                self._arm(result.next_transition_utc + TRANSITION_PADDING, result.next_transition or "transition")
            return result

    def _apply(self, desired: ThemeState) -> Optional[ThemeState]:
        """Set *desired* if the OS differs; return the new state or ``None`` if unchanged."""
        current = self._call_applier(self._applier.get_state)
        if current == desired:
            LOGGER.debug("Theme already %s", desired)
            return None
        return self._call_applier(self._applier.set_state, desired)

    def _call_applier(self, func: Callable, *args: object):
        future = self._executor.submit(func, *args)
        try:
            return future.result(timeout=self.apply_timeout)
        except FutureTimeoutError as exc:
            if not future.cancel():
                # A running call cannot be interrupted; leave its worker behind.
                LOGGER.warning("Theme applier still running after %ss; abandoning its worker", self.apply_timeout)
                stuck, self._executor = self._executor, self._new_executor()
                stuck.shutdown(wait=False)
            raise ThemeApplyFailed(source="timeout", timeout=self.apply_timeout) from exc
        except ThemeApplyFailed:
            raise
        except Exception as exc:
            raise ThemeApplyFailed(source=exc) from exc

    @staticmethod
    def _new_executor() -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=2, thread_name_prefix="theme-applier")

    # ------------------------------------------------------------------
    def _arm(self, run_at: datetime, reason: str) -> ScheduledWake:
        self._cancel_wake()
        self._generation += 1
        wake = ScheduledWake(run_at=run_at, reason=reason, generation=self._generation)
        trigger = DateTrigger(run_date=run_at)
        job = self._scheduler.add_job(
            self._on_wake,
            trigger=trigger,
            args=[wake.generation],
            id=WAKE_JOB_ID,
            replace_existing=True,
            misfire_grace_time=None,
            coalesce=True,
        )
        LOGGER.debug("Scheduled wake job %s (%s) at %s", job.id, reason, run_at)
        self._wake = wake
        self._state = SchedulerState.ARMED
        return wake

    def _go_idle(self) -> None:
        self._cancel_wake()
        self._state = SchedulerState.IDLE

    def _cancel_wake(self) -> None:
        if self._wake is None:
            return
        LOGGER.debug("Removing existing wake job for %s", self._wake.run_at)
        with suppress(JobLookupError):
            self._scheduler.remove_job(WAKE_JOB_ID)
        self._wake = None

