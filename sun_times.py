"""Sunrise/sunset calculation and the light/dark recommendation derived from it."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time as time_module, timedelta, tzinfo as TzInfo
from typing import Any, Dict, List, Optional, Tuple, Union

import pytz
from astral import Observer
from astral.sun import elevation, sunrise, sunset
from tzlocal import get_localzone_name

from errors import InvalidDate, InvalidOffset
from geocoding import GeoLocation, validate_coordinates
from theme_applier import ThemeMode

LOGGER = logging.getLogger(__name__)

SUNRISE = "sunrise"
SUNSET = "sunset"
POLAR_DAY = "polar_day"
POLAR_NIGHT = "polar_night"

MAX_SUNSET_OFFSET_MINUTES = 720
TRANSITION_SEARCH_DAYS = 370
# Geometric elevation of the sun's centre at sunrise/sunset (refraction and
# solar radius folded in), the same depression astral uses for its events.
HORIZON_ELEVATION = -0.833
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

TimezoneLike = Union[str, TzInfo, None]


@dataclass(frozen=True)
class DaylightInterval:
    start: datetime
    end: datetime
    # Sunset that ends this stretch of daylight; may fall after `end` when the
    # sun is still up at local midnight.
    closing_sunset: Optional[datetime] = None

    @property
    def seconds(self) -> int:
        return int(round((self.end - self.start).total_seconds()))


@dataclass(frozen=True)
class SolarDay:
    """Sun events for one local calendar date, all instants in UTC."""

    date: date
    start_utc: datetime
    end_utc: datetime
    sunrise_utc: Optional[datetime]
    sunset_utc: Optional[datetime]
    sun_up_at_start: bool
    intervals: Tuple[DaylightInterval, ...] = field(default_factory=tuple)

    @property
    def polar(self) -> Optional[str]:
        if self.sunrise_utc is None and self.sunset_utc is None:
            return POLAR_DAY if self.sun_up_at_start else POLAR_NIGHT
        return None

    @property
    def day_length_seconds(self) -> int:
        return sum(interval.seconds for interval in self.intervals)


@dataclass(frozen=True)
class SunTimesResult:
    address: str
    display_name: str
    latitude: float
    longitude: float
    date: date
    timezone: str
    sunrise_utc: Optional[datetime]
    sunset_utc: Optional[datetime]
    sunrise_local: Optional[datetime]
    sunset_local: Optional[datetime]
    sunrise_unix: Optional[int]
    sunset_unix: Optional[int]
    day_length_seconds: int
    day_length_hms: str
    is_daylight: bool
    polar: Optional[str]
    sunset_offset_minutes: int
    effective_sunset_utc: Optional[datetime]
    recommended_theme: ThemeMode
    next_transition: Optional[str]
    next_transition_utc: Optional[datetime]
    next_transition_local: Optional[datetime]
    seconds_until_next_transition: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "display_name": self.display_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "date": self.date.isoformat(),
            "timezone": self.timezone,
            "sunrise_utc": format_timestamp(self.sunrise_utc),
            "sunset_utc": format_timestamp(self.sunset_utc),
            "sunrise_local": format_timestamp(self.sunrise_local),
            "sunset_local": format_timestamp(self.sunset_local),
            "sunrise_unix": self.sunrise_unix,
            "sunset_unix": self.sunset_unix,
            "day_length_seconds": self.day_length_seconds,
            "day_length_hms": self.day_length_hms,
            "is_daylight": self.is_daylight,
            "polar": self.polar,
            "sunset_offset_minutes": self.sunset_offset_minutes,
            "effective_sunset_utc": format_timestamp(self.effective_sunset_utc),
            "recommended_theme": self.recommended_theme.value,
            "next_transition": self.next_transition,
            "next_transition_utc": format_timestamp(self.next_transition_utc),
            "next_transition_local": format_timestamp(self.next_transition_local),
            "seconds_until_next_transition": self.seconds_until_next_transition,
        }


def resolve_timezone(tz: TimezoneLike = None) -> TzInfo:
    """Return a tzinfo for *tz*, defaulting to the machine's local zone."""
    if tz is not None and not isinstance(tz, str):
        return tz
    name = tz
    if not name:
        try:
            name = get_localzone_name()
        except Exception:  # pragma: no cover - defensive fallback
            name = None
    if not name:
        LOGGER.warning("Local timezone unknown; defaulting to UTC")
        return pytz.UTC
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        LOGGER.warning("Unknown timezone '%s'; falling back to UTC", name)
        return pytz.UTC


def timezone_name(tz: TzInfo) -> str:
    return str(getattr(tz, "zone", None) or getattr(tz, "key", None) or tz)


def validate_offset(minutes: object) -> int:
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise InvalidOffset(minutes=minutes)
    if not 0 <= minutes <= MAX_SUNSET_OFFSET_MINUTES:
        raise InvalidOffset(minutes=minutes)
    return minutes


def resolve_target_date(value: Optional[str], tz: TimezoneLike = None) -> date:
    """Parse ``YYYY-MM-DD``; a missing or blank value means today in *tz*."""
    if value is None or not str(value).strip():
        zone = resolve_timezone(tz)
        return datetime.now(pytz.utc).astimezone(zone).date()
    try:
        return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError as exc:
        raise InvalidDate(value=value, format="YYYY-MM-DD") from exc


def format_hms(total_seconds: int) -> str:
    total = max(int(total_seconds), 0)
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    offset = value.strftime("%z") or "+0000"
    return f"{value.strftime(TIMESTAMP_FORMAT)} {offset[:3]}:{offset[3:]}"


def local_midnight(day: date, tz: TzInfo) -> datetime:
    naive = datetime.combine(day, time_module.min)
    if hasattr(tz, "localize"):
        return tz.localize(naive)  # type: ignore[attr-defined]
    return naive.replace(tzinfo=tz)


def _as_utc(value: datetime, tz: TzInfo) -> datetime:
    if value.tzinfo is None:
        # Naive instants are read as wall-clock time in the location's zone.
        if hasattr(tz, "localize"):
            value = tz.localize(value)  # type: ignore[attr-defined]
        else:
            value = value.replace(tzinfo=tz)
    return value.astimezone(pytz.utc)


def _sun_is_up(observer: Observer, instant: datetime) -> bool:
    return elevation(observer, instant, with_refraction=False) > HORIZON_ELEVATION


def _event_on_date(func, observer: Observer, day: date, tz: TzInfo) -> Optional[datetime]:
    try:
        event = func(observer, date=day, tzinfo=tz)
    except ValueError:
        return None
    if event.astimezone(tz).date() != day:
        LOGGER.debug("Discarding %s at %s outside local date %s", func.__name__, event, day)
        return None
    return event.astimezone(pytz.utc)


def solar_day(latitude: float, longitude: float, day: date, tz: TzInfo) -> SolarDay:
    """Collect sunrise/sunset and the daylight intervals for local date *day*."""
    observer = Observer(latitude=latitude, longitude=longitude)
    start = local_midnight(day, tz).astimezone(pytz.utc)
    end = local_midnight(day + timedelta(days=1), tz).astimezone(pytz.utc)
    rise = _event_on_date(sunrise, observer, day, tz)
    set_ = _event_on_date(sunset, observer, day, tz)
    up_at_start = _sun_is_up(observer, start)

    events: List[Tuple[datetime, str]] = []
    if rise is not None:
        events.append((rise, SUNRISE))
    if set_ is not None:
        events.append((set_, SUNSET))
    events.sort()

    intervals: List[DaylightInterval] = []
    opened: Optional[datetime] = start if up_at_start else None
    for instant, kind in events:
        if kind == SUNRISE and opened is None:
            opened = instant
        elif kind == SUNSET and opened is not None:
            if instant > opened:
                intervals.append(DaylightInterval(opened, instant, closing_sunset=instant))
            opened = None
    if opened is not None and opened < end:
        intervals.append(DaylightInterval(opened, end))

    return SolarDay(
        date=day,
        start_utc=start,
        end_utc=end,
        sunrise_utc=rise,
        sunset_utc=set_,
        sun_up_at_start=up_at_start,
        intervals=tuple(intervals),
    )


def _link_closing_sunset(day: SolarDay, following: SolarDay) -> SolarDay:
    """Attach the sunset that ends *day*'s last daylight when it falls on *following*.

    Near the midnight sun the evening's sunset lands after local midnight, so
    the interval for *day* ends at midnight without a sunset of its own.
    """
    if not day.intervals:
        return day
    last = day.intervals[-1]
    if last.closing_sunset is not None or last.end != day.end_utc:
        return day
    if not following.intervals or following.intervals[0].start != following.start_utc:
        return day
    sunset_after = following.intervals[0].closing_sunset
    if sunset_after is None:
        return day
    linked = replace(last, closing_sunset=sunset_after)
    return replace(day, intervals=day.intervals[:-1] + (linked,))


def _is_light(intervals: Tuple[DaylightInterval, ...], now_utc: datetime, offset: timedelta) -> bool:
    for interval in intervals:
        effective_end = interval.end
        if interval.closing_sunset is not None:
            effective_end = min(effective_end, interval.closing_sunset - offset)
        if interval.start <= now_utc < effective_end:
            return True
    return False


def next_transition(
    latitude: float,
    longitude: float,
    now_utc: datetime,
    tz: TzInfo,
    sunset_offset_minutes: int = 0,
    first_day: Optional[SolarDay] = None,
) -> Optional[Tuple[str, datetime]]:
    """Return the soonest sunrise or effective sunset strictly after *now_utc*."""
    offset = timedelta(minutes=sunset_offset_minutes)
    day = now_utc.astimezone(tz).date()
    best: Optional[Tuple[datetime, str]] = None
    extra_day_scanned = False
    for index in range(TRANSITION_SEARCH_DAYS):
        current = day + timedelta(days=index)
        if first_day is not None and first_day.date == current:
            events = first_day
        else:
            events = solar_day(latitude, longitude, current, tz)
        candidates: List[Tuple[datetime, str]] = []
        if events.sunrise_utc is not None:
            candidates.append((events.sunrise_utc, SUNRISE))
        if events.sunset_utc is not None:
            candidates.append((events.sunset_utc - offset, SUNSET))
        for instant, kind in candidates:
            if instant > now_utc and (best is None or instant < best[0]):
                best = (instant, kind)
        if best is not None:
            # An effective sunset on the following date can land before this one.
            if extra_day_scanned or sunset_offset_minutes == 0:
                break
            extra_day_scanned = True
    if best is None:
        LOGGER.warning(
            "No sunrise or sunset within %d days of %s at (%.4f, %.4f)",
            TRANSITION_SEARCH_DAYS,
            now_utc,
            latitude,
            longitude,
        )
        return None
    return best[1], best[0]


def compute_sun_times(
    latitude: float,
    longitude: float,
    target_date: date,
    now: datetime,
    *,
    sunset_offset_minutes: int = 0,
    tz: TimezoneLike = None,
    location: Optional[GeoLocation] = None,
) -> SunTimesResult:
    """Compute the full ``SunTimesResult`` for a coordinate and local date.

    *target_date* is a date in the civil calendar of *tz* (the machine's local
    zone when omitted). The offset pulls the effective sunset earlier and is
    only used for ``recommended_theme`` and ``next_transition``; the reported
    sunset fields are always the astronomical ones. Sunrise is never shifted.
    """
    validate_coordinates(latitude, longitude)
    offset_minutes = validate_offset(sunset_offset_minutes)
    zone = resolve_timezone(tz)
    now_utc = _as_utc(now, zone)

    day = solar_day(latitude, longitude, target_date, zone)
    offset = timedelta(minutes=offset_minutes)
    is_daylight = any(interval.start <= now_utc < interval.end for interval in day.intervals)
    light_day = day
    if offset_minutes:
        following = solar_day(latitude, longitude, target_date + timedelta(days=1), zone)
        light_day = _link_closing_sunset(day, following)
    recommended = ThemeMode.LIGHT if _is_light(light_day.intervals, now_utc, offset) else ThemeMode.DARK

    transition = next_transition(latitude, longitude, now_utc, zone, offset_minutes, first_day=day)
    if transition is None:
        next_kind, next_utc, seconds_until = None, None, 0
    else:
        next_kind, next_utc = transition
        seconds_until = max(0, int(math.ceil((next_utc - now_utc).total_seconds())))

    if day.polar:
        LOGGER.debug("%s on %s at (%.4f, %.4f)", day.polar, target_date, latitude, longitude)

    return SunTimesResult(
        address=location.address if location else "",
        display_name=location.display_name if location else "",
        latitude=float(latitude),
        longitude=float(longitude),
        date=target_date,
        timezone=timezone_name(zone),
        sunrise_utc=day.sunrise_utc,
        sunset_utc=day.sunset_utc,
        sunrise_local=day.sunrise_utc.astimezone(zone) if day.sunrise_utc else None,
        sunset_local=day.sunset_utc.astimezone(zone) if day.sunset_utc else None,
        sunrise_unix=int(day.sunrise_utc.timestamp()) if day.sunrise_utc else None,
        sunset_unix=int(day.sunset_utc.timestamp()) if day.sunset_utc else None,
        day_length_seconds=day.day_length_seconds,
        day_length_hms=format_hms(day.day_length_seconds),
        is_daylight=is_daylight,
        polar=day.polar,
        sunset_offset_minutes=offset_minutes,
        effective_sunset_utc=day.sunset_utc - offset if day.sunset_utc else None,
        recommended_theme=recommended,
        next_transition=next_kind,
        next_transition_utc=next_utc,
        next_transition_local=next_utc.astimezone(zone) if next_utc else None,
        seconds_until_next_transition=seconds_until,
    )


def sun_times_for_location(
    location: GeoLocation,
    target_date: date,
    now: datetime,
    *,
    sunset_offset_minutes: int = 0,
    tz: TimezoneLike = None,
) -> SunTimesResult:
    return compute_sun_times(
        location.latitude,
        location.longitude,
        target_date,
        now,
        sunset_offset_minutes=sunset_offset_minutes,
        tz=tz,
        location=location,
    )
