from datetime import datetime, timedelta
from typing import Dict, List

import pytest
import pytz
from apscheduler.schedulers.background import BackgroundScheduler

from errors import NoResults
from event_bus import EventBus
from geocoding import GeoLocation, Geocoder, normalize_address

SHANGHAI_TZ = pytz.timezone("Asia/Shanghai")

SHANGHAI = GeoLocation(
    address="Shanghai",
    display_name="Shanghai, China",
    latitude=31.2304,
    longitude=121.4737,
)
TROMSO = GeoLocation(
    address="Tromso",
    display_name="Tromsø, Troms, Norway",
    latitude=69.6492,
    longitude=18.9553,
)


class FakeGeocoder(Geocoder):
    def __init__(self, locations: Dict[str, GeoLocation]) -> None:
        self.locations = dict(locations)
        self.calls: List[str] = []

    def lookup(self, address: str) -> GeoLocation:
        trimmed = normalize_address(address)
        self.calls.append(trimmed)
        template = self.locations.get(trimmed)
        if template is None:
            raise NoResults(address=trimmed)
        return GeoLocation(
            address=trimmed,
            display_name=template.display_name,
            latitude=template.latitude,
            longitude=template.longitude,
        )


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta

    def set_local(self, tz, *args: int) -> None:
        self.now = tz.localize(datetime(*args)).astimezone(pytz.utc)


class EventRecorder:
    def __init__(self, events: EventBus, name: str) -> None:
        self.payloads: List[object] = []
        events.subscribe(name, self.payloads.append)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder({"Shanghai": SHANGHAI, "Tromso": TROMSO})


@pytest.fixture
def paused_scheduler():
    scheduler = BackgroundScheduler(timezone=SHANGHAI_TZ)
    scheduler.start(paused=True)
    yield scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)


class FakeRegistryKey:
    def __init__(self, values: Dict[str, object]) -> None:
        self.values = values

    def __enter__(self) -> "FakeRegistryKey":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


class FakeRegistry:
    """Just enough of ``winreg`` for the ``Run`` key."""

    HKEY_CURRENT_USER = "HKCU"
    KEY_READ = 0x20019
    KEY_SET_VALUE = 0x0002
    KEY_QUERY_VALUE = 0x0001
    REG_SZ = 1

    def __init__(self) -> None:
        self.keys: Dict[str, Dict[str, object]] = {}
        self.read_only = False

    def OpenKey(self, root, path, reserved=0, access=KEY_READ):
        if path not in self.keys:
            raise FileNotFoundError(path)
        return FakeRegistryKey(self.keys[path])

    def CreateKeyEx(self, root, path, reserved=0, access=KEY_SET_VALUE):
        if self.read_only:
            raise PermissionError("access denied")
        return FakeRegistryKey(self.keys.setdefault(path, {}))

    def QueryValueEx(self, key, name):
        if name not in key.values:
            raise FileNotFoundError(name)
        return key.values[name], self.REG_SZ

    def SetValueEx(self, key, name, reserved, kind, value) -> None:
        key.values[name] = value

    def DeleteValue(self, key, name) -> None:
        if name not in key.values:
            raise FileNotFoundError(name)
        del key.values[name]

    def EnumValue(self, key, index):
        items = list(key.values.items())
        if index >= len(items):
            raise OSError("no more data")
        name, value = items[index]
        return name, value, self.REG_SZ
