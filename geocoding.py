"""Address lookup against OpenStreetMap Nominatim."""
from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

import requests

from errors import InvalidAddress, InvalidCoordinates, NetworkError, NoResults

LOGGER = logging.getLogger(__name__)

NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"
NOMINATIM_USER_AGENT = "SunSwitch/0.1 (+https://github.com/sunswitch/sunswitch)"
DEFAULT_TIMEOUT = 10
NOMINATIM_MIN_INTERVAL = 1.0

_RATE_LIMIT_LOCK = threading.Lock()
_last_request_at: Optional[float] = None


@dataclass(frozen=True)
class GeoLocation:
    address: str
    display_name: str
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        validate_coordinates(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, object]:
        return {
            "address": self.address,
            "display_name": self.display_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, object]) -> "GeoLocation":
        return cls(
            address=str(payload["address"]),
            display_name=str(payload["display_name"]),
            latitude=float(payload["latitude"]),  # type: ignore[arg-type]
            longitude=float(payload["longitude"]),  # type: ignore[arg-type]
        )


def validate_coordinates(latitude: float, longitude: float) -> None:
    """Raise ``InvalidCoordinates`` unless both values are finite and in range."""
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError) as exc:
        raise InvalidCoordinates(latitude=latitude, longitude=longitude) from exc
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidCoordinates(latitude=latitude, longitude=longitude)
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
        raise InvalidCoordinates(latitude=latitude, longitude=longitude)


def normalize_address(address: Optional[str]) -> str:
    trimmed = (address or "").strip()
    if not trimmed:
        raise InvalidAddress()
    return trimmed


class Geocoder:
    """Contract for resolving free-form address text to a ``GeoLocation``."""

    def lookup(self, address: str) -> GeoLocation:  # pragma: no cover - interface
        raise NotImplementedError


class NominatimGeocoder(Geocoder):
    """Single-attempt Nominatim lookups with a session cache and a shared rate limit."""

    def __init__(
        self,
        search_url: str = NOMINATIM_SEARCH_URL,
        user_agent: str = NOMINATIM_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT,
        min_interval: float = NOMINATIM_MIN_INTERVAL,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.search_url = search_url
        self.user_agent = user_agent
        self.timeout = timeout
        self.min_interval = min_interval
        self._session = session or requests.Session()
        self._cache: Dict[str, GeoLocation] = {}
        self._cache_lock = threading.Lock()

    def lookup(self, address: str) -> GeoLocation:
        trimmed = normalize_address(address)
        with self._cache_lock:
            cached = self._cache.get(trimmed)
        if cached is not None:
            LOGGER.debug("Geocode cache hit for %r", trimmed)
            return cached

        location = self._request(trimmed)
        with self._cache_lock:
            self._cache[trimmed] = location
        return location

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def _request(self, address: str) -> GeoLocation:
        params = {
            "q": address,
            "format": "jsonv2",
            "limit": 1,
            "addressdetails": 0,
        }
        headers = {"User-Agent": self.user_agent}
        self._wait_for_rate_limit()
        LOGGER.debug("Requesting geocode from Nominatim with params=%s", params)
        try:
            response = self._session.get(self.search_url, params=params, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise NetworkError(address=address, source="timeout") from exc
        except requests.RequestException as exc:
            raise NetworkError(address=address, source=exc) from exc
        LOGGER.debug("Nominatim response status: %s", response.status_code)

        if response.status_code >= 400:
            raise NetworkError(address=address, status=response.status_code, body=response.text[:200])

        try:
            items = response.json()
        except ValueError as exc:
            raise NetworkError(address=address, source="invalid json") from exc

        if not isinstance(items, list) or not items:
            raise NoResults(address=address)

        first = items[0]
        try:
            latitude = float(first["lat"])
            longitude = float(first["lon"])
        except (KeyError, TypeError, ValueError) as exc:
            raise NoResults(address=address, source="unparsable coordinates") from exc

        display_name = str(first.get("display_name") or address)
        try:
            location = GeoLocation(
                address=address,
                display_name=display_name,
                latitude=latitude,
                longitude=longitude,
            )
        except InvalidCoordinates as exc:
            raise NoResults(address=address, source="coordinates out of range") from exc

        LOGGER.info("Resolved %r to %s (%.4f, %.4f)", address, display_name, latitude, longitude)
        return location

    def _wait_for_rate_limit(self) -> None:
        global _last_request_at
        with _RATE_LIMIT_LOCK:
            now = time.monotonic()
            if _last_request_at is not None:
                elapsed = now - _last_request_at
                if elapsed < self.min_interval:
                    delay = self.min_interval - elapsed
                    LOGGER.debug("Sleeping %.2fs to respect the Nominatim rate limit", delay)
                    time.sleep(delay)
            _last_request_at = time.monotonic()
