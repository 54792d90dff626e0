"""Error taxonomy shared by the solar calculation, settings and scheduler layers."""
from __future__ import annotations

from typing import Any, Dict, Optional


class AutoThemeError(Exception):
    """Base error carrying a stable dotted code and string parameters."""

    code = "errors.unknown"

    def __init__(self, message: Optional[str] = None, **params: Any) -> None:
        self.params: Dict[str, str] = {key: str(value) for key, value in params.items()}
        super().__init__(message or self.code)

    def with_param(self, key: str, value: Any) -> "AutoThemeError":
        self.params[key] = str(value)
        return self

    def to_payload(self) -> Dict[str, Any]:
        """Return the ``ErrorPayload`` shape sent to event listeners."""
        return {"code": self.code, "params": dict(self.params)}


class GeocodingError(AutoThemeError):
    code = "errors.geocode.failed"


class InvalidAddress(GeocodingError):
    code = "errors.address.empty"


class NoResults(GeocodingError):
    code = "errors.geocode.not_found"


class NetworkError(GeocodingError):
    code = "errors.network.request_failed"


class InvalidCoordinates(AutoThemeError):
    code = "errors.solar.invalid_coordinates"


class InvalidDate(AutoThemeError):
    code = "errors.date.invalid_format"


class InvalidOffset(AutoThemeError):
    code = "errors.solar.invalid_offset"


class ConfigurationRequired(AutoThemeError):
    code = "errors.auto_theme.location_required_for_enable"


class NoSavedLocation(AutoThemeError):
    code = "errors.solar.location_required_for_query"


class ThemeApplyFailed(AutoThemeError):
    code = "errors.theme.apply_failed"


class SettingsPersistError(AutoThemeError):
    code = "errors.settings.save_failed"


class StartupError(AutoThemeError):
    code = "errors.startup.failed"


class StartupUnsupported(StartupError):
    code = "errors.startup.unsupported"


class StartupReadFailed(StartupError):
    code = "errors.registry.open_failed"


class StartupRegistrationFailed(StartupError):
    code = "errors.registry.create_settings_failed"
