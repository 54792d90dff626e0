"""Reading and writing the operating system light/dark theme."""
from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

try:  # pragma: no cover - platform specific import
    import winreg
except ImportError:  # pragma: no cover - non-Windows fallback
    winreg = None  # type: ignore

from errors import ThemeApplyFailed

LOGGER = logging.getLogger(__name__)

PERSONALIZE_KEY = r"Software\Microsoft\Windows\CurrentVersion\Themes\Personalize"
APPS_VALUE = "AppsUseLightTheme"
SYSTEM_VALUE = "SystemUsesLightTheme"
HWND_BROADCAST = 0xFFFF
WM_SETTINGCHANGE = 0x001A
SMTO_ABORTIFHUNG = 0x0002


class ThemeMode(str, Enum):
    LIGHT = "light"
    DARK = "dark"


@dataclass(frozen=True)
class ThemeState:
    apps: ThemeMode
    system: ThemeMode

    @classmethod
    def uniform(cls, mode: ThemeMode) -> "ThemeState":
        return cls(apps=mode, system=mode)

    def to_dict(self) -> Dict[str, str]:
        return {"apps": self.apps.value, "system": self.system.value}

    @classmethod
    def from_dict(cls, payload: Dict[str, str]) -> "ThemeState":
        return cls(apps=ThemeMode(payload["apps"]), system=ThemeMode(payload["system"]))


class ThemeApplier:
    """Contract for the component that owns the OS theme."""

    def get_state(self) -> ThemeState:  # pragma: no cover - interface
        raise NotImplementedError

    def set_state(self, state: ThemeState) -> ThemeState:  # pragma: no cover - interface
        raise NotImplementedError


class InMemoryThemeApplier(ThemeApplier):
    """Keeps the theme in memory; used off Windows and in tests."""

    def __init__(self, initial: Optional[ThemeState] = None) -> None:
        self._state = initial or ThemeState.uniform(ThemeMode.LIGHT)
        self._lock = threading.Lock()
        self.write_count = 0

    def get_state(self) -> ThemeState:
        with self._lock:
            return self._state

    def set_state(self, state: ThemeState) -> ThemeState:
        with self._lock:
            if state != self._state:
                self._state = state
                self.write_count += 1
            return self._state


class RegistryThemeApplier(ThemeApplier):
    """Flip the Windows personalization registry values and notify running apps."""

    def __init__(self) -> None:
        if winreg is None or not sys.platform.startswith("win"):
            raise RuntimeError("The registry theme applier requires Windows")

    def get_state(self) -> ThemeState:
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, PERSONALIZE_KEY) as key:
                apps = self._read_flag(key, APPS_VALUE)
                system = self._read_flag(key, SYSTEM_VALUE)
        except OSError as exc:
            raise ThemeApplyFailed(source=exc) from exc
        return ThemeState(apps=apps, system=system)

    def set_state(self, state: ThemeState) -> ThemeState:
        if self.get_state() == state:
            LOGGER.debug("Theme already at %s; skipping registry write", state)
            return state
        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, PERSONALIZE_KEY, 0, winreg.KEY_SET_VALUE) as key:
                winreg.SetValueEx(key, APPS_VALUE, 0, winreg.REG_DWORD, 0 if state.apps == ThemeMode.DARK else 1)
                winreg.SetValueEx(
                    key, SYSTEM_VALUE, 0, winreg.REG_DWORD, 0 if state.system == ThemeMode.DARK else 1
                )
        except OSError as exc:
            raise ThemeApplyFailed(source=exc) from exc
        self._broadcast_change()
        return self.get_state()

    @staticmethod
    def _read_flag(key: object, name: str) -> ThemeMode:
        try:
            value, _ = winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return ThemeMode.LIGHT
        return ThemeMode.LIGHT if int(value) else ThemeMode.DARK

    @staticmethod
    def _broadcast_change() -> None:
        import ctypes

        result = ctypes.c_size_t()
        try:
            ctypes.windll.user32.SendMessageTimeoutW(  # type: ignore[attr-defined]
                HWND_BROADCAST,
                WM_SETTINGCHANGE,
                0,
                "ImmersiveColorSet",
                SMTO_ABORTIFHUNG,
                200,
                ctypes.byref(result),
            )
        except OSError:
            LOGGER.warning("Failed to broadcast theme change", exc_info=True)


def default_theme_applier() -> ThemeApplier:
    if winreg is not None and sys.platform.startswith("win"):
        return RegistryThemeApplier()
    LOGGER.warning("Registry theme control unavailable on %s; using in-memory theme state", sys.platform)
    return InMemoryThemeApplier()
