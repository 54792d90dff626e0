"""Launch-on-startup registration through the Windows ``Run`` registry key."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

try:  # pragma: no cover - platform specific import
    import winreg
except ImportError:  # pragma: no cover - non-Windows fallback
    winreg = None  # type: ignore

from app_config import APP_ROOT
from errors import StartupReadFailed, StartupRegistrationFailed, StartupUnsupported

LOGGER = logging.getLogger(__name__)

STARTUP_REGISTRY_PATH = r"Software\Microsoft\Windows\CurrentVersion\Run"
STARTUP_REGISTRY_VALUE = "SunSwitch"
MAIN_SCRIPT = APP_ROOT / "main.py"


@dataclass(frozen=True)
class StartupState:
    enabled: bool
    supported: bool = True

    def to_dict(self) -> Dict[str, bool]:
        return {"enabled": self.enabled, "supported": self.supported}


def startup_command(script: Path = MAIN_SCRIPT, executable: Optional[str] = None) -> str:
    """Command line stored in the ``Run`` key; prefers ``pythonw.exe`` so no console opens."""
    executable = executable or sys.executable
    if executable.lower().endswith("python.exe"):
        pythonw = executable[:-10] + "pythonw.exe"
        if Path(pythonw).exists():
            executable = pythonw
    return f'"{executable}" "{script}" run'


class StartupRegistrar:
    """Contract for whatever registers the scheduler to start with the session."""

    def get_state(self) -> StartupState:  # pragma: no cover - interface
        raise NotImplementedError

    def set_enabled(self, enabled: bool) -> StartupState:  # pragma: no cover - interface
        raise NotImplementedError


class RegistryStartupRegistrar(StartupRegistrar):
    """Per-user ``Run`` entry pointing at ``main.py run``.

    Entries under another value name that launch the same script count as
    enabled and are removed on disable.
    """

    def __init__(
        self,
        script: Path = MAIN_SCRIPT,
        registry: Any = None,
        command: Optional[str] = None,
    ) -> None:
        if registry is None and sys.platform.startswith("win"):
            registry = winreg
        self._registry = registry
        self.script = Path(script)
        self.command = command or startup_command(self.script)

    def get_state(self) -> StartupState:
        reg = self._registry
        if reg is None:
            return StartupState(enabled=False, supported=False)
        try:
            with reg.OpenKey(reg.HKEY_CURRENT_USER, STARTUP_REGISTRY_PATH, 0, reg.KEY_READ) as key:
                try:
                    reg.QueryValueEx(key, STARTUP_REGISTRY_VALUE)
                    return StartupState(enabled=True)
                except FileNotFoundError:
                    pass
                enabled = any(self._targets_app(data) for _name, data in self._values(key))
        except FileNotFoundError:
            return StartupState(enabled=False)
        except OSError as exc:
            raise StartupReadFailed(source=exc) from exc
        return StartupState(enabled=enabled)

    def set_enabled(self, enabled: bool) -> StartupState:
        reg = self._registry
        if reg is None:
            if enabled:
                raise StartupUnsupported(platform=sys.platform)
            return StartupState(enabled=False, supported=False)

        access = reg.KEY_SET_VALUE | reg.KEY_QUERY_VALUE
        try:
            with reg.CreateKeyEx(reg.HKEY_CURRENT_USER, STARTUP_REGISTRY_PATH, 0, access) as key:
                if enabled:
                    reg.SetValueEx(key, STARTUP_REGISTRY_VALUE, 0, reg.REG_SZ, self.command)
                    LOGGER.info("Registered launch on startup: %s", self.command)
                else:
                    self._remove_entries(key)
        except PermissionError as exc:
            LOGGER.warning("Insufficient permissions to modify startup registry value")
            raise StartupRegistrationFailed(source=exc) from exc
        except OSError as exc:
            LOGGER.exception("Failed to update startup registry value")
            raise StartupRegistrationFailed(source=exc) from exc
        return self.get_state()

    def _remove_entries(self, key: Any) -> None:
        reg = self._registry
        try:
            reg.DeleteValue(key, STARTUP_REGISTRY_VALUE)
            LOGGER.info("Removed launch on startup")
        except FileNotFoundError:
            LOGGER.debug("Startup registry value already absent; nothing to remove")
        strays = [
            name
            for name, data in self._values(key)
            if name.lower() != STARTUP_REGISTRY_VALUE.lower() and self._targets_app(data)
        ]
        for name in strays:
            LOGGER.info("Removing stray startup entry %s", name)
            try:
                reg.DeleteValue(key, name)
            except FileNotFoundError:
                continue

    def _values(self, key: Any) -> Iterator[Tuple[str, Any]]:
        index = 0
        while True:
            try:
                name, data, _kind = self._registry.EnumValue(key, index)
            except OSError:
                return
            yield name, data
            index += 1

    def _targets_app(self, data: Any) -> bool:
        if not isinstance(data, str):
            return False
        return str(self.script).lower() in data.strip().lower()
