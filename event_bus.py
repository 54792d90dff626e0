"""Fire-and-forget publish/subscribe for settings and theme notifications."""
from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Callable, Dict, List, Tuple

LOGGER = logging.getLogger(__name__)

SOLAR_SETTINGS_CHANGED_EVENT = "solar-settings-changed"
AUTO_THEME_CONFIGURATION_REQUIRED_EVENT = "auto-theme-configuration-required"
THEME_STATE_CHANGED_EVENT = "theme-state-changed"
STARTUP_STATE_CHANGED_EVENT = "startup-state-changed"

Callback = Callable[[Any], None]


class EventBus:
    """Deliver events to whoever is subscribed right now.

    Nothing is queued or replayed: a listener that attaches late has to
    query the current state itself.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Tuple[str, Callback]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, event: str, callback: Callback) -> int:
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = (event, callback)
        LOGGER.debug("Subscriber %s attached to %s", token, event)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            removed = self._subscribers.pop(token, None)
        if removed:
            LOGGER.debug("Subscriber %s detached from %s", token, removed[0])
        return removed is not None

    def subscriber_count(self, event: str) -> int:
        with self._lock:
            return sum(1 for name, _ in self._subscribers.values() if name == event)

    def publish(self, event: str, payload: Any = None) -> int:
        """Invoke every current subscriber of *event*; return how many were called."""
        with self._lock:
            callbacks: List[Callback] = [cb for name, cb in self._subscribers.values() if name == event]
        LOGGER.debug("Publishing %s to %d subscriber(s)", event, len(callbacks))
        for callback in callbacks:
            try:
                callback(payload)
            except Exception:
                LOGGER.exception("Subscriber %s failed while handling %s", getattr(callback, "__name__", callback), event)
        return len(callbacks)
