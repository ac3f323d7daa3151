from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]

EVENTS = (
    "start",
    "stop",
    "exit",
    "startDigest",
    "endDigest",
    "newSession",
    "endSession",
    "newMedia",
)


class EventDispatcher:
    """
    Maps event names to listeners, called synchronously in registration order.

    Listener exceptions propagate to the caller of emit() unless
    isolate_listeners is set, in which case each one is logged and the
    remaining listeners still run.
    """

    def __init__(self, isolate_listeners: bool = False) -> None:
        self.isolate_listeners = isolate_listeners
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, callback: Listener) -> "EventDispatcher":
        if not callable(callback):
            raise TypeError(f"Listener for {event!r} must be callable")
        self._listeners.setdefault(event, []).append(callback)
        logger.debug("Listener added to event '%s'", event)
        return self

    def off(self, event: str, callback: Listener) -> "EventDispatcher":
        callbacks = self._listeners.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)
            logger.debug("Listener removed from event '%s'", event)
        if not callbacks:
            self._listeners.pop(event, None)
        return self

    def remove_all_listeners(self, event: Optional[str] = None) -> "EventDispatcher":
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)
        return self

    def listeners(self, event: str) -> List[Listener]:
        return list(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        """Returns True if the event had listeners."""
        # Copy so a listener may unregister itself while being called
        callbacks = self.listeners(event)
        for callback in callbacks:
            if not self.isolate_listeners:
                callback(*args)
                continue
            try:
                callback(*args)
            except Exception:
                logger.exception("Listener for '%s' failed", event)
        return bool(callbacks)
