"""Observable pool events.

The pool reports what it is doing through named events so callers can hook
metrics or alerting without subclassing. Listeners run on whichever thread
raised the event (a source or probe worker, or the refresh thread).

Event names and their positional arguments:
- ``SOURCE_FETCH``: ``(relays, source_name)``
- ``SOURCE_FETCH_ERROR``: ``(error, source_name)``
- ``PROXY_TEST_SUCCESS``: ``(relay, record)``
- ``PROXY_STATUS_FAILURE``: ``(relay, status_code)``
- ``PROXY_TEST_FAILURE``: ``(relay, error)``
- ``READY``: no arguments
- ``REFRESH_ERROR``: ``(error,)``
"""

import logging
import threading
from typing import Any, Callable, Dict, List

LOGGER = logging.getLogger(__name__)

SOURCE_FETCH = "source fetch"
SOURCE_FETCH_ERROR = "source fetch error"
PROXY_TEST_SUCCESS = "proxy test success"
PROXY_STATUS_FAILURE = "proxy status failure"
PROXY_TEST_FAILURE = "proxy test failure"
READY = "ready"
REFRESH_ERROR = "refresh error"

Listener = Callable[..., Any]


class EventEmitter:
    """Minimal thread-safe publish/subscribe hub keyed by event name."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}
        self._lock = threading.Lock()

    def on(self, event: str, listener: Listener) -> "EventEmitter":
        """Register ``listener`` for ``event``."""
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)
        return self

    def off(self, event: str, listener: Listener) -> "EventEmitter":
        """Remove a previously registered listener; unknown listeners are ignored."""
        with self._lock:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)
        return self

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> int:
        """Call every listener of ``event`` with ``args``.

        A failing listener is logged and does not prevent the others from
        running. Returns the number of listeners called.
        """
        with self._lock:
            listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                listener(*args)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Listener %r for event %r failed", listener, event)
        return len(listeners)


__all__ = [
    "EventEmitter",
    "Listener",
    "SOURCE_FETCH",
    "SOURCE_FETCH_ERROR",
    "PROXY_TEST_SUCCESS",
    "PROXY_STATUS_FAILURE",
    "PROXY_TEST_FAILURE",
    "READY",
    "REFRESH_ERROR",
]
