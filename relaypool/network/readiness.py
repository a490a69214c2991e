"""Readiness latch and timed, exactly-once ``get`` resolution."""

import logging
import threading
from typing import Any, Callable, List, Optional

LOGGER = logging.getLogger(__name__)


def _defer(callback: Callable[[], Any]) -> None:
    """Run ``callback`` on a fresh daemon thread instead of the caller's."""
    timer = threading.Timer(0.0, callback)
    timer.daemon = True
    timer.start()


class ReadinessLatch:
    """One-shot flag: once set it stays set and releases every waiter.

    Subscribers registered before the latch opens are called exactly once when
    it does, on the thread calling ``set``. Subscribing to an open latch runs
    the callback on a separate thread so callers never see it inline.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[], Any]] = []

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the latch opens or ``timeout`` seconds pass."""
        return self._event.wait(timeout)

    def set(self) -> bool:
        """Open the latch. Returns True only for the call that opened it."""
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
            subscribers, self._subscribers = self._subscribers, []
        for callback in subscribers:
            try:
                callback()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Readiness subscriber %r failed", callback)
        return True

    def subscribe(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """Call ``callback`` once the latch is open. Returns a cancel function."""
        with self._lock:
            if not self._event.is_set():
                self._subscribers.append(callback)

                def cancel() -> None:
                    with self._lock:
                        if callback in self._subscribers:
                            self._subscribers.remove(callback)

                return cancel
        _defer(callback)
        return lambda: None


class PendingGet:
    """A ``get`` waiting on readiness, optionally bounded by a timeout.

    Whichever of readiness or the timer fires first resolves it; the other
    becomes a no-op, so ``callback`` runs exactly once.
    """

    def __init__(
        self,
        compute: Callable[[], List[str]],
        callback: Callable[[List[str]], Any],
    ) -> None:
        self._compute = compute
        self._callback = callback
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._resolved = False
        self._result: Optional[List[str]] = None
        self._timer: Optional[threading.Timer] = None
        self._cancel_subscription: Callable[[], None] = lambda: None

    def arm(self, latch: ReadinessLatch, timeout: Optional[float]) -> "PendingGet":
        """Race ``latch`` against a ``timeout`` second timer."""
        # The subscription must exist before the timer can fire.
        self._cancel_subscription = latch.subscribe(self.resolve)
        if timeout is None or latch.is_set():
            return self
        timer = threading.Timer(max(0.0, timeout), self._on_timeout)
        timer.daemon = True
        with self._lock:
            if self._resolved:
                return self
            self._timer = timer
        timer.start()
        return self

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def result(self, timeout: Optional[float] = None) -> Optional[List[str]]:
        """Wait for resolution and return the relays (None if still pending)."""
        self._done.wait(timeout)
        return self._result

    def _on_timeout(self) -> None:
        if self.resolve():
            LOGGER.debug("get timed out before the pool was ready")

    def resolve(self) -> bool:
        """Resolve now. Returns False if already resolved."""
        with self._lock:
            if self._resolved:
                return False
            self._resolved = True
        if self._timer is not None:
            self._timer.cancel()
        self._cancel_subscription()
        try:
            self._result = self._compute()
        finally:
            self._done.set()
        self._callback(self._result)
        return True


__all__ = ["PendingGet", "ReadinessLatch"]
